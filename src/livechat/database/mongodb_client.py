import asyncio
import logging
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError
from pymongo.server_api import ServerApi

logger = logging.getLogger(__name__)


class MongoDBClient:
    """Motor client that retries the first connection with a growing delay."""

    def __init__(
        self,
        mongo_uri: str,
        max_retries: int = 3,
        retry_delay: float = 5.0,
        timeout_ms: int = 30000
    ):
        self.uri = mongo_uri
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout_ms = timeout_ms
        self.client: Optional[AsyncIOMotorClient] = None

    def _build_client(self) -> AsyncIOMotorClient:
        # Timestamps come back tz-aware so they compare equal to broadcast copies
        return AsyncIOMotorClient(
            self.uri,
            tz_aware=True,
            connectTimeoutMS=self.timeout_ms,
            socketTimeoutMS=self.timeout_ms,
            serverSelectionTimeoutMS=self.timeout_ms,
            server_api=ServerApi('1'),
        )

    async def connect(self) -> None:
        attempt = 0
        while True:
            attempt += 1
            self.client = self._build_client()
            try:
                await self.ping()
            except (ServerSelectionTimeoutError, ConnectionFailure) as e:
                self.client.close()
                self.client = None
                if attempt >= self.max_retries:
                    logger.error(f"MongoDB unreachable after {attempt} attempts")
                    raise
                delay = self.retry_delay * attempt
                logger.warning(
                    f"MongoDB attempt {attempt} failed ({e}), next try in {delay}s"
                )
                await asyncio.sleep(delay)
            else:
                logger.info(f"Connected to MongoDB on attempt {attempt}")
                return

    @property
    def connected(self) -> bool:
        return self.client is not None

    async def ping(self) -> None:
        if self.client is None:
            raise ConnectionError("MongoDB client not connected")
        await self.client.admin.command('ping')

    def database(self, name: str) -> AsyncIOMotorDatabase:
        if self.client is None:
            raise ConnectionError("MongoDB client not connected")
        return self.client[name]

    async def cleanup(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None
            logger.info("MongoDB connection closed")
