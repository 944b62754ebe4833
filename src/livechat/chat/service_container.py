import asyncio
import logging
from typing import Dict, Optional
from src.livechat.chat.attachment_storage import AttachmentStorage
from src.livechat.chat.bot_responder import KeywordBotResponder
from src.livechat.chat.presence import PresenceTracker
from src.livechat.database.message_store import (
    InMemoryMessageStore,
    MessageStore,
    MongoMessageStore,
)
from src.livechat.database.mongodb_client import MongoDBClient
from src.livechat.utils.settings import SETTINGS
from src.livechat.websocket.manager import ConnectionManager


logger = logging.getLogger(__name__)


class ServiceContainer:
    """Container for all server-side service instances."""

    def __init__(self, cfg, store: Optional[MessageStore] = None):
        self.cfg = cfg
        self.store = store
        self.bot_responder = None
        self.attachments = None
        self.connection_manager = ConnectionManager()
        self.presence = PresenceTracker()
        self._bot_locks: Dict[str, asyncio.Lock] = {}

    async def initialize(self):
        """Initialize all service components with proper dependency order."""
        try:
            if self.store is None:
                self.store = await self._create_store()
            self.bot_responder = KeywordBotResponder.from_config(self.cfg.bot)
            self.attachments = AttachmentStorage(
                self.cfg.chat.upload_dir,
                self.cfg.chat.upload_url_prefix,
                list(self.cfg.chat.allowed_attachment_types),
            )
        except Exception as e:
            logger.error(f"Error initializing services: {e}")
            raise

    async def _create_store(self) -> MessageStore:
        backend = self.cfg.store.backend
        if backend == "memory":
            logger.info("Using in-memory message store")
            return InMemoryMessageStore()
        if backend == "mongo":
            mongodb_client = MongoDBClient(SETTINGS.MONGODB_URI)
            await mongodb_client.connect()
            store = MongoMessageStore(mongodb_client, self.cfg)
            await store.ensure_indexes()
            return store
        raise ValueError(f"Unknown store backend: {backend}")

    def bot_turn_lock(self, session_id: str) -> asyncio.Lock:
        """One bot reply at a time per session"""
        if session_id not in self._bot_locks:
            self._bot_locks[session_id] = asyncio.Lock()
        return self._bot_locks[session_id]

    async def cleanup(self):
        """Cleanup all resources."""
        if self.store is not None:
            await self.store.cleanup()
        self._bot_locks.clear()
        logger.info("Cleanup complete")
