"""Transport channel: the persistent event link between a client and the server.

The channel is owned and injected by whoever builds the chat client, so the
session logic can run against any implementation, including in-process fakes.
"""
import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, Set, Union
import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from src.livechat.chat.errors import TransportUnavailableError
from src.livechat.models.websocket import WSEvent, WSJoin, parse_event

logger = logging.getLogger(__name__)

EventHandler = Callable[[WSEvent], Union[Awaitable[None], None]]


class TransportChannel(ABC):
    def __init__(self):
        self._handlers: List[EventHandler] = []
        self._disconnect_handlers: List[Callable[[], None]] = []
        self.rooms: Set[str] = set()

    @property
    @abstractmethod
    def connected(self) -> bool:
        ...

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def _send(self, event: WSEvent) -> None:
        ...

    def on_event(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def on_disconnect(self, handler: Callable[[], None]) -> None:
        self._disconnect_handlers.append(handler)

    async def send(self, event: WSEvent) -> None:
        if not self.connected:
            raise TransportUnavailableError()
        await self._send(event)

    async def join(self, session_id: str) -> None:
        """Subscribe to a session's broadcasts, remembered across reconnects."""
        await self.send(WSJoin(session_id=session_id))
        self.rooms.add(session_id)

    async def reconnect(self) -> None:
        await self.close()
        await self.connect()

    async def _rejoin(self) -> None:
        for session_id in sorted(self.rooms):
            await self._send(WSJoin(session_id=session_id))
            logger.info(f"Rejoined session {session_id}")

    async def _dispatch(self, event: WSEvent) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error handling {event.type} event: {e}")

    def _notify_disconnect(self) -> None:
        for handler in list(self._disconnect_handlers):
            handler()


class WebSocketTransportChannel(TransportChannel):
    def __init__(self, url: str, open_timeout: float = 20.0):
        super().__init__()
        self.url = url
        self.open_timeout = open_timeout
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self._connected:
            return
        try:
            self._ws = await websockets.connect(
                self.url, open_timeout=self.open_timeout
            )
        except (OSError, InvalidURI, InvalidHandshake, asyncio.TimeoutError) as e:
            logger.error(f"Connection to {self.url} failed: {e}")
            raise TransportUnavailableError(str(e)) from e
        self._connected = True
        logger.info(f"Connected to chat server at {self.url}")
        self._reader = asyncio.create_task(self._read_loop())
        await self._rejoin()

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    event = parse_event(raw)
                except ValidationError as e:
                    logger.warning(f"Ignoring malformed event: {e}")
                    continue
                await self._dispatch(event)
        except ConnectionClosed as e:
            logger.info(f"Disconnected from chat server: {e}")
        finally:
            was_connected = self._connected
            self._connected = False
            if was_connected:
                self._notify_disconnect()

    async def _send(self, event: WSEvent) -> None:
        try:
            await self._ws.send(event.model_dump_json())
        except ConnectionClosed as e:
            self._connected = False
            raise TransportUnavailableError(str(e)) from e

    async def close(self) -> None:
        self._connected = False
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
            logger.info("Chat server connection closed")
