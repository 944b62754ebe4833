from fastapi import WebSocket
import logging
from typing import Dict, Optional, Set
from starlette.websockets import WebSocketState
from src.livechat.models.websocket import WSEvent

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks every open socket, the sessions each joined, and operators."""

    def __init__(self):
        self.connections: Set[WebSocket] = set()
        # Structure: {session_id: {websocket, ...}}
        self.rooms: Dict[str, Set[WebSocket]] = {}
        self.admins: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.connections.add(websocket)

    def join(self, websocket: WebSocket, session_id: str) -> None:
        self.rooms.setdefault(session_id, set()).add(websocket)
        logger.info(f"Connection joined session {session_id}")

    def set_admin(self, websocket: WebSocket, online: bool) -> None:
        if online:
            self.admins.add(websocket)
        else:
            self.admins.discard(websocket)

    async def disconnect(self, websocket: WebSocket) -> bool:
        """Forget a socket. Returns True if it was the last operator online."""
        self.connections.discard(websocket)
        for session_id in list(self.rooms):
            self.rooms[session_id].discard(websocket)
            # If no more connections for this session, remove the session entry
            if not self.rooms[session_id]:
                del self.rooms[session_id]
                logger.info(f"Removed empty session {session_id}")
        was_admin = websocket in self.admins
        self.admins.discard(websocket)
        return was_admin and not self.admins

    async def send(self, websocket: WebSocket, event: WSEvent) -> bool:
        try:
            if websocket.client_state == WebSocketState.CONNECTED:
                await websocket.send_text(event.model_dump_json())
                return True
        except Exception as e:
            logger.error(f"Error sending {event.type} event: {e}")
        return False

    async def broadcast_to_session(
        self,
        session_id: str,
        event: WSEvent,
        exclude: Optional[WebSocket] = None
    ) -> None:
        """Send to everyone in a session, including the sender unless excluded."""
        closed_connections = []
        for websocket in list(self.rooms.get(session_id, ())):
            if websocket is exclude:
                continue
            if not await self.send(websocket, event):
                closed_connections.append(websocket)
        # Clean up closed connections
        for websocket in closed_connections:
            await self.disconnect(websocket)

    async def broadcast_all(
        self, event: WSEvent, exclude: Optional[WebSocket] = None
    ) -> None:
        for websocket in list(self.connections):
            if websocket is not exclude:
                await self.send(websocket, event)
