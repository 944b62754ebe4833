"""In-process fakes shared by the live chat tests.

These are NOT fixtures, import them directly from test modules.
"""
import asyncio
from typing import List, Optional
from uuid import uuid4

from src.livechat.chat.errors import BlockedError, BotServiceError
from src.livechat.chat.gateway import BotService, MessageGateway
from src.livechat.chat.transport import TransportChannel
from src.livechat.models.chat import (
    Attachment,
    BotReply,
    ChatMessage,
    ChatSession,
    MessageSender,
    Participant,
    SessionMode,
)
from src.livechat.models.websocket import WSChatMessage, WSEvent

SESSION_ID = "session-test"


class FakeGateway(MessageGateway):
    """Keeps messages in a list; set fail_with to make the next write raise."""

    def __init__(self, history: Optional[List[ChatMessage]] = None):
        self.messages: List[ChatMessage] = list(history or [])
        self.blocked = False
        self.mode = SessionMode.BOT
        self.mode_updates: List[SessionMode] = []
        self.fail_with: Optional[Exception] = None
        self.calls: List[str] = []
        self.closed = False

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_with is not None:
            error, self.fail_with = self.fail_with, None
            raise error

    async def create_session(
        self, participant: Participant, session_key: str
    ) -> ChatSession:
        self._check("create_session")
        return ChatSession(
            session_id=SESSION_ID,
            session_key=session_key,
            participant=participant,
            mode=self.mode,
            blocked=self.blocked,
            blocked_reason="Blocked by staff" if self.blocked else None,
        )

    async def list_messages(self, session_id: str) -> List[ChatMessage]:
        self._check("list_messages")
        return [m for m in self.messages if m.session_id == session_id]

    async def append_message(self, session_id, sender, body) -> ChatMessage:
        self._check("append_message")
        if self.blocked and sender == MessageSender.USER:
            raise BlockedError("Blocked by staff")
        message = ChatMessage(
            id=uuid4().hex, session_id=session_id, sender=sender, body=body
        )
        self.messages.append(message)
        return message

    async def upload_attachment(self, session_id, sender, payload) -> ChatMessage:
        self._check("upload_attachment")
        message = ChatMessage(
            id=uuid4().hex,
            session_id=session_id,
            sender=sender,
            attachment=Attachment(
                name=payload.name,
                mime_type=payload.mime_type,
                size_bytes=payload.size_bytes,
                url=f"/uploads/chat-files/{payload.name}",
            ),
        )
        self.messages.append(message)
        return message

    async def update_mode(self, session_id, mode) -> ChatSession:
        self._check("update_mode")
        self.mode = mode
        self.mode_updates.append(mode)
        return ChatSession(
            session_id=session_id,
            participant=Participant(name="Nimal", email="nimal@example.com"),
            mode=mode,
        )

    async def bot_reply(self, session_id: str, text: str) -> BotReply:
        raise BotServiceError("no bot behind the fake gateway")

    async def close(self) -> None:
        self.closed = True


class FakeTransport(TransportChannel):
    """In-process channel; message broadcasts come straight back as echoes."""

    def __init__(self, echo: bool = True):
        super().__init__()
        self.echo = echo
        self.sent: List[WSEvent] = []
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True
        await self._rejoin()

    async def close(self) -> None:
        self._connected = False

    def drop(self) -> None:
        self._connected = False
        self._notify_disconnect()

    async def _send(self, event: WSEvent) -> None:
        self.sent.append(event)
        if self.echo and isinstance(event, WSChatMessage):
            await self._dispatch(event.model_copy(deep=True))

    async def deliver(self, event: WSEvent) -> None:
        """Simulate an event pushed by the server"""
        await self._dispatch(event)

    def sent_of_type(self, event_type: str) -> List[WSEvent]:
        return [e for e in self.sent if e.type == event_type]


class FakeBotService(BotService):
    """Scripted replies, consumed in order; an Exception entry is raised."""

    def __init__(self, *replies, gate: Optional[asyncio.Event] = None):
        self.replies = list(replies)
        self.gate = gate
        self.calls: List[str] = []
        self.called = asyncio.Event()

    async def bot_reply(self, session_id: str, text: str) -> BotReply:
        self.calls.append(text)
        self.called.set()
        if self.gate is not None:
            await self.gate.wait()
        reply = self.replies.pop(0) if self.replies else BotReply(body=f"re: {text}")
        if isinstance(reply, Exception):
            raise reply
        return reply
