from pydantic import BaseModel, Field, TypeAdapter
from typing import Optional, Literal, Union, Annotated
from src.livechat.models.chat import ChatMessage, MessageSender


# WebSocket event models, one per transport event type
class WSEvent(BaseModel):
    """Base model for WebSocket events"""
    type: str


class WSJoin(WSEvent):
    """Subscribe this connection to a session's broadcasts"""
    type: Literal["join"] = "join"
    session_id: str


class WSChatMessage(WSEvent):
    type: Literal["message"] = "message"
    message: ChatMessage


class WSTypingStart(WSEvent):
    type: Literal["typing-start"] = "typing-start"
    session_id: str
    sender: MessageSender


class WSTypingStop(WSEvent):
    type: Literal["typing-stop"] = "typing-stop"
    session_id: str
    sender: MessageSender


class WSAdminOnline(WSEvent):
    """Operator console announces availability"""
    type: Literal["admin-online"] = "admin-online"


class WSAdminOffline(WSEvent):
    type: Literal["admin-offline"] = "admin-offline"


class WSPresence(WSEvent):
    type: Literal["presence"] = "presence"
    online: bool


class WSBlocked(WSEvent):
    """Session gated from further sends"""
    type: Literal["blocked"] = "blocked"
    session_id: str
    reason: Optional[str] = None


class WSMessageError(WSEvent):
    """Rejection of a relayed message, sent only to the offending connection"""
    type: Literal["message-error"] = "message-error"
    session_id: Optional[str] = None
    error: str


WSAnyEvent = Annotated[
    Union[
        WSJoin,
        WSChatMessage,
        WSTypingStart,
        WSTypingStop,
        WSAdminOnline,
        WSAdminOffline,
        WSPresence,
        WSBlocked,
        WSMessageError,
    ],
    Field(discriminator="type"),
]


_event_adapter = TypeAdapter(WSAnyEvent)


def parse_event(data) -> WSEvent:
    """Validate a decoded JSON object or raw JSON text into a typed event."""
    if isinstance(data, (str, bytes)):
        return _event_adapter.validate_json(data)
    return _event_adapter.validate_python(data)
