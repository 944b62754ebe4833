from enum import Enum
from pydantic import BaseModel, Field, model_validator
from typing import Optional
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current UTC time truncated to milliseconds, the precision MongoDB keeps."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


class MessageSender(str, Enum):
    USER = "user"
    BOT = "bot"
    ADMIN = "admin"


class SessionMode(str, Enum):
    BOT = "bot"
    ESCALATING = "escalating"
    HUMAN = "human"


class ChatStatus(str, Enum):
    """Desk workflow state, set by staff"""
    ACTIVE = "active"
    PENDING = "pending"
    RESOLVED = "resolved"


class Participant(BaseModel):
    """Customer identity supplied when a chat starts"""
    name: str
    email: str
    phone: Optional[str] = None


class Attachment(BaseModel):
    """File descriptor carried by a message instead of a text body.

    The url is assigned by the store and is absent on provisional entries.
    """
    name: str
    mime_type: str
    size_bytes: int = Field(ge=0)
    url: Optional[str] = None


class ChatMessage(BaseModel):
    """Model for a single message in the conversation"""
    id: Optional[str] = None
    session_id: str
    sender: MessageSender
    body: Optional[str] = None
    attachment: Optional[Attachment] = None
    timestamp: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _check_payload(self):
        if (self.body is None) == (self.attachment is None):
            raise ValueError("message needs exactly one of body or attachment")
        return self


class ChatSession(BaseModel):
    session_id: str
    session_key: Optional[str] = None
    participant: Participant
    mode: SessionMode = SessionMode.BOT
    blocked: bool = False
    blocked_reason: Optional[str] = None
    status: ChatStatus = ChatStatus.ACTIVE
    # Customer messages staff have not read yet
    unread_count: int = Field(default=0, ge=0)
    last_message: str = ""
    last_message_at: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)


class BotReply(BaseModel):
    """Reply from the bot service; escalate is never persisted on the message"""
    body: str
    escalate: bool = False


class TextPayload(BaseModel):
    body: str


class AttachmentPayload(BaseModel):
    """Outbound file, content held in memory until the gateway stores it"""
    name: str
    mime_type: str
    content: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.content)
