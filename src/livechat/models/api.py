from pydantic import BaseModel, Field
from src.livechat.models.chat import ChatStatus, MessageSender, SessionMode
from typing import Optional


class SessionRequest(BaseModel):
    """Request model for starting (or resuming) a chat session"""
    session_key: str  # caller-supplied, makes session creation safe to retry
    name: str
    email: str
    phone: Optional[str] = None


class MessageRequest(BaseModel):
    """Request model for appending a text message"""
    sender: MessageSender
    body: str = Field(min_length=1)


class BotReplyRequest(BaseModel):
    session_id: str
    text: str


class BlockRequest(BaseModel):
    """Request model for staff blocking a session"""
    reason: str = "You have been blocked from sending messages. Please contact support."


class StatusRequest(BaseModel):
    status: ChatStatus


class ModeRequest(BaseModel):
    """Escalation progress reported by the customer client"""
    mode: SessionMode
