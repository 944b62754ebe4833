import logging
from typing import List
from fastapi import APIRouter, HTTPException, Depends, File, Form, UploadFile

from src.livechat.api.deps import get_service_container, require_session
from src.livechat.chat.service_container import ServiceContainer
from src.livechat.models.api import MessageRequest, ModeRequest, SessionRequest
from src.livechat.models.chat import (
    ChatMessage,
    ChatSession,
    MessageSender,
    Participant,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def _check_not_blocked(session: ChatSession, sender: MessageSender) -> None:
    # Only customers are gated, staff and bot can still write
    if sender == MessageSender.USER and session.blocked:
        logger.info(f"Blocked user tried to send in {session.session_id}")
        raise HTTPException(
            status_code=403,
            detail=session.blocked_reason or (
                "You have been blocked from sending messages. "
                "Please contact support."
            ),
        )


@router.post("/sessions", response_model=ChatSession)
async def create_session(
    request: SessionRequest,
    services: ServiceContainer = Depends(get_service_container)
):
    """Create a chat for this session key, or return the existing one"""
    participant = Participant(
        name=request.name, email=request.email, phone=request.phone
    )
    session = await services.store.get_or_create_session(
        request.session_key, participant
    )
    logger.info(f"Chat {session.session_id} ready for {request.email}")
    return session


@router.put("/sessions/{session_id}/mode", response_model=ChatSession)
async def update_mode(
    session_id: str,
    request: ModeRequest,
    services: ServiceContainer = Depends(get_service_container)
):
    """Record escalation so a resumed chat stays with the admin"""
    session = await services.store.set_mode(session_id, request.mode)
    if session is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    logger.info(f"Session {session_id} now in {request.mode.value} mode")
    return session


@router.get("/sessions/{session_id}/messages", response_model=List[ChatMessage])
async def list_messages(
    session_id: str,
    services: ServiceContainer = Depends(get_service_container)
):
    """Messages of a chat in stored order"""
    await require_session(session_id, services)
    return await services.store.list_messages(
        session_id, services.cfg.chat.history_limit
    )


@router.post("/sessions/{session_id}/messages", response_model=ChatMessage)
async def append_message(
    session_id: str,
    request: MessageRequest,
    services: ServiceContainer = Depends(get_service_container)
):
    session = await require_session(session_id, services)
    _check_not_blocked(session, request.sender)
    try:
        return await services.store.append_message(
            session_id, request.sender, body=request.body
        )
    except Exception as e:
        logger.error(f"Error saving message: {e}")
        raise HTTPException(status_code=500, detail="Failed to send message")


@router.post("/sessions/{session_id}/attachments", response_model=ChatMessage)
async def upload_attachment(
    session_id: str,
    sender: MessageSender = Form(...),
    file: UploadFile = File(...),
    services: ServiceContainer = Depends(get_service_container)
):
    """Store an uploaded file and append it as a message"""
    session = await require_session(session_id, services)
    _check_not_blocked(session, sender)
    content = await file.read()
    max_bytes = services.cfg.chat.max_attachment_bytes
    if len(content) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large, limit is {max_bytes} bytes",
        )
    mime_type = file.content_type or "application/octet-stream"
    if not services.attachments.is_allowed(file.filename or "", mime_type):
        raise HTTPException(
            status_code=415,
            detail="Invalid file type. Only images, documents, and videos "
                   "are allowed.",
        )
    try:
        attachment = await services.attachments.save(
            file.filename, mime_type, content
        )
        return await services.store.append_message(
            session_id, sender, attachment=attachment
        )
    except Exception as e:
        logger.error(f"Error saving attachment: {e}")
        raise HTTPException(status_code=500, detail="Failed to upload file")
