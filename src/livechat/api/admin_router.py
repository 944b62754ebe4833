import logging
from typing import List
from fastapi import APIRouter, HTTPException, Depends

from src.livechat.api.deps import get_service_container
from src.livechat.chat.service_container import ServiceContainer
from src.livechat.models.api import BlockRequest, StatusRequest
from src.livechat.models.chat import ChatSession
from src.livechat.models.websocket import WSBlocked

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/sessions", response_model=List[ChatSession])
async def list_sessions(
    services: ServiceContainer = Depends(get_service_container)
):
    """All chat sessions for staff to view"""
    return await services.store.list_sessions()


@router.post("/sessions/{session_id}/block", response_model=ChatSession)
async def block_session(
    session_id: str,
    request: BlockRequest,
    services: ServiceContainer = Depends(get_service_container)
):
    """Stop a customer from sending and tell every connected client"""
    session = await services.store.set_blocked(session_id, request.reason)
    if session is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    logger.warning(f"Session {session_id} blocked by staff: {request.reason}")
    await services.connection_manager.broadcast_to_session(
        session_id,
        WSBlocked(session_id=session_id, reason=request.reason),
    )
    return session


@router.put("/sessions/{session_id}/read", response_model=ChatSession)
async def mark_read(
    session_id: str,
    services: ServiceContainer = Depends(get_service_container)
):
    """Staff opened the chat, reset its unread count"""
    session = await services.store.mark_read(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    return session


@router.put("/sessions/{session_id}/status", response_model=ChatSession)
async def update_status(
    session_id: str,
    request: StatusRequest,
    services: ServiceContainer = Depends(get_service_container)
):
    session = await services.store.set_status(session_id, request.status)
    if session is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    logger.info(f"Session {session_id} marked {request.status.value}")
    return session
