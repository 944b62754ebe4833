import logging
from fastapi import APIRouter, Depends

from src.livechat.api.deps import get_service_container, require_session
from src.livechat.chat.service_container import ServiceContainer
from src.livechat.models.api import BotReplyRequest
from src.livechat.models.chat import BotReply

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/reply", response_model=BotReply)
async def bot_reply(
    request: BotReplyRequest,
    services: ServiceContainer = Depends(get_service_container)
):
    """Answer a customer message; escalate asks the client to hand over"""
    await require_session(request.session_id, services)
    async with services.bot_turn_lock(request.session_id):
        reply = await services.bot_responder.bot_reply(
            request.session_id, request.text
        )
    logger.info(f"Bot reply for {request.session_id}, escalate={reply.escalate}")
    return reply


@router.get("/responses")
async def list_responses(
    services: ServiceContainer = Depends(get_service_container)
):
    """Active knowledge base entries, for admin review"""
    return [entry.model_dump() for entry in services.bot_responder.entries]
