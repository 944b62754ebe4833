import logging
from typing import Optional
from fastapi import HTTPException, Request, WebSocket
from hydra import compose, initialize
from starlette.datastructures import State
from src.livechat.chat.service_container import ServiceContainer
from src.livechat.models.chat import ChatSession

logger = logging.getLogger(__name__)


def get_config():
    """Compose config/config.yaml outside of hydra.main, for the API process."""
    with initialize(version_base=None, config_path="./../../../config"):
        return compose(config_name="config.yaml")


def _container(state: State) -> Optional[ServiceContainer]:
    if not getattr(state, "startup_complete", False):
        return None
    return getattr(state, "service_container", None)


def get_service_container(request: Request) -> ServiceContainer:
    services = _container(request.app.state)
    if services is None:
        raise HTTPException(
            status_code=503,
            detail="Chat service is starting up. Please try again in a moment."
        )
    return services


async def get_websocket_service_container(
    websocket: WebSocket
) -> Optional[ServiceContainer]:
    services = _container(websocket.app.state)
    if services is None:
        logger.warning("WebSocket refused, chat service not ready")
        await websocket.close(code=1013)  # Try Again Later
    return services


async def require_session(
    session_id: str, services: ServiceContainer
) -> ChatSession:
    """Load a session or answer 404"""
    session = await services.store.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    return session
