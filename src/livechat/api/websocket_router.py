from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends
from pydantic import ValidationError
from starlette.websockets import WebSocketState
from src.livechat.api.deps import get_websocket_service_container
from src.livechat.chat.service_container import ServiceContainer
from src.livechat.models.chat import MessageSender
from src.livechat.models.websocket import (
    WSAdminOffline,
    WSAdminOnline,
    WSBlocked,
    WSChatMessage,
    WSEvent,
    WSJoin,
    WSMessageError,
    WSPresence,
    WSTypingStart,
    WSTypingStop,
    parse_event,
)
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


async def handle_join(
    services: ServiceContainer, websocket: WebSocket, event: WSJoin
) -> None:
    manager = services.connection_manager
    session = await services.store.get_session(event.session_id)
    if session is None:
        await manager.send(websocket, WSMessageError(
            session_id=event.session_id, error="Chat not found"
        ))
        return
    manager.join(websocket, event.session_id)
    if session.blocked:
        await manager.send(websocket, WSBlocked(
            session_id=session.session_id, reason=session.blocked_reason
        ))


async def handle_chat_message(
    services: ServiceContainer, websocket: WebSocket, event: WSChatMessage
) -> None:
    """Relay a stored message to everyone in its session, sender included.

    Customers of a blocked session get a blocked event back instead.
    """
    manager = services.connection_manager
    message = event.message
    if message.sender == MessageSender.USER:
        session = await services.store.get_session(message.session_id)
        if session is not None and session.blocked:
            logger.info(f"Blocked user tried to send in {message.session_id}")
            await manager.send(websocket, WSBlocked(
                session_id=message.session_id, reason=session.blocked_reason
            ))
            return
    await manager.broadcast_to_session(message.session_id, event)
    logger.info(f"Message broadcast in session {message.session_id}")


async def handle_presence(
    services: ServiceContainer, websocket: WebSocket, online: bool
) -> None:
    manager = services.connection_manager
    manager.set_admin(websocket, online)
    if online is False and manager.admins:
        # Another operator is still online
        return
    if services.presence.update(online):
        await manager.broadcast_all(WSPresence(online=online), exclude=websocket)


async def handle_event(
    services: ServiceContainer, websocket: WebSocket, event: WSEvent
) -> None:
    manager = services.connection_manager
    if isinstance(event, WSJoin):
        await handle_join(services, websocket, event)
    elif isinstance(event, WSChatMessage):
        await handle_chat_message(services, websocket, event)
    elif isinstance(event, (WSTypingStart, WSTypingStop)):
        await manager.broadcast_to_session(
            event.session_id, event, exclude=websocket
        )
    elif isinstance(event, WSAdminOnline):
        await handle_presence(services, websocket, True)
    elif isinstance(event, WSAdminOffline):
        await handle_presence(services, websocket, False)
    else:
        logger.warning(f"Ignoring server-only event {event.type} from client")


@router.websocket("/chat")
async def websocket_endpoint(
    websocket: WebSocket,
    services: ServiceContainer = Depends(get_websocket_service_container)
):
    """Real-time channel for customers and operators.

    Workflow:
        1. Accepts the connection and sends current operator presence
        2. Processes incoming events until the client disconnects
        3. On disconnect, drops the socket from its sessions; if it was the
           last operator online, broadcasts presence offline
    """
    if services is None:
        return
    manager = services.connection_manager
    await manager.connect(websocket)
    try:
        await manager.send(websocket, WSPresence(online=services.presence.online))
        while True:
            data = await websocket.receive_text()
            try:
                event = parse_event(data)
            except ValidationError as e:
                logger.warning(f"Malformed websocket event: {e}")
                await manager.send(websocket, WSMessageError(
                    error="Malformed event"
                ))
                continue
            await handle_event(services, websocket, event)
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        if websocket.client_state != WebSocketState.DISCONNECTED:
            try:
                await websocket.close(code=1011)  # 1011 = Internal Error
            except Exception as close_error:
                logger.error(f"Error closing WebSocket: {close_error}")
    finally:
        last_admin_left = await manager.disconnect(websocket)
        if last_admin_left and services.presence.update(False):
            await manager.broadcast_all(WSPresence(online=False))
