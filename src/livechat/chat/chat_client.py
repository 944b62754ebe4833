"""Customer-side chat: one process, one transport connection, one session."""
import asyncio
import logging
from typing import List, Optional, Set
from src.livechat.chat.bot_orchestrator import (
    FALLBACK_REPLY,
    BotEscalationOrchestrator,
)
from src.livechat.chat.errors import ChatError
from src.livechat.chat.gateway import BotService, MessageGateway
from src.livechat.chat.pipeline import (
    MAX_ATTACHMENT_BYTES,
    DraftBuffer,
    MessagePipeline,
)
from src.livechat.chat.presence import PresenceTracker
from src.livechat.chat.session_machine import ChatSessionMachine
from src.livechat.chat.transport import TransportChannel
from src.livechat.chat.typing_indicator import TypingTracker
from src.livechat.models.chat import (
    AttachmentPayload,
    ChatMessage,
    ChatSession,
    MessageSender,
    Participant,
    SessionMode,
    TextPayload,
)
from src.livechat.models.websocket import (
    WSBlocked,
    WSChatMessage,
    WSEvent,
    WSMessageError,
    WSPresence,
    WSTypingStart,
    WSTypingStop,
)

logger = logging.getLogger(__name__)


class ChatClient:
    def __init__(
        self,
        gateway: MessageGateway,
        transport: TransportChannel,
        bot_service: Optional[BotService] = None,
        escalation_grace_seconds: float = 2.0,
        typing_timeout_seconds: float = 1.0,
        max_attachment_bytes: int = MAX_ATTACHMENT_BYTES,
        fallback_reply: str = FALLBACK_REPLY,
        welcome_message: Optional[str] = None
    ):
        self.gateway = gateway
        self.transport = transport
        self.welcome_message = welcome_message
        self.machine = ChatSessionMachine(escalation_grace_seconds)
        self.pipeline = MessagePipeline(
            self.machine, gateway, transport, max_attachment_bytes
        )
        self.orchestrator = BotEscalationOrchestrator(
            self.machine,
            self.pipeline,
            bot_service or gateway,
            fallback_reply,
        )
        self.presence = PresenceTracker()
        # Our own typing, debounced into start/stop edges on the channel
        self.local_typing = TypingTracker(
            typing_timeout_seconds, self._on_local_typing
        )
        # Operator typing as reported by the channel
        self.remote_typing = TypingTracker(typing_timeout_seconds)
        self.draft = DraftBuffer()
        self.session_id: Optional[str] = None
        self._background: Set[asyncio.Task] = set()
        transport.on_event(self.handle_event)
        transport.on_disconnect(self._on_disconnect)
        self.machine.add_listener(self._on_transition)

    @classmethod
    def from_config(cls, cfg, gateway, transport):
        return cls(
            gateway,
            transport,
            escalation_grace_seconds=cfg.chat.escalation_grace_seconds,
            typing_timeout_seconds=cfg.chat.typing_timeout_seconds,
            max_attachment_bytes=cfg.chat.max_attachment_bytes,
            fallback_reply=cfg.bot.fallback_reply,
            welcome_message=cfg.client.get("welcome_message"),
        )

    async def start(
        self, participant: Participant, session_key: str
    ) -> ChatSession:
        """Connect, create (or resume) the session and load its history."""
        if not participant.name or not participant.email:
            raise ValueError("Name and email are required to start chatting.")
        await self.transport.connect()
        remote = await self.gateway.create_session(participant, session_key)
        # Escalation is one-way, an interrupted hand-over resumes with the admin
        mode = (
            SessionMode.BOT if remote.mode == SessionMode.BOT
            else SessionMode.HUMAN
        )
        session = self.machine.begin(
            remote.session_id, participant, session_key, mode
        )
        if remote.blocked:
            self.machine.set_blocked(remote.session_id, remote.blocked_reason)
        self.session_id = remote.session_id
        await self.transport.join(remote.session_id)
        history = await self.gateway.list_messages(remote.session_id)
        for message in history:
            self.pipeline.ingest(message)
        if not history and self.welcome_message:
            # Local only, never persisted
            self.pipeline.ingest(ChatMessage(
                session_id=remote.session_id,
                sender=MessageSender.BOT,
                body=self.welcome_message,
            ))
        logger.info(
            f"Chat {remote.session_id} ready with {len(history)} messages"
        )
        return session

    @property
    def timeline(self) -> List[ChatMessage]:
        return self.pipeline.timeline(self._require_session()).messages

    @property
    def mode(self) -> SessionMode:
        return self.machine.mode(self._require_session())

    @property
    def can_send(self) -> bool:
        return self.machine.can_send(self._require_session())

    @property
    def connected(self) -> bool:
        return self.transport.connected

    def admin_typing(self) -> bool:
        return self.remote_typing.is_typing(
            self._require_session(), MessageSender.ADMIN
        )

    async def send_draft(self) -> Optional[ChatMessage]:
        text = self.draft.take()
        if not text.strip():
            self.draft.restore(text)
            return None
        self.local_typing.stop(self._require_session(), MessageSender.USER)
        return await self.pipeline.submit(
            self._require_session(),
            MessageSender.USER,
            TextPayload(body=text),
            draft=self.draft,
        )

    async def send_text(self, text: str) -> ChatMessage:
        self.draft.restore(text)
        return await self.send_draft()

    async def send_attachment(
        self, name: str, mime_type: str, content: bytes
    ) -> ChatMessage:
        return await self.pipeline.submit(
            self._require_session(),
            MessageSender.USER,
            AttachmentPayload(name=name, mime_type=mime_type, content=content),
        )

    def notify_typing(self) -> None:
        """Call on every keystroke; a stop edge follows after the timeout."""
        if self.transport.connected and self.session_id is not None:
            self.local_typing.start(self.session_id, MessageSender.USER)

    def _on_local_typing(
        self, session_id: str, sender: MessageSender, typing: bool
    ) -> None:
        event_cls = WSTypingStart if typing else WSTypingStop
        self._spawn(self._send_quietly(
            event_cls(session_id=session_id, sender=sender)
        ))

    async def _send_quietly(self, event: WSEvent) -> None:
        try:
            await self.transport.send(event)
        except ChatError as e:
            logger.debug(f"Dropped {event.type} event: {e}")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def handle_event(self, event: WSEvent) -> None:
        if isinstance(event, WSChatMessage):
            accepted = self.pipeline.ingest(event.message)
            if accepted and event.message.sender == MessageSender.ADMIN:
                self.remote_typing.stop(
                    event.message.session_id, MessageSender.ADMIN
                )
        elif isinstance(event, WSTypingStart):
            if event.sender != MessageSender.USER:
                self.remote_typing.start(event.session_id, event.sender)
        elif isinstance(event, WSTypingStop):
            self.remote_typing.stop(event.session_id, event.sender)
        elif isinstance(event, WSPresence):
            self.presence.update(event.online)
        elif isinstance(event, WSBlocked):
            if self.machine.is_alive(event.session_id):
                self.machine.set_blocked(event.session_id, event.reason)
        elif isinstance(event, WSMessageError):
            # Rejections of a single frame, never a moderation signal
            logger.warning(
                f"Server rejected an event for {event.session_id}: {event.error}"
            )

    async def close(self) -> None:
        """Tear down the session, then the connection and gateway client."""
        if self.session_id is not None:
            self.orchestrator.cancel(self.session_id)
            self.machine.teardown(self.session_id)
            self.local_typing.clear_session(self.session_id)
            self.remote_typing.clear_session(self.session_id)
            self.pipeline.drop_timeline(self.session_id)
        for task in list(self._background):
            task.cancel()
        await self.transport.close()
        await self.gateway.close()

    def _on_transition(
        self, session: ChatSession, old_mode: SessionMode, new_mode: SessionMode
    ) -> None:
        if session.session_id == self.session_id:
            self._spawn(self._persist_mode(session.session_id, new_mode))

    async def _persist_mode(self, session_id: str, mode: SessionMode) -> None:
        try:
            await self.gateway.update_mode(session_id, mode)
        except ChatError as e:
            logger.warning(f"Could not record {mode.value} mode for {session_id}: {e}")

    def _on_disconnect(self) -> None:
        logger.warning("Chat transport disconnected")
        if self.session_id is not None:
            # No stop edges will arrive over a dead channel
            self.remote_typing.clear_session(self.session_id)
            self.local_typing.clear_session(self.session_id)

    async def reconnect(self) -> None:
        """Reopen the channel and pick up anything missed while offline."""
        session_id = self._require_session()
        await self.transport.reconnect()
        for message in await self.gateway.list_messages(session_id):
            self.pipeline.ingest(message)

    def _require_session(self) -> str:
        if self.session_id is None:
            raise RuntimeError("Chat has not been started")
        return self.session_id
