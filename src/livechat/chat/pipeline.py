"""Message synchronization: one ordered, duplicate-free timeline per session.

Locally sent messages follow persist -> append -> broadcast, in that order, so
nothing is broadcast that the store does not have. Channel deliveries (including
echoes of our own broadcasts) go through ingest and are de-duplicated by the
timeline's conflict key.
"""
import logging
from typing import Dict, Optional, Union
from src.livechat.chat.errors import (
    BlockedError,
    ChatError,
    InvalidPayloadError,
    PayloadTooLargeError,
    TransportUnavailableError,
)
from src.livechat.chat.gateway import MessageGateway
from src.livechat.chat.session_machine import ChatSessionMachine
from src.livechat.chat.timeline import (
    ConflictKey,
    MessageTimeline,
    default_conflict_key,
)
from src.livechat.chat.transport import TransportChannel
from src.livechat.models.chat import (
    AttachmentPayload,
    ChatMessage,
    MessageSender,
    TextPayload,
)
from src.livechat.models.websocket import WSChatMessage

logger = logging.getLogger(__name__)

MAX_ATTACHMENT_BYTES = 5 * 1024 * 1024

Payload = Union[TextPayload, AttachmentPayload]


class DraftBuffer:
    """The text the user is composing; refilled when a send fails."""

    def __init__(self, text: str = ""):
        self.text = text

    def take(self) -> str:
        text, self.text = self.text, ""
        return text

    def restore(self, text: str) -> None:
        self.text = text


class MessagePipeline:
    def __init__(
        self,
        machine: ChatSessionMachine,
        gateway: MessageGateway,
        transport: TransportChannel,
        max_attachment_bytes: int = MAX_ATTACHMENT_BYTES,
        conflict_key: ConflictKey = default_conflict_key
    ):
        self.machine = machine
        self.gateway = gateway
        self.transport = transport
        self.max_attachment_bytes = max_attachment_bytes
        self.conflict_key = conflict_key
        self.orchestrator = None
        self.timelines: Dict[str, MessageTimeline] = {}

    def attach_orchestrator(self, orchestrator) -> None:
        self.orchestrator = orchestrator

    def timeline(self, session_id: str) -> MessageTimeline:
        if session_id not in self.timelines:
            self.timelines[session_id] = MessageTimeline(
                session_id, self.conflict_key
            )
        return self.timelines[session_id]

    def drop_timeline(self, session_id: str) -> None:
        self.timelines.pop(session_id, None)

    def validate(self, payload: Payload) -> Payload:
        """Reject bad payloads before anything touches the network."""
        if isinstance(payload, AttachmentPayload):
            if not payload.name or payload.size_bytes == 0:
                raise InvalidPayloadError("Attachment is empty.")
            if payload.size_bytes > self.max_attachment_bytes:
                raise PayloadTooLargeError(
                    f"{payload.name} is {payload.size_bytes} bytes, limit is "
                    f"{self.max_attachment_bytes}"
                )
            return payload
        body = payload.body.strip()
        if not body:
            raise InvalidPayloadError()
        return TextPayload(body=body)

    async def submit(
        self,
        session_id: str,
        sender: MessageSender,
        payload: Payload,
        draft: Optional[DraftBuffer] = None
    ) -> ChatMessage:
        """Send a message from this client.

        User text in a bot-served session runs as a bot turn, so the reply
        lands before any later user message. On failure the text goes back
        into the draft and the error propagates for a manual retry.
        """
        try:
            payload = self.validate(payload)
            self.check_can_send(session_id)
            if not self.transport.connected:
                raise TransportUnavailableError()
            if (
                sender == MessageSender.USER
                and self.orchestrator is not None
                and isinstance(payload, TextPayload)
            ):
                return await self.orchestrator.run_turn(session_id, payload)
            return await self.publish(session_id, sender, payload)
        except ChatError as e:
            if isinstance(e, BlockedError) and self.machine.is_alive(session_id):
                self.machine.set_blocked(session_id, e.detail)
            if draft is not None and isinstance(payload, TextPayload):
                draft.restore(payload.body)
            logger.warning(f"Send failed in {session_id}: {e.detail}")
            raise

    def check_can_send(self, session_id: str) -> None:
        if not self.machine.can_send(session_id):
            raise BlockedError(self.machine.get(session_id).blocked_reason)

    async def publish(
        self,
        session_id: str,
        sender: MessageSender,
        payload: Payload
    ) -> ChatMessage:
        """Persist, append locally, then broadcast. No gates, no bot turn."""
        if isinstance(payload, AttachmentPayload):
            message = await self.gateway.upload_attachment(
                session_id, sender, payload
            )
        else:
            message = await self.gateway.append_message(
                session_id, sender, payload.body
            )
        if not self.machine.is_alive(session_id):
            logger.info(f"Session {session_id} closed during send")
            return message
        self.timeline(session_id).add(message)
        try:
            await self.transport.send(WSChatMessage(message=message))
        except TransportUnavailableError as e:
            # Already durable, a resend would duplicate it
            logger.warning(
                f"Message {message.id} saved but not broadcast: {e.detail}"
            )
        return message

    def ingest(self, message: ChatMessage) -> bool:
        """Accept a channel delivery; False for duplicates and closed sessions."""
        if not self.machine.is_alive(message.session_id):
            logger.debug(f"Ignoring message for unknown {message.session_id}")
            return False
        return self.timeline(message.session_id).add(message)
