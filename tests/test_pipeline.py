"""Tests for the send path: validation, gating, persist-then-broadcast."""
import pytest

from helpers import FakeGateway, FakeTransport
from src.livechat.chat.errors import (
    BlockedError,
    InvalidPayloadError,
    PayloadTooLargeError,
    PersistenceError,
    TransportUnavailableError,
)
from src.livechat.chat.pipeline import DraftBuffer, MessagePipeline
from src.livechat.chat.session_machine import ChatSessionMachine
from src.livechat.models.chat import (
    AttachmentPayload,
    ChatMessage,
    MessageSender,
    TextPayload,
)
from src.livechat.models.websocket import WSChatMessage


class FailingSendTransport(FakeTransport):
    async def _send(self, event):
        raise TransportUnavailableError("socket closed mid-send")


async def _pipeline(participant, transport=None, max_bytes=1024):
    machine = ChatSessionMachine(escalation_grace_seconds=0)
    machine.begin("s1", participant)
    gateway = FakeGateway()
    transport = transport or FakeTransport()
    await transport.connect()
    pipeline = MessagePipeline(machine, gateway, transport, max_bytes)

    def on_event(event):
        if isinstance(event, WSChatMessage):
            pipeline.ingest(event.message)

    transport.on_event(on_event)
    return pipeline, machine, gateway, transport


def _draft(text):
    draft = DraftBuffer(text)
    return draft, draft.take()


class TestPublish:
    @pytest.mark.asyncio
    async def test_echo_of_own_message_is_not_duplicated(self, participant):
        pipeline, _, gateway, transport = await _pipeline(participant)
        message = await pipeline.submit(
            "s1", MessageSender.USER, TextPayload(body="  hello  ")
        )
        assert message.body == "hello"
        assert len(gateway.messages) == 1
        assert len(transport.sent_of_type("message")) == 1
        assert [m.body for m in pipeline.timeline("s1")] == ["hello"]

    @pytest.mark.asyncio
    async def test_attachment_echo_is_not_duplicated(self, participant):
        pipeline, _, gateway, _ = await _pipeline(participant)
        message = await pipeline.submit(
            "s1",
            MessageSender.USER,
            AttachmentPayload(name="hull.png", mime_type="image/png",
                              content=b"\x89PNG...."),
        )
        assert message.attachment.url is not None
        assert gateway.calls == ["upload_attachment"]
        assert len(pipeline.timeline("s1")) == 1

    @pytest.mark.asyncio
    async def test_broadcast_failure_after_save_keeps_message(self, participant):
        pipeline, _, gateway, _ = await _pipeline(
            participant, transport=FailingSendTransport()
        )
        message = await pipeline.submit(
            "s1", MessageSender.USER, TextPayload(body="hello")
        )
        assert gateway.messages == [message]
        assert pipeline.timeline("s1").messages == [message]

    @pytest.mark.asyncio
    async def test_remote_messages_keep_arrival_order(self, participant):
        pipeline, _, _, transport = await _pipeline(participant)
        await pipeline.submit("s1", MessageSender.USER, TextPayload(body="hi"))
        admin = ChatMessage(session_id="s1", sender=MessageSender.ADMIN,
                            body="Hello, how can I help?")
        await transport.deliver(WSChatMessage(message=admin))
        await transport.deliver(WSChatMessage(message=admin))
        assert [m.body for m in pipeline.timeline("s1")] == [
            "hi", "Hello, how can I help?"
        ]

    @pytest.mark.asyncio
    async def test_ingest_ignores_closed_sessions(self, participant):
        pipeline, machine, _, _ = await _pipeline(participant)
        machine.teardown("s1")
        late = ChatMessage(session_id="s1", sender=MessageSender.ADMIN,
                           body="too late")
        assert pipeline.ingest(late) is False


class TestRejections:
    @pytest.mark.asyncio
    async def test_blank_text_is_rejected_before_network(self, participant):
        pipeline, _, gateway, _ = await _pipeline(participant)
        draft, text = _draft("   ")
        with pytest.raises(InvalidPayloadError):
            await pipeline.submit(
                "s1", MessageSender.USER, TextPayload(body=text), draft
            )
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_oversized_attachment_never_reaches_gateway(self, participant):
        pipeline, _, gateway, transport = await _pipeline(participant)
        with pytest.raises(PayloadTooLargeError):
            await pipeline.submit(
                "s1",
                MessageSender.USER,
                AttachmentPayload(name="video.mp4", mime_type="video/mp4",
                                  content=b"x" * 1025),
            )
        assert gateway.calls == []
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_empty_attachment_is_invalid(self, participant):
        pipeline, _, _, _ = await _pipeline(participant)
        with pytest.raises(InvalidPayloadError):
            await pipeline.submit(
                "s1",
                MessageSender.USER,
                AttachmentPayload(name="empty.txt", mime_type="text/plain",
                                  content=b""),
            )

    @pytest.mark.asyncio
    async def test_blocked_session_restores_draft(self, participant):
        pipeline, machine, gateway, _ = await _pipeline(participant)
        machine.set_blocked("s1", "Blocked by staff")
        draft, text = _draft("let me in")
        with pytest.raises(BlockedError):
            await pipeline.submit(
                "s1", MessageSender.USER, TextPayload(body=text), draft
            )
        assert draft.text == "let me in"
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_gateway_refusal_blocks_session(self, participant):
        pipeline, machine, gateway, _ = await _pipeline(participant)
        gateway.blocked = True
        with pytest.raises(BlockedError):
            await pipeline.submit(
                "s1", MessageSender.USER, TextPayload(body="hello")
            )
        assert machine.can_send("s1") is False

    @pytest.mark.asyncio
    async def test_disconnected_transport_restores_draft(self, participant):
        pipeline, _, gateway, transport = await _pipeline(participant)
        transport.drop()
        draft, text = _draft("are you there?")
        with pytest.raises(TransportUnavailableError) as exc_info:
            await pipeline.submit(
                "s1", MessageSender.USER, TextPayload(body=text), draft
            )
        assert exc_info.value.retryable is True
        assert draft.text == "are you there?"
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_failed_save_is_never_broadcast(self, participant):
        pipeline, _, gateway, transport = await _pipeline(participant)
        gateway.fail_with = PersistenceError("database unavailable")
        draft, text = _draft("hello")
        with pytest.raises(PersistenceError):
            await pipeline.submit(
                "s1", MessageSender.USER, TextPayload(body=text), draft
            )
        assert draft.text == "hello"
        assert transport.sent == []
        assert len(pipeline.timeline("s1")) == 0
