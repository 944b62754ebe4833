"""Tests for bot turns, serialization and escalation."""
import asyncio

import pytest

from helpers import FakeBotService, FakeGateway, FakeTransport
from src.livechat.chat.bot_orchestrator import (
    FALLBACK_REPLY,
    BotEscalationOrchestrator,
)
from src.livechat.chat.errors import BlockedError, PersistenceError
from src.livechat.chat.pipeline import MessagePipeline
from src.livechat.chat.session_machine import ChatSessionMachine
from src.livechat.models.chat import (
    AttachmentPayload,
    BotReply,
    MessageSender,
    SessionMode,
    TextPayload,
)
from src.livechat.models.websocket import WSChatMessage


async def _setup(participant, bot, grace=0.05):
    machine = ChatSessionMachine(escalation_grace_seconds=grace)
    machine.begin("s1", participant)
    gateway = FakeGateway()
    transport = FakeTransport()
    await transport.connect()
    pipeline = MessagePipeline(machine, gateway, transport)
    transport.on_event(
        lambda e: pipeline.ingest(e.message)
        if isinstance(e, WSChatMessage) else None
    )
    orchestrator = BotEscalationOrchestrator(machine, pipeline, bot)
    return machine, pipeline, gateway, orchestrator


def _transcript(pipeline):
    return [(m.sender, m.body) for m in pipeline.timeline("s1")]


class TestBotTurn:
    @pytest.mark.asyncio
    async def test_user_message_gets_bot_reply(self, participant):
        bot = FakeBotService(BotReply(body="We open at 8:00 AM."))
        machine, pipeline, _, _ = await _setup(participant, bot)
        await pipeline.submit(
            "s1", MessageSender.USER, TextPayload(body="What are your hours?")
        )
        assert _transcript(pipeline) == [
            (MessageSender.USER, "What are your hours?"),
            (MessageSender.BOT, "We open at 8:00 AM."),
        ]
        assert machine.mode("s1") == SessionMode.BOT

    @pytest.mark.asyncio
    async def test_escalate_flag_hands_over_after_reply(self, participant):
        bot = FakeBotService(
            BotReply(body="We open at 8:00 AM."),
            BotReply(body="Connecting you with our admin!", escalate=True),
        )
        machine, pipeline, _, _ = await _setup(participant, bot)
        await pipeline.submit(
            "s1", MessageSender.USER, TextPayload(body="What are your hours?")
        )
        await pipeline.submit(
            "s1", MessageSender.USER, TextPayload(body="I need a person")
        )
        assert machine.mode("s1") == SessionMode.ESCALATING
        await machine.wait_for_mode("s1", SessionMode.HUMAN, timeout=1)

        await pipeline.submit(
            "s1", MessageSender.USER, TextPayload(body="Hello?")
        )
        assert bot.calls == ["What are your hours?", "I need a person"]
        assert [sender for sender, _ in _transcript(pipeline)] == [
            MessageSender.USER, MessageSender.BOT,
            MessageSender.USER, MessageSender.BOT,
            MessageSender.USER,
        ]

    @pytest.mark.asyncio
    async def test_bot_failure_falls_back_and_escalates(self, participant):
        bot = FakeBotService(RuntimeError("bot service timed out"))
        machine, pipeline, _, _ = await _setup(participant, bot)
        await pipeline.submit(
            "s1", MessageSender.USER, TextPayload(body="hello")
        )
        assert _transcript(pipeline) == [
            (MessageSender.USER, "hello"),
            (MessageSender.BOT, FALLBACK_REPLY),
        ]
        await machine.wait_for_mode("s1", SessionMode.HUMAN, timeout=1)
        assert len(pipeline.timeline("s1")) == 2

    @pytest.mark.asyncio
    async def test_unsaved_bot_reply_still_escalates(self, participant):
        bot = FakeBotService(BotReply(body="We open at 8:00 AM."))
        machine, pipeline, gateway, _ = await _setup(participant, bot, grace=0)
        original = gateway.append_message

        async def fail_for_bot(session_id, sender, body):
            if sender == MessageSender.BOT:
                raise PersistenceError("write failed")
            return await original(session_id, sender, body)

        gateway.append_message = fail_for_bot
        await pipeline.submit(
            "s1", MessageSender.USER, TextPayload(body="hours?")
        )
        assert _transcript(pipeline) == [(MessageSender.USER, "hours?")]
        assert machine.mode("s1") == SessionMode.HUMAN

    @pytest.mark.asyncio
    async def test_attachments_do_not_start_a_turn(self, participant):
        bot = FakeBotService()
        _, pipeline, _, _ = await _setup(participant, bot)
        await pipeline.submit(
            "s1",
            MessageSender.USER,
            AttachmentPayload(name="receipt.pdf", mime_type="application/pdf",
                              content=b"%PDF-1.4"),
        )
        assert bot.calls == []
        assert len(pipeline.timeline("s1")) == 1


class TestSerialization:
    @pytest.mark.asyncio
    async def test_second_message_waits_for_first_reply(self, participant):
        gate = asyncio.Event()
        bot = FakeBotService(
            BotReply(body="b1"), BotReply(body="b2"), gate=gate
        )
        _, pipeline, _, orchestrator = await _setup(participant, bot)

        first = asyncio.create_task(pipeline.submit(
            "s1", MessageSender.USER, TextPayload(body="u1")
        ))
        await asyncio.wait_for(bot.called.wait(), timeout=1)
        second = asyncio.create_task(pipeline.submit(
            "s1", MessageSender.USER, TextPayload(body="u2")
        ))
        await asyncio.sleep(0.01)
        assert orchestrator.busy("s1")
        assert [body for _, body in _transcript(pipeline)] == ["u1"]

        gate.set()
        await asyncio.gather(first, second)
        assert [body for _, body in _transcript(pipeline)] == [
            "u1", "b1", "u2", "b2"
        ]

    @pytest.mark.asyncio
    async def test_reply_dropped_when_blocked_mid_turn(self, participant):
        gate = asyncio.Event()
        bot = FakeBotService(BotReply(body="late reply"), gate=gate)
        machine, pipeline, _, _ = await _setup(participant, bot)

        turn = asyncio.create_task(pipeline.submit(
            "s1", MessageSender.USER, TextPayload(body="hello")
        ))
        await asyncio.wait_for(bot.called.wait(), timeout=1)
        machine.set_blocked("s1", "Blocked by staff")
        gate.set()
        await turn

        assert _transcript(pipeline) == [(MessageSender.USER, "hello")]

    @pytest.mark.asyncio
    async def test_queued_message_is_gated_again(self, participant):
        gate = asyncio.Event()
        bot = FakeBotService(BotReply(body="b1"), gate=gate)
        machine, pipeline, gateway, _ = await _setup(participant, bot)

        first = asyncio.create_task(pipeline.submit(
            "s1", MessageSender.USER, TextPayload(body="u1")
        ))
        await asyncio.wait_for(bot.called.wait(), timeout=1)
        second = asyncio.create_task(pipeline.submit(
            "s1", MessageSender.USER, TextPayload(body="u2")
        ))
        await asyncio.sleep(0.01)
        machine.set_blocked("s1", "Blocked by staff")
        gate.set()
        await first
        with pytest.raises(BlockedError):
            await second
        assert [m.body for m in gateway.messages] == ["u1"]

    @pytest.mark.asyncio
    async def test_cancel_stops_pending_turns(self, participant):
        gate = asyncio.Event()
        bot = FakeBotService(BotReply(body="b1"), gate=gate)
        machine, pipeline, _, orchestrator = await _setup(participant, bot)

        turn = asyncio.create_task(pipeline.submit(
            "s1", MessageSender.USER, TextPayload(body="u1")
        ))
        await asyncio.wait_for(bot.called.wait(), timeout=1)
        orchestrator.cancel("s1")
        machine.teardown("s1")
        with pytest.raises(asyncio.CancelledError):
            await turn
