"""Drives a bot turn: user message -> bot reply -> possible escalation.

Turns are serialized per session. A user message that arrives while a turn is in
flight waits for it, so replies can never interleave on the timeline.
"""
import asyncio
import logging
from typing import Dict, Set
from src.livechat.chat.errors import ChatError, SessionNotFoundError
from src.livechat.chat.gateway import BotService
from src.livechat.chat.pipeline import MessagePipeline
from src.livechat.chat.session_machine import ChatSessionMachine
from src.livechat.models.chat import (
    BotReply,
    ChatMessage,
    MessageSender,
    SessionMode,
    TextPayload,
)

logger = logging.getLogger(__name__)

FALLBACK_REPLY = (
    "I'm having trouble understanding. Let me connect you with our admin!"
)


class BotEscalationOrchestrator:
    def __init__(
        self,
        machine: ChatSessionMachine,
        pipeline: MessagePipeline,
        bot_service: BotService,
        fallback_reply: str = FALLBACK_REPLY
    ):
        self.machine = machine
        self.pipeline = pipeline
        self.bot_service = bot_service
        self.fallback_reply = fallback_reply
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Dict[str, Set[asyncio.Task]] = {}
        pipeline.attach_orchestrator(self)

    def _lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    def busy(self, session_id: str) -> bool:
        return self._lock(session_id).locked()

    async def run_turn(
        self, session_id: str, payload: TextPayload
    ) -> ChatMessage:
        """Publish the user's message and, in bot mode, the bot's answer."""
        task = asyncio.current_task()
        self._tasks.setdefault(session_id, set()).add(task)
        try:
            async with self._lock(session_id):
                if not self.machine.is_alive(session_id):
                    raise SessionNotFoundError(f"Session {session_id} closed")
                # Gate again, the session may have been blocked while queued
                self.pipeline.check_can_send(session_id)
                user_message = await self.pipeline.publish(
                    session_id, MessageSender.USER, payload
                )
                if (
                    self.machine.is_alive(session_id)
                    and self.machine.mode(session_id) == SessionMode.BOT
                ):
                    await self._bot_turn(session_id, payload.body)
                return user_message
        finally:
            self._tasks.get(session_id, set()).discard(task)

    async def _bot_turn(self, session_id: str, text: str) -> None:
        try:
            reply = await self.bot_service.bot_reply(session_id, text)
        except Exception as e:
            # Service failure and a deliberate escalate flag end the same way
            logger.error(f"Bot service failed for {session_id}: {e}")
            reply = BotReply(body=self.fallback_reply, escalate=True)
        logger.info(
            f"Bot reply for {session_id} (escalate={reply.escalate}): "
            f"{reply.body}"
        )
        if not self.machine.is_alive(session_id):
            return
        if not self.machine.can_send(session_id):
            logger.info(f"Session {session_id} blocked, bot reply dropped")
            return
        escalate = reply.escalate
        try:
            await self.pipeline.publish(
                session_id, MessageSender.BOT, TextPayload(body=reply.body)
            )
        except ChatError as e:
            logger.error(f"Could not save bot reply for {session_id}: {e}")
            escalate = True
        if escalate and self.machine.is_alive(session_id):
            self.machine.request_escalation(session_id)

    def cancel(self, session_id: str) -> None:
        """Cancel the in-flight turn and every turn queued behind it."""
        current = asyncio.current_task()
        for task in list(self._tasks.pop(session_id, set())):
            if task is not current and not task.done():
                task.cancel()
        self._locks.pop(session_id, None)
