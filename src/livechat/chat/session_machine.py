"""Session mode management: bot -> escalating -> human, plus the block gate.

Escalation is one-way. Only an operator action outside this core could return a
session to automated handling.
"""
import asyncio
import logging
from typing import Callable, Dict, List, Optional, Tuple
from src.livechat.chat.errors import SessionNotFoundError
from src.livechat.models.chat import ChatSession, Participant, SessionMode

logger = logging.getLogger(__name__)

TransitionListener = Callable[[ChatSession, SessionMode, SessionMode], None]


class ChatSessionMachine:
    def __init__(self, escalation_grace_seconds: float = 2.0):
        self.escalation_grace_seconds = escalation_grace_seconds
        self.sessions: Dict[str, ChatSession] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._waiters: Dict[str, List[Tuple[SessionMode, asyncio.Future]]] = {}
        self._listeners: List[TransitionListener] = []

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    def begin(
        self,
        session_id: str,
        participant: Participant,
        session_key: Optional[str] = None,
        mode: SessionMode = SessionMode.BOT
    ) -> ChatSession:
        """Create a session, or return the one already begun.

        A resumed chat passes the mode it reached before, no transition fires.
        """
        if session_id in self.sessions:
            logger.info(f"Session {session_id} already started")
            return self.sessions[session_id]
        session = ChatSession(
            session_id=session_id,
            session_key=session_key,
            participant=participant,
            mode=mode,
        )
        self.sessions[session_id] = session
        logger.info(f"Started session {session_id} for {participant.email}")
        return session

    def get(self, session_id: str) -> ChatSession:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    def is_alive(self, session_id: str) -> bool:
        return session_id in self.sessions

    def mode(self, session_id: str) -> SessionMode:
        return self.get(session_id).mode

    def can_send(self, session_id: str) -> bool:
        # Mode decides who answers, never whether the user may speak
        return not self.get(session_id).blocked

    def request_escalation(self, session_id: str) -> bool:
        """Move a bot session towards human handling.

        Returns False when the session is already escalating or human, so
        repeated escalate flags while the transition is in flight are harmless.
        """
        session = self.get(session_id)
        if session.mode != SessionMode.BOT:
            logger.info(
                f"Escalation ignored for {session_id}, mode is "
                f"{session.mode.value}"
            )
            return False
        self._set_mode(session, SessionMode.ESCALATING)
        if self.escalation_grace_seconds <= 0:
            self._complete_escalation(session_id)
            return True
        loop = asyncio.get_running_loop()
        self._timers[session_id] = loop.call_later(
            self.escalation_grace_seconds,
            self._complete_escalation,
            session_id,
        )
        return True

    def _complete_escalation(self, session_id: str) -> None:
        self._timers.pop(session_id, None)
        session = self.sessions.get(session_id)
        # Torn down while the timer was pending
        if session is None or session.mode != SessionMode.ESCALATING:
            return
        self._set_mode(session, SessionMode.HUMAN)

    def set_blocked(self, session_id: str, reason: Optional[str] = None) -> None:
        session = self.get(session_id)
        if session.blocked:
            return
        session.blocked = True
        session.blocked_reason = reason
        logger.warning(f"Session {session_id} blocked: {reason}")

    async def wait_for_mode(
        self,
        session_id: str,
        mode: SessionMode,
        timeout: Optional[float] = None
    ) -> ChatSession:
        session = self.get(session_id)
        if session.mode == mode:
            return session
        future = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(session_id, []).append((mode, future))
        await asyncio.wait_for(future, timeout)
        return session

    def teardown(self, session_id: str) -> None:
        """Forget a session and cancel everything scheduled for it."""
        timer = self._timers.pop(session_id, None)
        if timer is not None:
            timer.cancel()
        for _, future in self._waiters.pop(session_id, []):
            if not future.done():
                future.cancel()
        if self.sessions.pop(session_id, None) is not None:
            logger.info(f"Session {session_id} torn down")

    def _set_mode(self, session: ChatSession, new_mode: SessionMode) -> None:
        old_mode = session.mode
        session.mode = new_mode
        logger.info(
            f"Session {session.session_id}: {old_mode.value} -> {new_mode.value}"
        )
        pending = self._waiters.get(session.session_id, [])
        for mode, future in list(pending):
            if mode == new_mode:
                pending.remove((mode, future))
                if not future.done():
                    future.set_result(session)
        for listener in self._listeners:
            try:
                listener(session, old_mode, new_mode)
            except Exception as e:
                logger.error(f"Transition listener failed: {e}")
