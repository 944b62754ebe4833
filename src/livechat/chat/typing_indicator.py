"""Typing indicators keyed by (session, sender).

A start edge is always followed by a stop edge, either explicit or from the
timeout, so an indicator can never stay on after the typist went quiet.
"""
import asyncio
import logging
from typing import Callable, Dict, Optional, Tuple
from src.livechat.models.chat import MessageSender

logger = logging.getLogger(__name__)

TypingKey = Tuple[str, MessageSender]
EdgeCallback = Callable[[str, MessageSender, bool], None]


class TypingTracker:
    def __init__(
        self,
        timeout_seconds: float = 1.0,
        on_change: Optional[EdgeCallback] = None
    ):
        self.timeout_seconds = timeout_seconds
        self.on_change = on_change
        self._timers: Dict[TypingKey, asyncio.TimerHandle] = {}

    def is_typing(self, session_id: str, sender: MessageSender) -> bool:
        return (session_id, sender) in self._timers

    def typists(self, session_id: str) -> list:
        return [sender for sid, sender in self._timers if sid == session_id]

    def start(self, session_id: str, sender: MessageSender) -> bool:
        """Arm (or re-arm) the timeout; True only when a start edge is emitted."""
        key = (session_id, sender)
        existing = self._timers.pop(key, None)
        if existing is not None:
            existing.cancel()
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(
            self.timeout_seconds, self._expire, key
        )
        if existing is not None:
            return False
        self._emit(session_id, sender, True)
        return True

    def stop(self, session_id: str, sender: MessageSender) -> bool:
        timer = self._timers.pop((session_id, sender), None)
        if timer is None:
            return False
        timer.cancel()
        self._emit(session_id, sender, False)
        return True

    def clear_session(self, session_id: str) -> None:
        """Drop a session's indicators without emitting stop edges."""
        for key in [key for key in self._timers if key[0] == session_id]:
            self._timers.pop(key).cancel()

    def _expire(self, key: TypingKey) -> None:
        if self._timers.pop(key, None) is not None:
            self._emit(key[0], key[1], False)

    def _emit(self, session_id: str, sender: MessageSender, typing: bool) -> None:
        if self.on_change is not None:
            self.on_change(session_id, sender, typing)
