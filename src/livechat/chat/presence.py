"""Operator availability: one last-write-wins boolean, display only."""
import logging
from typing import Callable, List

logger = logging.getLogger(__name__)


class PresenceTracker:
    def __init__(self, online: bool = False):
        self._online = online
        self._subscribers: List[Callable[[bool], None]] = []

    @property
    def online(self) -> bool:
        return self._online

    def subscribe(self, callback: Callable[[bool], None]) -> None:
        self._subscribers.append(callback)

    def update(self, online: bool) -> bool:
        """Record operator availability; subscribers hear only real changes."""
        if online == self._online:
            return False
        self._online = online
        logger.info(f"Admin {'online' if online else 'offline'}")
        for callback in list(self._subscribers):
            callback(online)
        return True
