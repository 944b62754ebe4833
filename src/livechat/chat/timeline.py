"""Ordered, duplicate-free message sequence for one session.

Messages reach a client twice: once in the gateway's response and once as the
channel echo of its own broadcast. A server id may not exist yet on the first
copy, so duplicates are found with a conflict key built from sender, payload
identity and timestamp instead of the id.

Entries keep arrival order. A late message is appended at the end and never
moved back by its timestamp, so the transcript shows what the user and the
operator actually saw.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Hashable, List, Set
from src.livechat.models.chat import ChatMessage

logger = logging.getLogger(__name__)

ConflictKey = Callable[[ChatMessage], Hashable]


def _normalize_timestamp(timestamp: datetime) -> datetime:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def payload_identity(message: ChatMessage) -> Hashable:
    """Body text, or (name, mime type, size) for attachments.

    The attachment url is left out because provisional local descriptors do
    not have one until the store assigns it.
    """
    if message.attachment is not None:
        attachment = message.attachment
        return ("attachment", attachment.name, attachment.mime_type,
                attachment.size_bytes)
    return ("text", message.body)


def default_conflict_key(message: ChatMessage) -> Hashable:
    return (
        message.sender.value,
        payload_identity(message),
        _normalize_timestamp(message.timestamp),
    )


class MessageTimeline:
    def __init__(
        self,
        session_id: str,
        conflict_key: ConflictKey = default_conflict_key
    ):
        self.session_id = session_id
        self.conflict_key = conflict_key
        self._messages: List[ChatMessage] = []
        self._keys: Set[Hashable] = set()

    def add(self, message: ChatMessage) -> bool:
        """Append unless an equivalent message is already present."""
        key = self.conflict_key(message)
        if key in self._keys:
            logger.debug(f"Dropped duplicate message in {self.session_id}")
            return False
        self._keys.add(key)
        self._messages.append(message)
        return True

    def contains(self, message: ChatMessage) -> bool:
        return self.conflict_key(message) in self._keys

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(list(self._messages))
