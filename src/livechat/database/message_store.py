"""Durable storage behind the gateway routes.

MongoDB in deployments; the in-memory store serves local runs and tests.
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from uuid import uuid4
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from src.livechat.api.serialization import message_from_doc, session_from_doc
from src.livechat.models.chat import (
    Attachment,
    ChatMessage,
    ChatSession,
    ChatStatus,
    MessageSender,
    Participant,
    SessionMode,
    utc_now,
)

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return f"session-{uuid4()}"


def activity_update(message: ChatMessage) -> dict:
    """Session fields touched by a new message.

    Customer messages add to the unread count, any staff or bot answer clears it.
    """
    update = {
        "last_message": (
            message.body if message.body is not None else message.attachment.name
        ),
        "last_message_at": message.timestamp,
    }
    if message.sender != MessageSender.USER:
        update["unread_count"] = 0
    return update


class MessageStore(ABC):
    @abstractmethod
    async def get_or_create_session(
        self, session_key: str, participant: Participant
    ) -> ChatSession:
        """Return the session for session_key, creating it on first call.

        Participant details are refreshed on every call.
        """

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        ...

    @abstractmethod
    async def list_sessions(self) -> List[ChatSession]:
        """Sessions with the most recent activity first"""

    @abstractmethod
    async def list_messages(
        self, session_id: str, limit: int = 200
    ) -> List[ChatMessage]:
        """The newest `limit` messages, oldest first"""

    @abstractmethod
    async def append_message(
        self,
        session_id: str,
        sender: MessageSender,
        body: Optional[str] = None,
        attachment: Optional[Attachment] = None
    ) -> ChatMessage:
        ...

    @abstractmethod
    async def set_blocked(
        self, session_id: str, reason: str
    ) -> Optional[ChatSession]:
        ...

    @abstractmethod
    async def mark_read(self, session_id: str) -> Optional[ChatSession]:
        ...

    @abstractmethod
    async def set_status(
        self, session_id: str, status: ChatStatus
    ) -> Optional[ChatSession]:
        ...

    @abstractmethod
    async def set_mode(
        self, session_id: str, mode: SessionMode
    ) -> Optional[ChatSession]:
        ...

    async def cleanup(self) -> None:
        return None


class InMemoryMessageStore(MessageStore):
    def __init__(self):
        self.sessions: Dict[str, ChatSession] = {}
        self.session_keys: Dict[str, str] = {}
        self.messages: Dict[str, List[ChatMessage]] = {}

    async def get_or_create_session(
        self, session_key: str, participant: Participant
    ) -> ChatSession:
        session_id = self.session_keys.get(session_key)
        if session_id is not None:
            session = self.sessions[session_id]
            session.participant = participant
            return session.model_copy(deep=True)
        session = ChatSession(
            session_id=new_session_id(),
            session_key=session_key,
            participant=participant,
        )
        self.sessions[session.session_id] = session
        self.session_keys[session_key] = session.session_id
        self.messages[session.session_id] = []
        logger.info(f"Created session {session.session_id} for {session_key}")
        return session.model_copy(deep=True)

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        session = self.sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def list_sessions(self) -> List[ChatSession]:
        sessions = sorted(
            self.sessions.values(),
            key=lambda s: s.last_message_at,
            reverse=True,
        )
        return [s.model_copy(deep=True) for s in sessions]

    async def list_messages(
        self, session_id: str, limit: int = 200
    ) -> List[ChatMessage]:
        if limit <= 0:
            return []
        return list(self.messages.get(session_id, [])[-limit:])

    async def append_message(
        self,
        session_id: str,
        sender: MessageSender,
        body: Optional[str] = None,
        attachment: Optional[Attachment] = None
    ) -> ChatMessage:
        message = ChatMessage(
            id=uuid4().hex,
            session_id=session_id,
            sender=sender,
            body=body,
            attachment=attachment,
        )
        self.messages.setdefault(session_id, []).append(message)
        session = self.sessions.get(session_id)
        if session is not None:
            for field, value in activity_update(message).items():
                setattr(session, field, value)
            if sender == MessageSender.USER:
                session.unread_count += 1
        return message

    def _update(self, session_id: str, **fields) -> Optional[ChatSession]:
        session = self.sessions.get(session_id)
        if session is None:
            return None
        for field, value in fields.items():
            setattr(session, field, value)
        return session.model_copy(deep=True)

    async def set_blocked(
        self, session_id: str, reason: str
    ) -> Optional[ChatSession]:
        return self._update(session_id, blocked=True, blocked_reason=reason)

    async def mark_read(self, session_id: str) -> Optional[ChatSession]:
        return self._update(session_id, unread_count=0)

    async def set_status(
        self, session_id: str, status: ChatStatus
    ) -> Optional[ChatSession]:
        return self._update(session_id, status=status)

    async def set_mode(
        self, session_id: str, mode: SessionMode
    ) -> Optional[ChatSession]:
        return self._update(session_id, mode=mode)


class MongoMessageStore(MessageStore):
    def __init__(self, mongodb_client, cfg):
        self.mongodb_client = mongodb_client
        db = mongodb_client.database(cfg.mongodb.db_name)
        self.sessions_collection = db[cfg.mongodb.session_collection]
        self.messages_collection = db[cfg.mongodb.message_collection]

    async def ensure_indexes(self) -> None:
        await self.sessions_collection.create_index("session_key", unique=True)
        await self.sessions_collection.create_index("session_id", unique=True)
        await self.sessions_collection.create_index(
            [("last_message_at", DESCENDING)]
        )
        await self.messages_collection.create_index(
            [("session_id", ASCENDING), ("timestamp", ASCENDING)]
        )

    async def get_or_create_session(
        self, session_key: str, participant: Participant
    ) -> ChatSession:
        now = utc_now()
        # Upsert keyed by session_key keeps retried creates from forking
        doc = await self.sessions_collection.find_one_and_update(
            {"session_key": session_key},
            {
                "$set": {"participant": participant.model_dump()},
                "$setOnInsert": {
                    "session_id": new_session_id(),
                    "session_key": session_key,
                    "mode": SessionMode.BOT.value,
                    "blocked": False,
                    "blocked_reason": None,
                    "status": ChatStatus.ACTIVE.value,
                    "unread_count": 0,
                    "last_message": "",
                    "last_message_at": now,
                    "created_at": now,
                },
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return session_from_doc(doc)

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        doc = await self.sessions_collection.find_one({"session_id": session_id})
        return session_from_doc(doc) if doc else None

    async def list_sessions(self) -> List[ChatSession]:
        cursor = self.sessions_collection.find({}).sort("last_message_at", DESCENDING)
        return [session_from_doc(doc) async for doc in cursor]

    async def list_messages(
        self, session_id: str, limit: int = 200
    ) -> List[ChatMessage]:
        if limit <= 0:
            return []
        # Newest first to apply the limit, then back to stored order
        cursor = self.messages_collection.find(
            {"session_id": session_id}
        ).sort([("timestamp", DESCENDING), ("_id", DESCENDING)]).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [message_from_doc(doc) for doc in reversed(docs)]

    async def append_message(
        self,
        session_id: str,
        sender: MessageSender,
        body: Optional[str] = None,
        attachment: Optional[Attachment] = None
    ) -> ChatMessage:
        message = ChatMessage(
            session_id=session_id,
            sender=sender,
            body=body,
            attachment=attachment,
        )
        doc = message.model_dump(exclude={"id"}, mode="python")
        doc["sender"] = sender.value
        result = await self.messages_collection.insert_one(doc)
        logger.info(f"Added message with ID: {result.inserted_id}")
        update = {"$set": activity_update(message)}
        if sender == MessageSender.USER:
            update["$inc"] = {"unread_count": 1}
        await self.sessions_collection.update_one(
            {"session_id": session_id}, update
        )
        return message.model_copy(update={"id": str(result.inserted_id)})

    async def _update(self, session_id: str, **fields) -> Optional[ChatSession]:
        doc = await self.sessions_collection.find_one_and_update(
            {"session_id": session_id},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        return session_from_doc(doc) if doc else None

    async def set_blocked(
        self, session_id: str, reason: str
    ) -> Optional[ChatSession]:
        return await self._update(
            session_id, blocked=True, blocked_reason=reason
        )

    async def mark_read(self, session_id: str) -> Optional[ChatSession]:
        return await self._update(session_id, unread_count=0)

    async def set_status(
        self, session_id: str, status: ChatStatus
    ) -> Optional[ChatSession]:
        return await self._update(session_id, status=status.value)

    async def set_mode(
        self, session_id: str, mode: SessionMode
    ) -> Optional[ChatSession]:
        return await self._update(session_id, mode=mode.value)

    async def cleanup(self) -> None:
        await self.mongodb_client.cleanup()
