"""Client for the durable message store and the bot-reply service.

The core never keeps authoritative state; every message goes through here before
it is shown or broadcast.
"""
import logging
from abc import ABC, abstractmethod
from typing import List, Optional
import httpx
from src.livechat.chat.errors import (
    BlockedError,
    BotServiceError,
    PayloadTooLargeError,
    PersistenceError,
    SessionNotFoundError,
)
from src.livechat.models.chat import (
    AttachmentPayload,
    BotReply,
    ChatMessage,
    ChatSession,
    MessageSender,
    Participant,
    SessionMode,
)

logger = logging.getLogger(__name__)


class BotService(ABC):
    @abstractmethod
    async def bot_reply(self, session_id: str, text: str) -> BotReply:
        ...


class MessageGateway(BotService):
    @abstractmethod
    async def create_session(
        self, participant: Participant, session_key: str
    ) -> ChatSession:
        ...

    @abstractmethod
    async def list_messages(self, session_id: str) -> List[ChatMessage]:
        ...

    @abstractmethod
    async def append_message(
        self, session_id: str, sender: MessageSender, body: str
    ) -> ChatMessage:
        ...

    @abstractmethod
    async def upload_attachment(
        self,
        session_id: str,
        sender: MessageSender,
        payload: AttachmentPayload
    ) -> ChatMessage:
        ...

    @abstractmethod
    async def update_mode(
        self, session_id: str, mode: SessionMode
    ) -> ChatSession:
        ...

    async def close(self) -> None:
        return None


class HttpMessageGateway(MessageGateway):
    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Gateway request {method} {url} failed: {e}")
            raise PersistenceError(str(e)) from e
        if response.status_code == 403:
            raise BlockedError(self._detail(response))
        if response.status_code == 404:
            raise SessionNotFoundError(self._detail(response))
        if response.status_code == 413:
            raise PayloadTooLargeError(self._detail(response))
        if response.is_error:
            logger.error(
                f"Gateway returned {response.status_code} for {method} {url}"
            )
            raise PersistenceError(self._detail(response))
        return response

    @staticmethod
    def _detail(response: httpx.Response) -> Optional[str]:
        try:
            return response.json().get("detail")
        except ValueError:
            return None

    async def create_session(
        self, participant: Participant, session_key: str
    ) -> ChatSession:
        response = await self._request(
            "POST",
            "/chat/sessions",
            json={"session_key": session_key, **participant.model_dump()},
        )
        return ChatSession.model_validate(response.json())

    async def list_messages(self, session_id: str) -> List[ChatMessage]:
        response = await self._request(
            "GET", f"/chat/sessions/{session_id}/messages"
        )
        return [ChatMessage.model_validate(item) for item in response.json()]

    async def append_message(
        self, session_id: str, sender: MessageSender, body: str
    ) -> ChatMessage:
        response = await self._request(
            "POST",
            f"/chat/sessions/{session_id}/messages",
            json={"sender": sender.value, "body": body},
        )
        return ChatMessage.model_validate(response.json())

    async def upload_attachment(
        self,
        session_id: str,
        sender: MessageSender,
        payload: AttachmentPayload
    ) -> ChatMessage:
        response = await self._request(
            "POST",
            f"/chat/sessions/{session_id}/attachments",
            data={"sender": sender.value},
            files={"file": (payload.name, payload.content, payload.mime_type)},
        )
        return ChatMessage.model_validate(response.json())

    async def update_mode(
        self, session_id: str, mode: SessionMode
    ) -> ChatSession:
        response = await self._request(
            "PUT",
            f"/chat/sessions/{session_id}/mode",
            json={"mode": mode.value},
        )
        return ChatSession.model_validate(response.json())

    async def bot_reply(self, session_id: str, text: str) -> BotReply:
        client = await self._get_client()
        try:
            response = await client.post(
                "/bot/reply", json={"session_id": session_id, "text": text}
            )
            response.raise_for_status()
            return BotReply.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as e:
            raise BotServiceError(str(e)) from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
