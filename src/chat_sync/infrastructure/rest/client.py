"""HTTP fallback for the live channel."""
from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from chat_sync.application.dto.requests import (
    CreateChatRequest,
    SendMessageRequest,
    UpdateChatRequest,
)
from chat_sync.application.exceptions import ApiError
from chat_sync.application.ports.storage import CredentialStore
from chat_sync.config import Settings, settings as default_settings
from chat_sync.domain.entities.chat import ChatSession
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.ids import ChatId, MessageId
from chat_sync.infrastructure.rest.mappers import (
    chat_to_entity,
    create_chat_body,
    message_to_entity,
    send_message_body,
    update_chat_body,
)
from chat_sync.infrastructure.rest.schemas import (
    ChatListResponse,
    ChatSchema,
    MessageListResponse,
    MessageSchema,
)

logger = logging.getLogger(__name__)

PREFIX = "/api/messages"


class ChatApiClient:
    """Implements application.ports.chat_api.ChatApi over httpx.

    The bearer token is read from the credential store on every request;
    refreshing it is the credential owner's job.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        *,
        settings: Settings = default_settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials
        self._token_key = settings.TOKEN_KEY
        self._client = httpx.AsyncClient(
            base_url=settings.API_BASE_URL.rstrip("/"),
            timeout=settings.REST_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_chat(self, request: CreateChatRequest) -> ChatSession:
        data = await self._request(
            "POST", f"{PREFIX}/chats", "Failed to create chat",
            body=create_chat_body(request),
        )
        return chat_to_entity(self._parse(ChatSchema, data, "Failed to create chat"))

    async def list_chats(self) -> list[ChatSession]:
        data = await self._request("GET", f"{PREFIX}/chats", "Failed to get chats")
        parsed = self._parse(ChatListResponse, data, "Failed to get chats")
        return [chat_to_entity(c) for c in parsed.chats or []]

    async def list_event_chats(self, event_id: str) -> list[ChatSession]:
        data = await self._request("GET", f"{PREFIX}/events/{event_id}/chats", "Failed to get event chats")
        parsed = self._parse(ChatListResponse, data, "Failed to get event chats")
        return [chat_to_entity(c) for c in parsed.chats or []]

    async def get_chat(self, chat_id: ChatId) -> ChatSession:
        data = await self._request("GET", f"{PREFIX}/chats/{chat_id}", "Failed to get chat")
        return chat_to_entity(self._parse(ChatSchema, data, "Failed to get chat"))

    async def update_chat(self, chat_id: ChatId, request: UpdateChatRequest) -> ChatSession:
        data = await self._request(
            "PUT", f"{PREFIX}/chats/{chat_id}", "Failed to update chat",
            body=update_chat_body(request),
        )
        return chat_to_entity(self._parse(ChatSchema, data, "Failed to update chat"))

    async def leave_chat(self, chat_id: ChatId) -> None:
        await self._request("DELETE", f"{PREFIX}/chats/{chat_id}", "Failed to leave chat")

    async def list_messages(
        self,
        chat_id: ChatId,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Message]:
        data = await self._request(
            "GET", f"{PREFIX}/chats/{chat_id}/messages", "Failed to get messages",
            params={"limit": limit, "offset": offset},
        )
        parsed = self._parse(MessageListResponse, data, "Failed to get messages")
        return [message_to_entity(m) for m in parsed.messages or []]

    async def send_message(self, chat_id: ChatId, request: SendMessageRequest) -> Message:
        data = await self._request(
            "POST", f"{PREFIX}/chats/{chat_id}/messages", "Failed to send message",
            body=send_message_body(request),
        )
        return message_to_entity(self._parse(MessageSchema, data, "Failed to send message"))

    async def mark_read(self, message_id: MessageId) -> None:
        await self._request("PUT", f"{PREFIX}/messages/{message_id}/read", "Failed to mark message as read")

    async def delete_message(self, message_id: MessageId) -> None:
        await self._request("DELETE", f"{PREFIX}/messages/{message_id}", "Failed to delete message")

    async def _request(
        self,
        method: str,
        path: str,
        failure: str,
        *,
        body: BaseModel | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        headers: dict[str, str] = {}
        token = await self._credentials.get(self._token_key)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        json_body = body.model_dump(mode="json", by_alias=True, exclude_none=True) if body else None

        try:
            response = await self._client.request(
                method, path, json=json_body, params=params, headers=headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise ApiError(failure) from exc

        if response.is_error:
            detail = _error_detail(response) or failure
            logger.warning("%s %s -> %d: %s", method, path, response.status_code, detail)
            raise ApiError(detail)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(failure) from exc

    @staticmethod
    def _parse(model: type[Any], data: Any, failure: str) -> Any:
        try:
            return model.model_validate(data)
        except PydanticValidationError as exc:
            logger.warning("Unexpected response shape: %s", exc)
            raise ApiError(failure) from exc


def _error_detail(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return None
