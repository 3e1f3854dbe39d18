from __future__ import annotations

from typing import Protocol

from chat_sync.application.dto.requests import (
    CreateChatRequest,
    SendMessageRequest,
    UpdateChatRequest,
)
from chat_sync.domain.entities.chat import ChatSession
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.ids import ChatId, MessageId


class ChatApi(Protocol):
    """Request/response fallback for the live channel.

    Every method raises ``ApiError`` on any non-success.
    """

    async def create_chat(self, request: CreateChatRequest) -> ChatSession: ...

    async def list_chats(self) -> list[ChatSession]: ...

    async def get_chat(self, chat_id: ChatId) -> ChatSession: ...

    async def update_chat(self, chat_id: ChatId, request: UpdateChatRequest) -> ChatSession: ...

    async def leave_chat(self, chat_id: ChatId) -> None: ...

    async def list_messages(
        self,
        chat_id: ChatId,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Message]: ...

    async def send_message(self, chat_id: ChatId, request: SendMessageRequest) -> Message: ...

    async def mark_read(self, message_id: MessageId) -> None: ...

    async def delete_message(self, message_id: MessageId) -> None: ...
