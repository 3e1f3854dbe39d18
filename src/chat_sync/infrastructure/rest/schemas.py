"""JSON shapes shared by the REST API and the live channel (camelCase on the wire)."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chat_sync.domain.value_objects.enums import ChatKind, MessageKind, MessageStatus


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class MessageSchema(WireModel):
    id: str
    chat_id: str
    sender_id: str
    type: MessageKind
    content: str = ""
    media_url: str | None = None
    status: MessageStatus = MessageStatus.SENT
    read_by: list[str] | None = None
    created_at: datetime
    updated_at: datetime | None = None


class ChatSchema(WireModel):
    id: str
    type: ChatKind
    name: str | None = None
    participants: list[str] = Field(default_factory=list)
    event_id: str | None = None
    last_message: MessageSchema | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime


class ChatListResponse(WireModel):
    chats: list[ChatSchema] | None = None


class MessageListResponse(WireModel):
    messages: list[MessageSchema] | None = None
    pagination: dict[str, Any] | None = None


class CreateChatBody(WireModel):
    type: ChatKind
    participants: list[str]
    name: str | None = None
    event_id: str | None = None


class UpdateChatBody(WireModel):
    name: str | None = None
    participants: list[str] | None = None


class SendMessageBody(WireModel):
    type: MessageKind = MessageKind.TEXT
    content: str
    media_url: str | None = None
