from __future__ import annotations

from chat_sync.application.dto.requests import (
    CreateChatRequest,
    SendMessageRequest,
    UpdateChatRequest,
)
from chat_sync.domain.entities.chat import ChatSession
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.ids import ChatId, MessageId, UserId
from chat_sync.infrastructure.rest.schemas import (
    ChatSchema,
    CreateChatBody,
    MessageSchema,
    SendMessageBody,
    UpdateChatBody,
)


def message_to_entity(schema: MessageSchema) -> Message:
    return Message(
        id=MessageId(schema.id),
        chat_id=ChatId(schema.chat_id),
        sender_id=UserId(schema.sender_id),
        kind=schema.type,
        content=schema.content,
        media_url=schema.media_url or None,
        status=schema.status,
        read_by=frozenset(UserId(u) for u in schema.read_by or ()),
        created_at=schema.created_at,
        updated_at=schema.updated_at,
    )


def message_to_schema(entity: Message) -> MessageSchema:
    return MessageSchema(
        id=entity.id,
        chat_id=entity.chat_id,
        sender_id=entity.sender_id,
        type=entity.kind,
        content=entity.content,
        media_url=entity.media_url,
        status=entity.status,
        read_by=sorted(entity.read_by),
        created_at=entity.created_at,
        updated_at=entity.updated_at,
    )


def chat_to_entity(schema: ChatSchema) -> ChatSession:
    return ChatSession(
        id=ChatId(schema.id),
        kind=schema.type,
        name=schema.name or None,
        participants=tuple(UserId(p) for p in schema.participants),
        event_id=schema.event_id or None,
        last_message=message_to_entity(schema.last_message) if schema.last_message else None,
        created_by=UserId(schema.created_by) if schema.created_by else None,
        created_at=schema.created_at,
        updated_at=schema.updated_at,
    )


def chat_to_schema(entity: ChatSession) -> ChatSchema:
    return ChatSchema(
        id=entity.id,
        type=entity.kind,
        name=entity.name,
        participants=list(entity.participants),
        event_id=entity.event_id,
        last_message=message_to_schema(entity.last_message) if entity.last_message else None,
        created_by=entity.created_by,
        created_at=entity.created_at,
        updated_at=entity.updated_at,
    )


def create_chat_body(request: CreateChatRequest) -> CreateChatBody:
    return CreateChatBody(
        type=request.kind,
        participants=list(request.participants),
        name=request.name,
        event_id=request.event_id,
    )


def update_chat_body(request: UpdateChatRequest) -> UpdateChatBody:
    return UpdateChatBody(
        name=request.name,
        participants=list(request.participants) if request.participants is not None else None,
    )


def send_message_body(request: SendMessageRequest) -> SendMessageBody:
    return SendMessageBody(
        type=request.kind,
        content=request.content,
        media_url=request.media_url,
    )
