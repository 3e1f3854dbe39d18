"""Chat list snapshot encoding for the local cache."""
from __future__ import annotations

from pydantic import TypeAdapter

from chat_sync.domain.entities.chat import ChatSession
from chat_sync.infrastructure.rest.mappers import chat_to_entity, chat_to_schema
from chat_sync.infrastructure.rest.schemas import ChatSchema

_chat_list = TypeAdapter(list[ChatSchema])


def serialize_chats(chats: list[ChatSession]) -> str:
    return _chat_list.dump_json(
        [chat_to_schema(c) for c in chats],
        by_alias=True,
        exclude_none=True,
    ).decode()


def deserialize_chats(raw: str | bytes) -> list[ChatSession]:
    return [chat_to_entity(s) for s in _chat_list.validate_json(raw)]
