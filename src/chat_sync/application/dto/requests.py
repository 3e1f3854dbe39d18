from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.value_objects.enums import ChatKind, MessageKind
from chat_sync.domain.value_objects.ids import UserId


@dataclass(frozen=True, slots=True)
class CreateChatRequest:
    kind: ChatKind
    participants: tuple[UserId, ...]
    name: str | None = None
    event_id: str | None = None


@dataclass(frozen=True, slots=True)
class UpdateChatRequest:
    name: str | None = None
    participants: tuple[UserId, ...] | None = None


@dataclass(frozen=True, slots=True)
class SendMessageRequest:
    content: str
    kind: MessageKind = MessageKind.TEXT
    media_url: str | None = None
