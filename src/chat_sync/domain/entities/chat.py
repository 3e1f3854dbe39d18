from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import ChatKind
from chat_sync.domain.value_objects.ids import ChatId, UserId


@dataclass(frozen=True, slots=True)
class ChatSession:
    id: ChatId
    kind: ChatKind
    updated_at: datetime
    participants: tuple[UserId, ...] = ()
    name: str | None = None
    event_id: str | None = None
    last_message: Message | None = None
    created_by: UserId | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        # participants behave as a set; keep first-seen order for display
        object.__setattr__(self, "participants", tuple(dict.fromkeys(self.participants)))
