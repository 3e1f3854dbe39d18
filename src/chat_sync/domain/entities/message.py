from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime

from chat_sync.domain.value_objects.enums import MessageKind, MessageStatus
from chat_sync.domain.value_objects.ids import ChatId, MessageId, UserId


@dataclass(frozen=True, slots=True)
class Message:
    id: MessageId
    chat_id: ChatId
    sender_id: UserId
    kind: MessageKind
    content: str
    created_at: datetime
    media_url: str | None = None
    status: MessageStatus = MessageStatus.SENT
    read_by: frozenset[UserId] = field(default_factory=frozenset)
    updated_at: datetime | None = None

    def merged_with(self, newer: Message) -> Message:
        """Return ``newer`` without letting status or readers go backwards."""
        status = self.status if self.status.rank > newer.status.rank else newer.status
        return replace(
            newer,
            status=status,
            read_by=self.read_by | newer.read_by,
            created_at=self.created_at,
        )
