from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_sync.domain.value_objects.ids import ChatId, UserId


@dataclass(frozen=True, slots=True)
class TypingState:
    """Last typer seen in a chat. One slot per chat, not a roster."""

    chat_id: ChatId
    user_id: UserId
    started_at: datetime

    def is_active(self, now: datetime, ttl_seconds: float) -> bool:
        return (now - self.started_at).total_seconds() < ttl_seconds
