from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.value_objects.ids import ChatId, UserId


@dataclass(frozen=True, slots=True)
class TypingReceived:
    user_id: UserId
    chat_id: ChatId
