from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.ids import ChatId


@dataclass(frozen=True, slots=True)
class MessageSent:
    """Server confirmation of a message this client sent over the live channel."""

    message: Message
    chat_id: ChatId
