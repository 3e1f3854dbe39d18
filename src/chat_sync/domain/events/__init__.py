from __future__ import annotations

from typing import Union

from chat_sync.domain.events.connected import Connected
from chat_sync.domain.events.disconnected import Disconnected
from chat_sync.domain.events.message_received import MessageReceived
from chat_sync.domain.events.message_sent import MessageSent
from chat_sync.domain.events.server_error import ServerError
from chat_sync.domain.events.typing_received import TypingReceived

ChatEvent = Union[
    Connected,
    Disconnected,
    MessageReceived,
    MessageSent,
    ServerError,
    TypingReceived,
]

__all__ = [
    "ChatEvent",
    "Connected",
    "Disconnected",
    "MessageReceived",
    "MessageSent",
    "ServerError",
    "TypingReceived",
]
