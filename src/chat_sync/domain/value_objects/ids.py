from __future__ import annotations

from typing import NewType

ChatId = NewType("ChatId", str)
MessageId = NewType("MessageId", str)
UserId = NewType("UserId", str)
