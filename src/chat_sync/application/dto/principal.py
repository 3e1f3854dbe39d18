from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.value_objects.ids import UserId


@dataclass(frozen=True, slots=True)
class Principal:
    """Local user identity read from the bearer token."""

    user_id: UserId
