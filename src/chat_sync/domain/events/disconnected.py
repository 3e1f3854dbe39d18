from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Disconnected:
    code: int | None
    reason: str = ""
