from __future__ import annotations

from typing import Protocol


class CredentialStore(Protocol):
    """Read-only view of the credential storage. Never written by this package."""

    async def get(self, key: str) -> str | None: ...


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...
