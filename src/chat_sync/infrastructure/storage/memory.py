from __future__ import annotations


class InMemoryKeyValueStore:
    """Process-local key-value store. Also usable as a CredentialStore."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)
