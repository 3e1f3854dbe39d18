from __future__ import annotations

from typing import Protocol


class Transport(Protocol):
    """One open bidirectional message stream.

    ``recv`` returns text or binary frames as received; ``recv`` and ``send``
    raise ``TransportClosed`` once the stream is gone.
    """

    async def send(self, data: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


class TransportFactory(Protocol):
    async def __call__(self, url: str) -> Transport: ...
