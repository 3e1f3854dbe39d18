"""`websockets`-backed Transport."""
from __future__ import annotations

import logging

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from chat_sync.application.exceptions import TransportClosed

logger = logging.getLogger(__name__)

ABNORMAL_CLOSURE = 1006


def _closed(exc: ConnectionClosed) -> TransportClosed:
    if exc.rcvd is not None:
        return TransportClosed(exc.rcvd.code, exc.rcvd.reason)
    return TransportClosed(ABNORMAL_CLOSURE, "")


class WebsocketTransport:
    """Implements application.ports.transport.Transport."""

    def __init__(self, conn: ClientConnection) -> None:
        self._conn = conn

    async def send(self, data: str) -> None:
        try:
            await self._conn.send(data)
        except ConnectionClosed as exc:
            raise _closed(exc) from exc

    async def recv(self) -> str | bytes:
        try:
            return await self._conn.recv()
        except ConnectionClosed as exc:
            raise _closed(exc) from exc

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self._conn.close(code=code, reason=reason)


async def open_websocket(url: str) -> WebsocketTransport:
    """Default TransportFactory.

    Keep-alive is done with envelope pings, so the library's own
    ping frames are turned off.
    """
    conn = await connect(url, ping_interval=None)
    logger.debug("WS transport opened")
    return WebsocketTransport(conn)
