from __future__ import annotations

import pytest
from websockets.exceptions import ConnectionClosed
from websockets.frames import Close

from chat_sync.application.exceptions import TransportClosed
from chat_sync.infrastructure.ws.transport import ABNORMAL_CLOSURE, WebsocketTransport


class FakeConnection:
    """The slice of websockets' ClientConnection the transport uses."""

    def __init__(self, frames=(), error: ConnectionClosed | None = None) -> None:
        self.frames = list(frames)
        self.error = error
        self.sent: list[str] = []
        self.closed: tuple[int, str] | None = None

    async def send(self, data: str) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append(data)

    async def recv(self):
        if self.frames:
            return self.frames.pop(0)
        raise self.error

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = (code, reason)


@pytest.mark.asyncio
async def test_frames_are_passed_through_unchanged():
    transport = WebsocketTransport(FakeConnection(frames=['{"type":"pong"}', b"\xff\xfe"]))

    assert await transport.recv() == '{"type":"pong"}'
    assert await transport.recv() == b"\xff\xfe"


@pytest.mark.asyncio
async def test_server_close_carries_code_and_reason():
    closed = ConnectionClosed(Close(4001, "Authentication failed"), None)
    transport = WebsocketTransport(FakeConnection(error=closed))

    with pytest.raises(TransportClosed) as exc_info:
        await transport.recv()

    assert exc_info.value.code == 4001
    assert exc_info.value.reason == "Authentication failed"


@pytest.mark.asyncio
async def test_lost_connection_is_abnormal_closure():
    transport = WebsocketTransport(FakeConnection(error=ConnectionClosed(None, None)))

    with pytest.raises(TransportClosed) as exc_info:
        await transport.send("x")

    assert exc_info.value.code == ABNORMAL_CLOSURE


@pytest.mark.asyncio
async def test_close_forwards_code():
    conn = FakeConnection()
    transport = WebsocketTransport(conn)

    await transport.close(1000, "Client disconnecting")

    assert conn.closed == (1000, "Client disconnecting")
