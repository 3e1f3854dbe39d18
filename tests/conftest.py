"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from chat_sync.application.dto.requests import (
    CreateChatRequest,
    SendMessageRequest,
    UpdateChatRequest,
)
from chat_sync.application.exceptions import ApiError, TransportClosed
from chat_sync.config import Settings
from chat_sync.domain.entities.chat import ChatSession
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import ChatKind, MessageKind, MessageStatus
from chat_sync.domain.value_objects.ids import ChatId, MessageId, UserId
from chat_sync.infrastructure.bus.event_bus import EventBus
from chat_sync.infrastructure.storage.memory import InMemoryKeyValueStore

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

ME = UserId("me")
ALICE = UserId("alice")


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "API_BASE_URL": "http://chat.test",
        "HANDSHAKE_TIMEOUT_SECONDS": 1.0,
        "HEARTBEAT_SECONDS": 3600.0,
        "PONG_TIMEOUT_SECONDS": 0.0,
        "REDIS_URL": None,
    }
    values.update(overrides)
    return Settings(**values)


def make_message(
    *,
    message_id: str | None = None,
    chat_id: str = "c1",
    sender_id: str = ALICE,
    content: str = "hello",
    at: float = 0.0,
    status: MessageStatus = MessageStatus.SENT,
    read_by: frozenset[UserId] = frozenset(),
) -> Message:
    return Message(
        id=MessageId(message_id or uuid.uuid4().hex),
        chat_id=ChatId(chat_id),
        sender_id=UserId(sender_id),
        kind=MessageKind.TEXT,
        content=content,
        created_at=T0 + timedelta(seconds=at),
        status=status,
        read_by=read_by,
    )


def make_chat(
    *,
    chat_id: str = "c1",
    at: float = 0.0,
    name: str | None = None,
    participants: tuple[str, ...] = (ME, ALICE),
) -> ChatSession:
    return ChatSession(
        id=ChatId(chat_id),
        kind=ChatKind.DIRECT,
        name=name,
        participants=tuple(UserId(p) for p in participants),
        updated_at=T0 + timedelta(seconds=at),
        created_at=T0,
    )


def message_json(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "chatId": message.chat_id,
        "senderId": message.sender_id,
        "type": message.kind.value,
        "content": message.content,
        "status": message.status.value,
        "readBy": sorted(message.read_by),
        "createdAt": message.created_at.isoformat(),
    }


def chat_json(chat: ChatSession) -> dict[str, Any]:
    return {
        "id": chat.id,
        "type": chat.kind.value,
        "participants": list(chat.participants),
        "createdBy": ME,
        "createdAt": T0.isoformat(),
        "updatedAt": chat.updated_at.isoformat(),
    }


async def drain(rounds: int = 20) -> None:
    """Let background tasks (reader, writer) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)


@dataclass
class RecordingSleep:
    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeTransport:
    """In-memory stand-in for a websocket: tests push server frames into it."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed: tuple[int, str] | None = None
        self._inbox: asyncio.Queue[str | bytes | TransportClosed] = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed is not None:
            raise TransportClosed(*self.closed)
        self.sent.append(data)

    async def recv(self) -> str | bytes:
        item = await self._inbox.get()
        if isinstance(item, TransportClosed):
            raise item
        return item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed is None:
            self.closed = (code, reason)
            self._inbox.put_nowait(TransportClosed(code, reason))

    def push(self, envelope: dict[str, Any]) -> None:
        self._inbox.put_nowait(json.dumps(envelope))

    def push_raw(self, raw: str | bytes) -> None:
        self._inbox.put_nowait(raw)

    def drop(self, code: int = 1006, reason: str = "") -> None:
        self.closed = (code, reason)
        self._inbox.put_nowait(TransportClosed(code, reason))

    def sent_envelopes(self) -> list[dict[str, Any]]:
        return [json.loads(raw) for raw in self.sent]

    def sent_of_type(self, kind: str) -> list[dict[str, Any]]:
        return [e for e in self.sent_envelopes() if e["type"] == kind]


class FakeTransportFactory:
    def __init__(self, *, greet: bool = True, fail: bool = False) -> None:
        self.greet = greet
        self.fail = fail
        self.urls: list[str] = []
        self.transports: list[FakeTransport] = []

    async def __call__(self, url: str) -> FakeTransport:
        self.urls.append(url)
        if self.fail:
            raise OSError("connection refused")
        transport = FakeTransport()
        if self.greet:
            transport.push(
                {"type": "connected", "payload": {"clientId": f"client-{len(self.transports) + 1}"}}
            )
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


@dataclass
class FakeConnection:
    """Duck-typed ConnectionManager for store tests."""

    connected: bool = True
    accept_sends: bool = True
    connect_result: bool = True
    subscribed: list[ChatId] = field(default_factory=list)
    unsubscribed: list[ChatId] = field(default_factory=list)
    read_receipts: list[MessageId] = field(default_factory=list)
    chat_messages: list[tuple[ChatId, str, MessageKind, str | None]] = field(default_factory=list)
    typing_sent: list[ChatId] = field(default_factory=list)
    connect_calls: int = 0
    torn_down: bool = False

    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> bool:
        self.connect_calls += 1
        self.connected = self.connect_result
        return self.connect_result

    async def disconnect(self) -> None:
        self.connected = False

    async def teardown(self) -> None:
        self.connected = False
        self.torn_down = True

    def subscribe(self, chat_id: ChatId) -> bool:
        self.subscribed.append(chat_id)
        return self.connected and self.accept_sends

    def unsubscribe(self, chat_id: ChatId) -> bool:
        self.unsubscribed.append(chat_id)
        return self.connected and self.accept_sends

    def send_chat_message(
        self,
        chat_id: ChatId,
        content: str,
        kind: MessageKind = MessageKind.TEXT,
        media_url: str | None = None,
    ) -> bool:
        if not (self.connected and self.accept_sends):
            return False
        self.chat_messages.append((chat_id, content, kind, media_url))
        return True

    def send_typing(self, chat_id: ChatId) -> bool:
        self.typing_sent.append(chat_id)
        return self.connected

    def mark_read(self, message_id: MessageId) -> bool:
        if not (self.connected and self.accept_sends):
            return False
        self.read_receipts.append(message_id)
        return True


@dataclass
class FakeChatApi:
    """In-memory REST collaborator; methods named in ``failing`` raise ApiError."""

    chats: list[ChatSession] = field(default_factory=list)
    messages: dict[ChatId, list[Message]] = field(default_factory=dict)
    failing: set[str] = field(default_factory=set)
    calls: list[tuple[str, Any]] = field(default_factory=list)
    next_sent_at: float = 100.0

    def _record(self, name: str, arg: Any = None) -> None:
        self.calls.append((name, arg))
        if name in self.failing:
            raise ApiError(f"{name} failed")

    def calls_to(self, name: str) -> list[Any]:
        return [arg for n, arg in self.calls if n == name]

    async def create_chat(self, request: CreateChatRequest) -> ChatSession:
        self._record("create_chat", request)
        chat = ChatSession(
            id=ChatId(f"new-{len(self.chats) + 1}"),
            kind=request.kind,
            participants=request.participants,
            name=request.name,
            event_id=request.event_id,
            updated_at=T0 + timedelta(seconds=500),
        )
        self.chats.append(chat)
        return chat

    async def list_chats(self) -> list[ChatSession]:
        self._record("list_chats")
        return list(self.chats)

    async def get_chat(self, chat_id: ChatId) -> ChatSession:
        self._record("get_chat", chat_id)
        for chat in self.chats:
            if chat.id == chat_id:
                return chat
        raise ApiError("Chat not found")

    async def update_chat(self, chat_id: ChatId, request: UpdateChatRequest) -> ChatSession:
        self._record("update_chat", (chat_id, request))
        for i, chat in enumerate(self.chats):
            if chat.id == chat_id:
                updated = ChatSession(
                    id=chat.id,
                    kind=chat.kind,
                    name=request.name if request.name is not None else chat.name,
                    participants=request.participants if request.participants is not None else chat.participants,
                    updated_at=chat.updated_at,
                )
                self.chats[i] = updated
                return updated
        raise ApiError("Chat not found")

    async def leave_chat(self, chat_id: ChatId) -> None:
        self._record("leave_chat", chat_id)

    async def list_messages(self, chat_id: ChatId, *, limit: int = 50, offset: int = 0) -> list[Message]:
        self._record("list_messages", (chat_id, limit, offset))
        return list(self.messages.get(chat_id, []))[offset:offset + limit]

    async def send_message(self, chat_id: ChatId, request: SendMessageRequest) -> Message:
        self._record("send_message", (chat_id, request))
        return Message(
            id=MessageId(f"rest-{len(self.calls_to('send_message'))}"),
            chat_id=chat_id,
            sender_id=ME,
            kind=request.kind,
            content=request.content,
            media_url=request.media_url,
            created_at=T0 + timedelta(seconds=self.next_sent_at),
        )

    async def mark_read(self, message_id: MessageId) -> None:
        self._record("mark_read", message_id)

    async def delete_message(self, message_id: MessageId) -> None:
        self._record("delete_message", message_id)


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def credentials() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore({"accessToken": "token-123"})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
