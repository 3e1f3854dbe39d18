"""Client side of the live chat channel.

One ConnectionManager owns at most one session with the streaming endpoint:
it authenticates with the stored bearer token, keeps the session alive with
pings, replays chat subscriptions after every (re)connect and reconnects with
exponential backoff when the session drops. Parsed server pushes are
published on the EventBus.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Coroutine
from urllib.parse import urlencode

from pydantic import ValidationError as PydanticValidationError

from chat_sync.application.exceptions import ProtocolError, TransportClosed
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.application.ports.storage import CredentialStore
from chat_sync.application.ports.transport import Transport, TransportFactory
from chat_sync.config import Settings, settings as default_settings
from chat_sync.domain.events import (
    Connected,
    Disconnected,
    MessageReceived,
    MessageSent,
    ServerError,
    TypingReceived,
)
from chat_sync.domain.value_objects.enums import ConnectionState, MessageKind
from chat_sync.domain.value_objects.ids import ChatId, MessageId, UserId
from chat_sync.infrastructure.bus.event_bus import EventBus
from chat_sync.infrastructure.rest.mappers import message_to_entity
from chat_sync.infrastructure.rest.schemas import MessageSchema
from chat_sync.infrastructure.ws import protocol
from chat_sync.infrastructure.ws.protocol import Envelope
from chat_sync.infrastructure.ws.transport import ABNORMAL_CLOSURE, open_websocket
from chat_sync.logging_context import session_id_ctx

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
HEARTBEAT_TIMEOUT_CLOSURE = 4000

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class _Session:
    """Per-connection resources. Replaced wholesale on every reconnect."""

    transport: Transport
    last_seen: datetime
    outbox: asyncio.Queue[str] = field(default_factory=asyncio.Queue)
    tasks: list[asyncio.Task[None]] = field(default_factory=list)

    def start(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        self.tasks.append(asyncio.create_task(coro, name=name))

    def cancel_tasks(self) -> None:
        current = asyncio.current_task()
        for task in self.tasks:
            if task is not current:
                task.cancel()


class ConnectionManager:
    """Owns the lifecycle of one live session.

    ``sleep`` is only used for reconnect delays so tests can observe the
    backoff schedule without waiting for it.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        bus: EventBus,
        *,
        settings: Settings = default_settings,
        transport_factory: TransportFactory = open_websocket,
        sleep: Sleep = asyncio.sleep,
        clock: Clock | None = None,
    ) -> None:
        self._credentials = credentials
        self._bus = bus
        self._settings = settings
        self._transport_factory = transport_factory
        self._sleep = sleep
        self._clock = clock or SystemClock()

        self._state = ConnectionState.IDLE
        self._session: _Session | None = None
        self._handshake: asyncio.Future[bool] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._reconnect_attempts = 0
        self._client_id: str | None = None
        self._subscriptions: set[ChatId] = set()

        self._dispatch: dict[str, Callable[[_Session, Envelope], None]] = {
            "connected": self._on_connected,
            "new_message": self._on_new_message,
            "typing": self._on_typing,
            "message_sent": self._on_message_sent,
            "subscribed": self._on_subscription_ack,
            "unsubscribed": self._on_subscription_ack,
            "error": self._on_error,
            "pong": self._on_pong,
        }

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def client_id(self) -> str | None:
        return self._client_id

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def subscriptions(self) -> frozenset[ChatId]:
        return frozenset(self._subscriptions)

    def is_connected(self) -> bool:
        return self._state is ConnectionState.OPEN

    def backoff_delay(self, attempt: int) -> float:
        return min(
            self._settings.RECONNECT_BASE_DELAY_SECONDS * (2 ** attempt),
            self._settings.RECONNECT_MAX_DELAY_SECONDS,
        )

    async def connect(self) -> bool:
        """Open the session and wait for the server's ``connected`` greeting.

        Returns False when no token is stored, the transport fails or the
        greeting does not arrive within the handshake timeout. Concurrent
        callers share the attempt already in flight. Any failure other than a
        missing token starts the backoff reconnect loop.
        """
        if self._state is ConnectionState.OPEN:
            return True
        if self._handshake is not None:
            logger.debug("Connection already in progress, joining it")
            return await asyncio.shield(self._handshake)

        token = await self._credentials.get(self._settings.TOKEN_KEY)
        if not token:
            logger.error("No authentication token found")
            return False

        # the credential lookup yielded; another caller may have started meanwhile
        if self._state is ConnectionState.OPEN:
            return True
        if self._handshake is not None:
            return await asyncio.shield(self._handshake)

        handshake: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._handshake = handshake
        self._state = ConnectionState.CONNECTING
        try:
            ok = await asyncio.wait_for(
                self._establish(token, handshake),
                self._settings.HANDSHAKE_TIMEOUT_SECONDS,
            )
        except TimeoutError:
            logger.warning(
                "WebSocket handshake timed out after %.1fs",
                self._settings.HANDSHAKE_TIMEOUT_SECONDS,
            )
            ok = False
        except Exception:
            logger.warning("WebSocket connection error", exc_info=True)
            ok = False
        finally:
            if self._handshake is handshake:
                self._handshake = None

        if not ok:
            if not handshake.done():
                handshake.set_result(False)
            if self._state is ConnectionState.CONNECTING:
                await self._drop_session()
                self._state = ConnectionState.DISCONNECTED
            # disconnect() during the handshake leaves IDLE; only real failures retry
            if self._state is ConnectionState.DISCONNECTED:
                self._schedule_reconnect()
        return ok

    async def disconnect(self) -> None:
        """Client-initiated close. Subscriptions are kept for the next connect()."""
        self._cancel_reconnect()
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_result(False)
        self._handshake = None

        session = self._session
        self._session = None
        self._client_id = None
        if session is not None:
            logger.info("Closing WebSocket connection")
            self._state = ConnectionState.CLOSING
            session.cancel_tasks()
            await self._close_transport(session.transport, NORMAL_CLOSURE, "Client disconnecting")
        self._state = ConnectionState.IDLE
        session_id_ctx.set("-")

    async def teardown(self) -> None:
        """Logout: disconnect and forget every subscription."""
        await self.disconnect()
        self._subscriptions.clear()
        self._reconnect_attempts = 0

    def send(self, envelope: Envelope) -> bool:
        session = self._session
        if self._state is not ConnectionState.OPEN or session is None:
            logger.warning("WebSocket is not open, dropping %s", envelope.type)
            return False
        session.outbox.put_nowait(envelope.encode())
        return True

    def subscribe(self, chat_id: ChatId) -> bool:
        self._subscriptions.add(chat_id)
        return self.send(protocol.subscribe(chat_id))

    def unsubscribe(self, chat_id: ChatId) -> bool:
        self._subscriptions.discard(chat_id)
        return self.send(protocol.unsubscribe(chat_id))

    def send_chat_message(
        self,
        chat_id: ChatId,
        content: str,
        kind: MessageKind = MessageKind.TEXT,
        media_url: str | None = None,
    ) -> bool:
        return self.send(protocol.chat_message(chat_id, content, kind, media_url))

    def send_typing(self, chat_id: ChatId) -> bool:
        return self.send(protocol.typing(chat_id))

    def mark_read(self, message_id: MessageId) -> bool:
        return self.send(protocol.read(message_id))

    async def _establish(self, token: str, handshake: asyncio.Future[bool]) -> bool:
        url = f"{self._settings.ws_url}?{urlencode({'token': token})}"
        logger.info("Connecting to %s", self._settings.ws_url)
        transport = await self._transport_factory(url)
        if self._handshake is not handshake:
            # disconnect() ran while the transport was opening
            await self._close_transport(transport, NORMAL_CLOSURE, "Client disconnecting")
            return False

        session = _Session(transport=transport, last_seen=self._clock.now())
        self._session = session
        session.start(self._read_loop(session), name="ws-reader")
        return await asyncio.shield(handshake)

    async def _read_loop(self, session: _Session) -> None:
        code: int | None = ABNORMAL_CLOSURE
        reason = ""
        try:
            while True:
                raw = await session.transport.recv()
                session.last_seen = self._clock.now()
                self._handle_frame(session, raw)
        except TransportClosed as exc:
            code, reason = exc.code, exc.reason
        except Exception as exc:
            logger.warning("WebSocket transport error", exc_info=True)
            reason = str(exc)
        self._on_transport_closed(session, code, reason)

    async def _write_loop(self, session: _Session) -> None:
        while True:
            raw = await session.outbox.get()
            try:
                await session.transport.send(raw)
            except TransportClosed as exc:
                self._on_transport_closed(session, exc.code, exc.reason)
                return
            except Exception as exc:
                logger.warning("Error sending WebSocket message", exc_info=True)
                self._on_transport_closed(session, ABNORMAL_CLOSURE, str(exc))
                await self._close_transport(session.transport, ABNORMAL_CLOSURE, "send failed")
                return

    async def _heartbeat(self, session: _Session) -> None:
        interval = self._settings.HEARTBEAT_SECONDS
        pong_timeout = self._settings.PONG_TIMEOUT_SECONDS
        while True:
            await asyncio.sleep(interval)
            silent_for = (self._clock.now() - session.last_seen).total_seconds()
            if pong_timeout > 0 and silent_for > pong_timeout:
                logger.warning("No frame from server for %.0fs, dropping connection", silent_for)
                self._on_transport_closed(session, HEARTBEAT_TIMEOUT_CLOSURE, "heartbeat timeout")
                await self._close_transport(
                    session.transport, HEARTBEAT_TIMEOUT_CLOSURE, "heartbeat timeout",
                )
                return
            self.send(protocol.ping())

    def _on_transport_closed(self, session: _Session, code: int | None, reason: str) -> None:
        if session is not self._session:
            return  # stale callback from a session already torn down
        self._session = None
        session.cancel_tasks()
        was_open = self._state is ConnectionState.OPEN
        self._state = ConnectionState.DISCONNECTED
        self._client_id = None

        if not was_open:
            logger.warning("WebSocket closed before handshake: %s %s", code, reason)
            if self._handshake is not None and not self._handshake.done():
                self._handshake.set_result(False)
            return

        logger.info("WebSocket connection closed: %s %s", code, reason)
        session_id_ctx.set("-")
        self._bus.publish(Disconnected(code=code, reason=reason))
        self._schedule_reconnect()

    async def _drop_session(self) -> None:
        session = self._session
        self._session = None
        if session is not None:
            session.cancel_tasks()
            await self._close_transport(session.transport, NORMAL_CLOSURE, "")

    async def _close_transport(self, transport: Transport, code: int, reason: str) -> None:
        try:
            await transport.close(code, reason)
        except Exception:
            logger.debug("Error closing transport", exc_info=True)

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        if self._reconnect_attempts >= self._settings.RECONNECT_MAX_ATTEMPTS:
            logger.warning("Maximum reconnection attempts reached")
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop(), name="ws-reconnect")

    async def _reconnect_loop(self) -> None:
        max_attempts = self._settings.RECONNECT_MAX_ATTEMPTS
        while self._reconnect_attempts < max_attempts:
            delay = self.backoff_delay(self._reconnect_attempts)
            logger.info(
                "Attempting to reconnect in %.1fs (attempt %d/%d)",
                delay, self._reconnect_attempts + 1, max_attempts,
            )
            await self._sleep(delay)
            if self._state is ConnectionState.OPEN:
                return
            self._reconnect_attempts += 1
            await self.connect()
            if self._state is ConnectionState.OPEN:
                return
        logger.warning("Maximum reconnection attempts reached")

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _handle_frame(self, session: _Session, raw: str | bytes) -> None:
        try:
            envelope = protocol.decode_envelope(raw)
            handler = self._dispatch.get(envelope.type)
            if handler is None:
                logger.info("Unknown message type: %s", envelope.type)
                return
            handler(session, envelope)
        except (ProtocolError, PydanticValidationError):
            logger.error("Error processing WebSocket message: %.200s", raw, exc_info=True)

    def _on_connected(self, session: _Session, envelope: Envelope) -> None:
        if self._state is ConnectionState.OPEN:
            logger.debug("Duplicate connected envelope ignored")
            return
        self._client_id = envelope.payload_value("clientId")
        self._reconnect_attempts = 0
        self._state = ConnectionState.OPEN
        session_id_ctx.set(self._client_id or "-")
        logger.info("WebSocket client registered: %s", self._client_id)

        session.start(self._write_loop(session), name="ws-writer")
        session.start(self._heartbeat(session), name="ws-heartbeat")
        for chat_id in sorted(self._subscriptions):
            self.send(protocol.subscribe(chat_id))

        self._bus.publish(Connected(client_id=self._client_id))
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_result(True)

    def _on_new_message(self, _session: _Session, envelope: Envelope) -> None:
        raw_message = envelope.payload_value("message")
        if not envelope.chat_id or not raw_message:
            return
        message = message_to_entity(MessageSchema.model_validate(raw_message))
        self._bus.publish(MessageReceived(message=message, chat_id=ChatId(envelope.chat_id)))

    def _on_typing(self, _session: _Session, envelope: Envelope) -> None:
        user_id = envelope.payload_value("userId")
        if not envelope.chat_id or not user_id:
            return
        self._bus.publish(TypingReceived(user_id=UserId(user_id), chat_id=ChatId(envelope.chat_id)))

    def _on_message_sent(self, _session: _Session, envelope: Envelope) -> None:
        chat_id = envelope.chat_id or envelope.payload_value("chatId")
        raw_message = envelope.payload_value("message")
        if not chat_id or not raw_message:
            return
        message = message_to_entity(MessageSchema.model_validate(raw_message))
        self._bus.publish(MessageSent(message=message, chat_id=ChatId(chat_id)))

    def _on_subscription_ack(self, _session: _Session, envelope: Envelope) -> None:
        logger.debug("%s chat %s", envelope.type.capitalize(), envelope.payload_value("chatId"))

    def _on_error(self, _session: _Session, envelope: Envelope) -> None:
        message = envelope.payload_value("message")
        code = envelope.payload_value("code")
        logger.error("WebSocket error from server: %s (%s)", message, code)
        self._bus.publish(ServerError(message=message, code=code))

    def _on_pong(self, _session: _Session, _envelope: Envelope) -> None:
        pass
