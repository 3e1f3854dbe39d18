"""Application-facing chat state: the one place that merges server pushes,
REST responses and local actions into ordered, de-duplicated chats and messages.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Callable, Iterable

from chat_sync.application.dto.requests import (
    CreateChatRequest,
    SendMessageRequest,
    UpdateChatRequest,
)
from chat_sync.application.exceptions import ApiError, SendMessageError
from chat_sync.application.ports.chat_api import ChatApi
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.application.ports.storage import KeyValueStore
from chat_sync.config import Settings, settings as default_settings
from chat_sync.domain.entities.chat import ChatSession
from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.typing_state import TypingState
from chat_sync.domain.events import (
    Connected,
    Disconnected,
    MessageReceived,
    MessageSent,
    ServerError,
    TypingReceived,
)
from chat_sync.domain.value_objects.enums import ChatKind, MessageKind
from chat_sync.domain.value_objects.ids import ChatId, MessageId, UserId
from chat_sync.infrastructure.bus.event_bus import EventBus, Unsubscribe
from chat_sync.infrastructure.storage.serializer import deserialize_chats, serialize_chats
from chat_sync.infrastructure.ws.connection import ConnectionManager

logger = logging.getLogger(__name__)

DELETED_MESSAGE_TEXT = "This message was deleted"

ChangeListener = Callable[[], None]


def _sorted_messages(messages: Iterable[Message]) -> list[Message]:
    return sorted(messages, key=lambda m: m.created_at)


def _sorted_chats(chats: Iterable[ChatSession]) -> list[ChatSession]:
    return sorted(chats, key=lambda c: c.updated_at, reverse=True)


class ChatSyncStore:
    """Single source of truth for the chat UI.

    Reads are plain properties; every mutation ends with a call to the
    listeners registered through ``on_change``.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        api: ChatApi,
        bus: EventBus,
        *,
        cache: KeyValueStore | None = None,
        current_user_id: UserId | None = None,
        clock: Clock | None = None,
        settings: Settings = default_settings,
    ) -> None:
        self._connection = connection
        self._api = api
        self._bus = bus
        self._cache = cache
        self._current_user_id = current_user_id
        self._clock = clock or SystemClock()
        self._settings = settings

        self._chats: list[ChatSession] = []
        self._messages: dict[ChatId, list[Message]] = {}
        self._typing: dict[ChatId, TypingState] = {}
        self._typing_timers: dict[ChatId, asyncio.TimerHandle] = {}
        self._loading = False
        self._error: str | None = None

        self._listeners: list[ChangeListener] = []
        self._bus_unsubscribers: list[Unsubscribe] = []
        self._retry_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Attach to the bus and paint the last cached chat list."""
        if not self._bus_unsubscribers:
            self._bus_unsubscribers = [
                self._bus.subscribe(MessageReceived, self._on_message_received),
                self._bus.subscribe(MessageSent, self._on_message_sent),
                self._bus.subscribe(TypingReceived, self._on_typing),
                self._bus.subscribe(Connected, self._on_connected),
                self._bus.subscribe(Disconnected, self._on_disconnected),
                self._bus.subscribe(ServerError, self._on_server_error),
            ]
        await self.load_cached_chats()

    def stop(self) -> None:
        for unsubscribe in self._bus_unsubscribers:
            unsubscribe()
        self._bus_unsubscribers = []
        self._cancel_timers()

    async def reset(self) -> None:
        """Logout: drop all state, the cached snapshot and the connection."""
        self._cancel_timers()
        self._chats = []
        self._messages = {}
        self._typing = {}
        self._error = None
        if self._cache is not None:
            await self._cache.remove(self._settings.CHAT_CACHE_KEY)
        await self._connection.teardown()
        self._notify()

    def set_current_user(self, user_id: UserId | None) -> None:
        self._current_user_id = user_id

    @property
    def chats(self) -> tuple[ChatSession, ...]:
        return tuple(self._chats)

    def messages(self, chat_id: ChatId) -> tuple[Message, ...]:
        return tuple(self._messages.get(chat_id, ()))

    @property
    def typing(self) -> dict[ChatId, TypingState]:
        return dict(self._typing)

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> str | None:
        return self._error

    def get_cached_chat(self, chat_id: ChatId) -> ChatSession | None:
        return next((c for c in self._chats if c.id == chat_id), None)

    def is_user_typing(self, chat_id: ChatId, user_id: UserId) -> bool:
        state = self._typing.get(chat_id)
        if state is None or state.user_id != user_id:
            return False
        return state.is_active(self._clock.now(), self._settings.TYPING_TTL_SECONDS)

    def is_connected(self) -> bool:
        return self._connection.is_connected()

    def on_change(self, listener: ChangeListener) -> Unsubscribe:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def handle_new_message(self, message: Message, chat_id: ChatId) -> None:
        """Server push. A message id already held is ignored."""
        chat_messages = self._messages.get(chat_id, [])
        if any(m.id == message.id for m in chat_messages):
            logger.debug("Duplicate message %s in chat %s ignored", message.id, chat_id)
            return
        self._messages[chat_id] = _sorted_messages([*chat_messages, message])
        self._touch_chat(chat_id, message)

        if self._current_user_id is not None and message.sender_id != self._current_user_id:
            self._connection.mark_read(message.id)
        self._notify()

    def handle_message_sent(self, message: Message, chat_id: ChatId) -> None:
        """Confirmation of our own send. Replaces a held copy of the same id."""
        chat_messages = list(self._messages.get(chat_id, []))
        for i, existing in enumerate(chat_messages):
            if existing.id == message.id:
                chat_messages[i] = existing.merged_with(message)
                break
        else:
            chat_messages.append(message)
        self._messages[chat_id] = _sorted_messages(chat_messages)
        self._touch_chat(chat_id, message)
        self._notify()

    def handle_typing(self, user_id: UserId, chat_id: ChatId) -> None:
        self._typing[chat_id] = TypingState(chat_id=chat_id, user_id=user_id, started_at=self._clock.now())
        previous = self._typing_timers.pop(chat_id, None)
        if previous is not None:
            previous.cancel()
        self._typing_timers[chat_id] = asyncio.get_running_loop().call_later(
            self._settings.TYPING_TTL_SECONDS, self._expire_typing, chat_id, user_id,
        )
        self._notify()

    def _expire_typing(self, chat_id: ChatId, user_id: UserId) -> None:
        self._typing_timers.pop(chat_id, None)
        state = self._typing.get(chat_id)
        if state is not None and state.user_id == user_id:
            del self._typing[chat_id]
            self._notify()

    def _touch_chat(self, chat_id: ChatId, message: Message) -> None:
        for i, chat in enumerate(self._chats):
            if chat.id != chat_id:
                continue
            last = chat.last_message
            if last is None or last.id == message.id or message.created_at >= last.created_at:
                self._chats[i] = replace(
                    chat,
                    last_message=message,
                    updated_at=max(chat.updated_at, message.created_at),
                )
                self._chats = _sorted_chats(self._chats)
            return

    async def load_cached_chats(self) -> None:
        if self._cache is None:
            return
        try:
            raw = await self._cache.get(self._settings.CHAT_CACHE_KEY)
            if not raw or self._chats:
                return
            self._chats = _sorted_chats(deserialize_chats(raw))
        except Exception:
            logger.exception("Error loading cached chats")
            return
        logger.info("Loaded %d cached chats", len(self._chats))
        self._notify()

    async def load_chats(self) -> list[ChatSession] | None:
        self._error = None
        self._set_loading(True)
        try:
            chats = await self._api.list_chats()
        except ApiError as exc:
            self._fail("Error loading chats", exc)
            return None
        finally:
            self._set_loading(False)

        logger.info("Chats loaded: %d", len(chats))
        self._chats = _sorted_chats(chats)
        self._notify()
        await self._save_snapshot()

        if not self._connection.is_connected():
            await self._connection.connect()
        for chat in self._chats:
            self.subscribe_to_chat(chat.id)
        return list(self._chats)

    async def get_chat(self, chat_id: ChatId) -> ChatSession | None:
        self._error = None
        self._set_loading(True)
        try:
            chat = await self._api.get_chat(chat_id)
        except ApiError as exc:
            self._fail("Error getting chat", exc)
            return None
        finally:
            self._set_loading(False)

        for i, existing in enumerate(self._chats):
            if existing.id == chat_id:
                self._chats[i] = chat
                break
        else:
            self._chats = _sorted_chats([*self._chats, chat])
        self._notify()
        return chat

    async def create_chat(
        self,
        kind: ChatKind,
        participants: Iterable[UserId],
        name: str | None = None,
        event_id: str | None = None,
    ) -> ChatSession | None:
        self._error = None
        self._set_loading(True)
        try:
            chat = await self._api.create_chat(
                CreateChatRequest(kind=kind, participants=tuple(participants), name=name, event_id=event_id)
            )
        except ApiError as exc:
            self._fail("Error creating chat", exc)
            return None
        finally:
            self._set_loading(False)

        self._chats = _sorted_chats([*self._chats, chat])
        self.subscribe_to_chat(chat.id)
        self._notify()
        return chat

    async def update_chat(
        self,
        chat_id: ChatId,
        name: str | None = None,
        participants: Iterable[UserId] | None = None,
    ) -> ChatSession | None:
        request = UpdateChatRequest(
            name=name,
            participants=tuple(participants) if participants is not None else None,
        )
        try:
            chat = await self._api.update_chat(chat_id, request)
        except ApiError as exc:
            logger.error("Error updating chat %s: %s", chat_id, exc.detail)
            return None

        for i, existing in enumerate(self._chats):
            if existing.id == chat_id:
                self._chats[i] = chat
                if existing.updated_at != chat.updated_at:
                    self._chats = _sorted_chats(self._chats)
                break
        self._notify()
        return chat

    async def leave_chat(self, chat_id: ChatId) -> bool:
        try:
            await self._api.leave_chat(chat_id)
        except ApiError as exc:
            logger.error("Error leaving chat %s: %s", chat_id, exc.detail)
            return False

        self._chats = [c for c in self._chats if c.id != chat_id]
        self._messages.pop(chat_id, None)
        self._typing.pop(chat_id, None)
        timer = self._typing_timers.pop(chat_id, None)
        if timer is not None:
            timer.cancel()
        self.unsubscribe_from_chat(chat_id)
        self._notify()
        return True

    def subscribe_to_chat(self, chat_id: ChatId) -> None:
        if not self._connection.subscribe(chat_id):
            logger.debug("Chat %s registered, subscribe deferred until connected", chat_id)

    def unsubscribe_from_chat(self, chat_id: ChatId) -> None:
        self._connection.unsubscribe(chat_id)

    async def load_messages(
        self,
        chat_id: ChatId,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Message] | None:
        self._error = None
        try:
            fetched = await self._api.list_messages(
                chat_id, limit=limit or self._settings.MESSAGES_PAGE_SIZE, offset=offset,
            )
        except ApiError as exc:
            self._fail("Error loading messages", exc)
            return None

        held = self._messages.get(chat_id, [])
        if offset == 0:
            # first page replaces; keep live arrivals newer than the page
            newest = max((m.created_at for m in fetched), default=None)
            base = [m for m in held if newest is not None and m.created_at > newest]
        else:
            base = list(held)
        seen = {m.id for m in base}
        for message in fetched:
            if message.id not in seen:
                seen.add(message.id)
                base.append(message)
        self._messages[chat_id] = _sorted_messages(base)
        self.subscribe_to_chat(chat_id)
        self._notify()
        return fetched

    async def send_message(
        self,
        chat_id: ChatId,
        content: str,
        kind: MessageKind = MessageKind.TEXT,
        media_url: str | None = None,
    ) -> Message | None:
        """Send over the live channel, else over REST.

        Returns None when the live channel took the message (the server
        confirmation is merged when it arrives), the stored message after a
        REST send, and raises SendMessageError when both paths fail.
        """
        self._error = None
        if self._connection.is_connected() and self._connection.send_chat_message(
            chat_id, content, kind, media_url,
        ):
            return None

        try:
            message = await self._api.send_message(
                chat_id, SendMessageRequest(content=content, kind=kind, media_url=media_url),
            )
        except ApiError as exc:
            self._fail("Error sending message", exc)
            raise SendMessageError(exc.detail) from exc

        self.handle_message_sent(message, chat_id)
        return message

    async def mark_message_read(self, message_id: MessageId) -> bool:
        if self._connection.is_connected() and self._connection.mark_read(message_id):
            return True
        try:
            await self._api.mark_read(message_id)
        except ApiError as exc:
            logger.error("Error marking message %s as read: %s", message_id, exc.detail)
            return False
        return True

    async def delete_message(self, message_id: MessageId) -> bool:
        try:
            await self._api.delete_message(message_id)
        except ApiError as exc:
            logger.error("Error deleting message %s: %s", message_id, exc.detail)
            return False

        for chat_id, chat_messages in self._messages.items():
            self._messages[chat_id] = [
                _tombstone(m) if m.id == message_id else m for m in chat_messages
            ]
        self._chats = [
            replace(c, last_message=_tombstone(c.last_message))
            if c.last_message is not None and c.last_message.id == message_id else c
            for c in self._chats
        ]
        self._notify()
        return True

    def send_typing(self, chat_id: ChatId) -> None:
        if self._connection.is_connected():
            self._connection.send_typing(chat_id)

    async def connect(self) -> bool:
        return await self._connection.connect()

    async def disconnect(self) -> None:
        await self._connection.disconnect()

    def _on_message_received(self, event: MessageReceived) -> None:
        self.handle_new_message(event.message, event.chat_id)

    def _on_message_sent(self, event: MessageSent) -> None:
        self.handle_message_sent(event.message, event.chat_id)

    def _on_typing(self, event: TypingReceived) -> None:
        self.handle_typing(event.user_id, event.chat_id)

    def _on_connected(self, _event: Connected) -> None:
        logger.info("Connected, subscribing to %d chats", len(self._chats))
        for chat in self._chats:
            self.subscribe_to_chat(chat.id)

    def _on_disconnected(self, event: Disconnected) -> None:
        if not self._settings.STORE_RECONNECT_ENABLED:
            return
        if self._retry_task is not None and not self._retry_task.done():
            return
        logger.info(
            "Disconnected (%s), retrying in %.1fs",
            event.code, self._settings.STORE_RECONNECT_DELAY_SECONDS,
        )
        self._retry_task = asyncio.create_task(self._retry_connect(), name="store-reconnect")

    async def _retry_connect(self) -> None:
        await asyncio.sleep(self._settings.STORE_RECONNECT_DELAY_SECONDS)
        await self._connection.connect()

    def _on_server_error(self, event: ServerError) -> None:
        self._error = event.message
        self._notify()

    def _fail(self, what: str, exc: ApiError) -> None:
        logger.error("%s: %s", what, exc.detail)
        self._error = exc.detail
        self._notify()

    def _set_loading(self, loading: bool) -> None:
        self._loading = loading
        self._notify()

    async def _save_snapshot(self) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.set(self._settings.CHAT_CACHE_KEY, serialize_chats(self._chats))
        except Exception:
            logger.exception("Error caching chats")

    def _cancel_timers(self) -> None:
        for timer in self._typing_timers.values():
            timer.cancel()
        self._typing_timers.clear()
        if self._retry_task is not None and not self._retry_task.done():
            self._retry_task.cancel()
        self._retry_task = None

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Error in store change listener")


def _tombstone(message: Message) -> Message:
    return replace(message, kind=MessageKind.SYSTEM, content=DELETED_MESSAGE_TEXT, media_url=None)
