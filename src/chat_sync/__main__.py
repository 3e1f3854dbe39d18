"""Entrypoint: python -m chat_sync

Connects with the token in CHAT_ACCESS_TOKEN, loads the chat list and logs
live events until interrupted.
"""
from __future__ import annotations

import asyncio
import logging
import os

import jwt

from chat_sync.config import settings
from chat_sync.domain.events import ChatEvent
from chat_sync.infrastructure.auth.token import principal_from_token
from chat_sync.infrastructure.bus.event_bus import EventBus
from chat_sync.infrastructure.rest.client import ChatApiClient
from chat_sync.infrastructure.storage.memory import InMemoryKeyValueStore
from chat_sync.infrastructure.storage.redis_store import RedisKeyValueStore
from chat_sync.infrastructure.ws.connection import ConnectionManager
from chat_sync.logging_context import configure_logging
from chat_sync.services.sync_store import ChatSyncStore

logger = logging.getLogger("chat_sync")


def _log_event(event: ChatEvent) -> None:
    logger.info("event: %r", event)


async def run() -> None:
    token = os.environ.get("CHAT_ACCESS_TOKEN", "")
    credentials = InMemoryKeyValueStore({settings.TOKEN_KEY: token} if token else None)

    current_user = None
    if token:
        try:
            current_user = principal_from_token(token).user_id
        except jwt.InvalidTokenError:
            logger.warning("Could not read user id from token")

    cache = RedisKeyValueStore.from_url(settings.REDIS_URL) if settings.REDIS_URL else InMemoryKeyValueStore()

    bus = EventBus()
    bus.subscribe_all(_log_event)
    connection = ConnectionManager(credentials, bus)
    api = ChatApiClient(credentials)
    store = ChatSyncStore(connection, api, bus, cache=cache, current_user_id=current_user)

    await store.start()
    try:
        await store.load_chats()
        await asyncio.Event().wait()
    finally:
        store.stop()
        await connection.disconnect()
        await api.aclose()
        if isinstance(cache, RedisKeyValueStore):
            await cache.aclose()


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
