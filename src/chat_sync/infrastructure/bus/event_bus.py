"""In-process typed publish/subscribe between the connection and its consumers."""
from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

from chat_sync.domain.events import ChatEvent

logger = logging.getLogger(__name__)

E = TypeVar("E")

Handler = Callable[[Any], None]
Unsubscribe = Callable[[], None]


class EventBus:
    """Synchronous dispatch, registration order, per event type.

    Catch-all handlers run after the typed handlers of an event.
    A failing handler is logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = {}
        self._catch_all: list[Handler] = []

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Unsubscribe:
        handlers = self._handlers.setdefault(event_type, [])
        handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def subscribe_all(self, handler: Callable[[ChatEvent], None]) -> Unsubscribe:
        self._catch_all.append(handler)

        def _unsubscribe() -> None:
            if handler in self._catch_all:
                self._catch_all.remove(handler)

        return _unsubscribe

    def once(self, event_type: type[E], handler: Callable[[E], None]) -> Unsubscribe:
        def _wrapper(event: E) -> None:
            unsubscribe()
            handler(event)

        unsubscribe = self.subscribe(event_type, _wrapper)
        return unsubscribe

    def publish(self, event: ChatEvent) -> None:
        # copy: handlers may unsubscribe themselves while being dispatched
        handlers = [*self._handlers.get(type(event), ()), *self._catch_all]
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Error in handler for %s", type(event).__name__)

    def clear(self) -> None:
        self._handlers.clear()
        self._catch_all.clear()
