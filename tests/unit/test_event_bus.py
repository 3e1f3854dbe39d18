from __future__ import annotations

from chat_sync.domain.events import Connected, Disconnected, ServerError
from chat_sync.infrastructure.bus.event_bus import EventBus


def test_dispatch_is_per_type_in_registration_order():
    bus = EventBus()
    seen: list[str] = []
    bus.subscribe(Connected, lambda e: seen.append("a"))
    bus.subscribe(Connected, lambda e: seen.append("b"))
    bus.subscribe(Disconnected, lambda e: seen.append("other"))

    bus.publish(Connected(client_id="x"))

    assert seen == ["a", "b"]


def test_catch_all_runs_after_typed_handlers():
    bus = EventBus()
    seen: list[object] = []
    bus.subscribe_all(seen.append)
    bus.subscribe(ServerError, lambda e: seen.append("typed"))

    event = ServerError(message="boom", code="send_failed")
    bus.publish(event)

    assert seen == ["typed", event]


def test_unsubscribe_and_once():
    bus = EventBus()
    seen: list[object] = []
    unsubscribe = bus.subscribe(Connected, seen.append)
    bus.once(Disconnected, seen.append)

    unsubscribe()
    bus.publish(Connected(client_id="x"))
    bus.publish(Disconnected(code=1006))
    bus.publish(Disconnected(code=1001))

    assert seen == [Disconnected(code=1006)]


def test_failing_handler_does_not_stop_others():
    bus = EventBus()
    seen: list[object] = []

    def broken(_event):
        raise RuntimeError("listener bug")

    bus.subscribe(Connected, broken)
    bus.subscribe(Connected, seen.append)

    bus.publish(Connected(client_id="x"))

    assert seen == [Connected(client_id="x")]


def test_clear_removes_everything():
    bus = EventBus()
    seen: list[object] = []
    bus.subscribe(Connected, seen.append)
    bus.subscribe_all(seen.append)

    bus.clear()
    bus.publish(Connected(client_id="x"))

    assert seen == []
