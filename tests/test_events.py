"""Tests for EventEmitter delivery semantics."""
from claim_uploader.utils.events import EventEmitter


def test_listeners_called_in_subscription_order():
    emitter = EventEmitter()
    calls = []
    emitter.on("changed", lambda value: calls.append(("first", value)))
    emitter.on("changed", lambda value: calls.append(("second", value)))

    emitter.emit("changed", 1)

    assert calls == [("first", 1), ("second", 1)]


def test_nested_emit_is_delivered_after_current_event():
    emitter = EventEmitter()
    calls = []

    def first(value):
        calls.append(("first", value))
        if value == 1:
            emitter.emit("changed", 2)

    emitter.on("changed", first)
    emitter.on("changed", lambda value: calls.append(("second", value)))

    emitter.emit("changed", 1)

    assert calls == [("first", 1), ("second", 1), ("first", 2), ("second", 2)]


def test_failing_listener_does_not_block_others(caplog):
    emitter = EventEmitter()
    calls = []

    def broken(value):
        raise RuntimeError("listener bug")

    emitter.on("changed", broken)
    emitter.on("changed", calls.append)

    emitter.emit("changed", "x")

    assert calls == ["x"]
    assert "listener bug" in caplog.text


def test_unsubscribe():
    emitter = EventEmitter()
    calls = []
    unsubscribe = emitter.on("changed", calls.append)
    emitter.on("changed", calls.append)  # duplicate ignored

    assert emitter.listener_count("changed") == 1
    unsubscribe()
    emitter.emit("changed", 1)

    assert calls == []
    assert emitter.listener_count("changed") == 0


def test_dispatch_recovers_after_listener_error():
    emitter = EventEmitter()
    emitter.on("changed", lambda value: 1 / 0)
    emitter.emit("changed", 1)

    calls = []
    emitter.on("other", calls.append)
    emitter.emit("other", 2)

    assert calls == [2]
