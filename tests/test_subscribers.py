from __future__ import annotations

from types import SimpleNamespace

import pytest

from opstrail.core.config import Settings
from opstrail.services.events.recorder import EventRecorder
from opstrail.services.events.signals import SignalBus, SignalKind
from opstrail.services.events.store import EventStore
from opstrail.services.events.subscribers import TelemetrySubscribers


@pytest.fixture()
def bus(recorder: EventRecorder) -> SignalBus:
    signal_bus = SignalBus()
    TelemetrySubscribers(recorder).install(signal_bus)
    return signal_bus


def _only(store: EventStore):
    events = store.query()
    assert len(events) == 1
    return events[0]


def test_cache_read_records_hit_flag(bus: SignalBus, store: EventStore) -> None:
    with bus.instrument(SignalKind.CACHE_READ, {"key": "users/1", "store": "MemoryStore"}) as payload:
        payload["hit"] = True

    event = _only(store)
    assert event.event_type == "cache.read"
    assert event.name == "users/1"
    assert event.metadata == {"hit": True, "store": "MemoryStore"}
    assert event.duration_ms is not None and event.duration_ms >= 0


def test_cache_write_records_value_size(bus: SignalBus, store: EventStore) -> None:
    bus.publish(SignalKind.CACHE_WRITE, {"key": "k", "store": "redis", "value": "abc"}, 2.0)
    event = _only(store)
    assert event.event_type == "cache.write"
    assert event.metadata == {"store": "redis", "value_bytes": 3}


def test_cache_delete_without_key_uses_unknown(bus: SignalBus, store: EventStore) -> None:
    bus.publish(SignalKind.CACHE_DELETE, {"store": None}, None)
    event = _only(store)
    assert event.event_type == "cache.delete"
    assert event.name == "unknown"
    assert event.metadata == {"store": ""}


def test_broadcast_falls_back_to_stream(bus: SignalBus, store: EventStore) -> None:
    bus.publish(SignalKind.BROADCAST, {"stream": "chat_1", "message": {"body": "hi"}}, 0.4)
    event = _only(store)
    assert event.event_type == "cable.broadcast"
    assert event.name == "chat_1"
    assert event.metadata["broadcasting"] is None
    assert event.metadata["message_bytes"] == len(b'{"body":"hi"}')


def test_task_perform_records_exception_class(bus: SignalBus, store: EventStore) -> None:
    task = SimpleNamespace(
        kind="SendInvoice",
        task_id="t-1",
        provider_job_id=None,
        queue_name="mailers",
        arguments=[7, "eur"],
    )
    with pytest.raises(KeyError):
        with bus.instrument(SignalKind.TASK_PERFORM, {"task": task}):
            raise KeyError("secret detail")

    event = _only(store)
    assert event.event_type == "task.perform"
    assert event.name == "SendInvoice"
    assert event.metadata == {
        "task_id": "t-1",
        "provider_job_id": None,
        "queue_name": "mailers",
        "arguments": [7, "eur"],
        "exception": "KeyError",
    }


def test_task_enqueue_adds_queue_and_adapter(bus: SignalBus, store: EventStore) -> None:
    task = SimpleNamespace(task_id="t-2", queue_name="default", arguments=None)
    bus.publish(SignalKind.TASK_ENQUEUE, {"task": task, "queue": "default", "adapter": "inline"}, 0.2)
    event = _only(store)
    assert event.event_type == "task.enqueue"
    assert event.name == "SimpleNamespace"
    assert event.metadata["arguments"] == []
    assert event.metadata["queue"] == "default"
    assert event.metadata["adapter"] == "inline"


def test_task_signal_without_task_is_unknown(bus: SignalBus, store: EventStore) -> None:
    bus.publish(SignalKind.TASK_PERFORM_START, {}, None)
    event = _only(store)
    assert event.event_type == "task.perform_start"
    assert event.name == "unknown"
    assert event.metadata == {}


def test_install_is_idempotent(recorder: EventRecorder) -> None:
    bus = SignalBus()
    subscribers = TelemetrySubscribers(recorder)
    assert subscribers.install(bus) is True
    subscribers.install(bus)
    assert all(len(bus.observers(kind)) == 1 for kind in SignalKind)

    subscribers.uninstall(bus)
    assert all(not bus.observers(kind) for kind in SignalKind)


def test_install_skipped_when_disabled(store: EventStore) -> None:
    bus = SignalBus()
    recorder = EventRecorder(store, Settings(_env_file=None, enabled=False))
    assert TelemetrySubscribers(recorder).install(bus) is False
    assert all(not bus.observers(kind) for kind in SignalKind)


def test_failing_observer_does_not_break_publisher(bus: SignalBus, store: EventStore) -> None:
    class Broken:
        def on_signal(self, kind, payload, duration_ms) -> None:  # noqa: ANN001
            raise RuntimeError("observer down")

    bus.subscribe(SignalKind.CACHE_READ, Broken())
    with bus.instrument(SignalKind.CACHE_READ, {"key": "k"}) as payload:
        payload["hit"] = False
    assert _only(store).name == "k"
