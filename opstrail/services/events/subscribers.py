from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from opstrail.core.logging import logger
from opstrail.services.events.recorder import EventRecorder, bytesize, safe_arguments
from opstrail.services.events.signals import SignalBus, SignalKind

Handler = Callable[[Mapping[str, Any], float | None], None]


class TelemetrySubscribers:
    """Maps each signal family onto ``EventRecorder.record``."""

    def __init__(self, recorder: EventRecorder) -> None:
        self._recorder = recorder
        self._handlers: dict[SignalKind, Handler] = {
            SignalKind.TASK_ENQUEUE: self._on_task_enqueue,
            SignalKind.TASK_PERFORM_START: self._on_task_perform_start,
            SignalKind.TASK_PERFORM: self._on_task_perform,
            SignalKind.CACHE_READ: self._on_cache_read,
            SignalKind.CACHE_WRITE: self._on_cache_write,
            SignalKind.CACHE_DELETE: self._on_cache_delete,
            SignalKind.BROADCAST: self._on_broadcast,
        }

    def install(self, bus: SignalBus) -> bool:
        if not self._recorder.config.enabled:
            logger.info("telemetry_subscribers_skipped", reason="disabled")
            return False
        for kind in self._handlers:
            bus.subscribe(kind, self)
        return True

    def uninstall(self, bus: SignalBus) -> None:
        for kind in self._handlers:
            bus.unsubscribe(kind, self)

    def on_signal(self, kind: SignalKind, payload: Mapping[str, Any], duration_ms: float | None) -> None:
        handler = self._handlers.get(kind)
        if handler is None:
            return
        handler(payload or {}, duration_ms)

    # Task lifecycle

    def _on_task_enqueue(self, payload: Mapping[str, Any], duration_ms: float | None) -> None:
        task = payload.get("task")
        metadata = self._task_metadata(task)
        metadata["queue"] = _text(payload.get("queue"))
        metadata["adapter"] = _text(payload.get("adapter"))
        self._recorder.record("task.enqueue", _task_name(task), duration_ms, metadata)

    def _on_task_perform_start(self, payload: Mapping[str, Any], duration_ms: float | None) -> None:
        task = payload.get("task")
        self._recorder.record("task.perform_start", _task_name(task), duration_ms, self._task_metadata(task))

    def _on_task_perform(self, payload: Mapping[str, Any], duration_ms: float | None) -> None:
        task = payload.get("task")
        metadata = self._task_metadata(task)
        error = payload.get("exception_object")
        # Class name only: messages can carry sensitive detail.
        metadata["exception"] = None if error is None else type(error).__name__
        self._recorder.record("task.perform", _task_name(task), duration_ms, metadata)

    def _task_metadata(self, task: Any) -> dict[str, Any]:
        if task is None:
            return {}
        return {
            "task_id": getattr(task, "task_id", None),
            "provider_job_id": getattr(task, "provider_job_id", None),
            "queue_name": getattr(task, "queue_name", None),
            "arguments": safe_arguments(
                getattr(task, "arguments", None),
                self._recorder.config.max_payload_bytes,
            ),
        }

    # Cache operations

    def _on_cache_read(self, payload: Mapping[str, Any], duration_ms: float | None) -> None:
        self._recorder.record(
            "cache.read",
            _name(payload.get("key")),
            duration_ms,
            {"hit": payload.get("hit"), "store": _text(payload.get("store"))},
        )

    def _on_cache_write(self, payload: Mapping[str, Any], duration_ms: float | None) -> None:
        self._recorder.record(
            "cache.write",
            _name(payload.get("key")),
            duration_ms,
            {"store": _text(payload.get("store")), "value_bytes": bytesize(payload.get("value"))},
        )

    def _on_cache_delete(self, payload: Mapping[str, Any], duration_ms: float | None) -> None:
        self._recorder.record(
            "cache.delete",
            _name(payload.get("key")),
            duration_ms,
            {"store": _text(payload.get("store"))},
        )

    # Broadcasts

    def _on_broadcast(self, payload: Mapping[str, Any], duration_ms: float | None) -> None:
        target = payload.get("broadcasting") or payload.get("stream") or payload.get("channel")
        self._recorder.record(
            "cable.broadcast",
            _name(target),
            duration_ms,
            {
                "broadcasting": payload.get("broadcasting"),
                "message_bytes": bytesize(payload.get("message")),
            },
        )


def _task_name(task: Any) -> str:
    if task is None:
        return "unknown"
    kind = getattr(task, "kind", None)
    if kind:
        return str(kind)
    return type(task).__name__


def _name(value: Any) -> str:
    text = "" if value is None else str(value)
    return text or "unknown"


def _text(value: Any) -> str:
    return "" if value is None else str(value)
