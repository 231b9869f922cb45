from __future__ import annotations

import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from enum import Enum
from threading import RLock
from typing import Any, Protocol

from opstrail.core.logging import logger


class SignalKind(str, Enum):
    """Every instrumentation signal the recorder understands."""

    TASK_ENQUEUE = "enqueue.task"
    TASK_PERFORM_START = "perform_start.task"
    TASK_PERFORM = "perform.task"
    CACHE_READ = "cache_read.cache"
    CACHE_WRITE = "cache_write.cache"
    CACHE_DELETE = "cache_delete.cache"
    BROADCAST = "broadcast.cable"


class Observer(Protocol):
    def on_signal(self, kind: SignalKind, payload: Mapping[str, Any], duration_ms: float | None) -> None:
        ...


class SignalBus:
    """Synchronous registry of observers keyed by signal kind."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._observers: dict[SignalKind, list[Observer]] = {kind: [] for kind in SignalKind}

    def subscribe(self, kind: SignalKind, observer: Observer) -> None:
        with self._lock:
            if observer not in self._observers[kind]:
                self._observers[kind].append(observer)

    def unsubscribe(self, kind: SignalKind, observer: Observer) -> None:
        with self._lock:
            if observer in self._observers[kind]:
                self._observers[kind].remove(observer)

    def observers(self, kind: SignalKind) -> list[Observer]:
        with self._lock:
            return list(self._observers[kind])

    def publish(self, kind: SignalKind, payload: Mapping[str, Any], duration_ms: float | None = None) -> None:
        for observer in self.observers(kind):
            try:
                observer.on_signal(kind, payload, duration_ms)
            except Exception as exc:
                logger.error(
                    "signal_observer_failed",
                    signal=kind.value,
                    error_class=type(exc).__name__,
                    error=str(exc),
                )

    @contextmanager
    def instrument(self, kind: SignalKind, payload: dict[str, Any] | None = None) -> Iterator[dict[str, Any]]:
        """Time the block and publish once it exits.

        The payload is yielded so the block can add results (a cache hit flag,
        for instance). If the block raises, the error is stored under
        ``exception_object`` before the signal goes out, then re-raised.
        """
        data: dict[str, Any] = payload if payload is not None else {}
        started = time.perf_counter()
        try:
            yield data
        except BaseException as exc:
            data["exception_object"] = exc
            raise
        finally:
            duration_ms = (time.perf_counter() - started) * 1000.0
            self.publish(kind, data, duration_ms)
