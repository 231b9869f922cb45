"""
Context hand-off for background tasks.

``TaskHooks`` wraps a host task framework's extension points: ``serialize`` /
``enqueue`` run in the enqueuing frame and embed the current context in the
payload; ``deserialize`` / ``perform`` run on the worker, restore that context
around the task body and clear it before the worker frame is reused.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any, TypeVar

import orjson

from opstrail.core import context
from opstrail.core.context import Frame
from opstrail.core.contracts import ContractValidator, SchemaValidationError
from opstrail.core.logging import logger
from opstrail.models.tasks import TaskPayload
from opstrail.services.events.signals import SignalBus, SignalKind

META_KEY = "__opstrail_meta"

T = TypeVar("T")
RawPayload = bytes | str | Mapping[str, Any]


class TaskHooks:
    def __init__(
        self,
        bus: SignalBus,
        *,
        adapter: str = "inline",
        validator: ContractValidator | None = None,
    ) -> None:
        self._bus = bus
        self._adapter = adapter
        self._validator = validator

    # Enqueue side

    @staticmethod
    def inject_context(payload: dict[str, Any]) -> dict[str, Any]:
        context.ensure_correlation_id()
        payload[META_KEY] = context.current().to_dict()
        return payload

    def serialize(self, task: TaskPayload) -> dict[str, Any]:
        return self.inject_context(task.model_dump(mode="json"))

    def encode(self, task: TaskPayload) -> bytes:
        return orjson.dumps(self.serialize(task))

    def enqueue(self, task: TaskPayload, dispatch: Callable[[dict[str, Any]], T]) -> T:
        signal = {"task": task, "queue": task.queue_name, "adapter": self._adapter}
        with self._bus.instrument(SignalKind.TASK_ENQUEUE, signal):
            return dispatch(self.serialize(task))

    # Worker side

    def extract_context(self, payload: Mapping[str, Any]) -> Frame | None:
        meta = payload.get(META_KEY)
        if meta is None:
            return None
        if self._validator is not None:
            try:
                self._validator.validate_task_context(meta)
            except SchemaValidationError as exc:
                logger.warning("task_context_invalid", error=str(exc))
                return None
        return Frame.from_mapping(meta)

    def deserialize(self, payload: RawPayload) -> tuple[TaskPayload, Frame | None]:
        if isinstance(payload, (bytes, str)):
            data = orjson.loads(payload)
        else:
            data = dict(payload)
        frame = self.extract_context(data)
        data.pop(META_KEY, None)
        return TaskPayload.model_validate(data), frame

    def perform(self, payload: RawPayload, body: Callable[[TaskPayload], T]) -> T:
        try:
            task, frame = self.deserialize(payload)
            with self._restored(frame):
                with self._bus.instrument(SignalKind.TASK_PERFORM_START, {"task": task}):
                    pass
                with self._bus.instrument(SignalKind.TASK_PERFORM, {"task": task}):
                    return body(task)
        finally:
            context.reset()

    async def perform_async(self, payload: RawPayload, body: Callable[[TaskPayload], Awaitable[T]]) -> T:
        try:
            task, frame = self.deserialize(payload)
            with self._restored(frame):
                with self._bus.instrument(SignalKind.TASK_PERFORM_START, {"task": task}):
                    pass
                with self._bus.instrument(SignalKind.TASK_PERFORM, {"task": task}):
                    return await body(task)
        finally:
            context.reset()

    @contextmanager
    def _restored(self, frame: Frame | None) -> Iterator[None]:
        if frame is None:
            yield
            return
        with context.scope(**frame.to_dict()):
            yield
