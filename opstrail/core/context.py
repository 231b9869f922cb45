"""
Frame-local correlation context.

One immutable ``Frame`` snapshot per execution frame, held in a ContextVar so
threads and asyncio tasks never observe each other's values. The same
snapshot carries the recorder's recursion flag.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, replace
from typing import Any

CONTEXT_FIELDS = ("correlation_id", "request_id", "tenant_id", "actor_id")


@dataclass(frozen=True, slots=True)
class Frame:
    correlation_id: str | None = None
    request_id: str | None = None
    tenant_id: str | None = None
    actor_id: str | None = None
    recording: bool = False

    def to_dict(self) -> dict[str, str | None]:
        return {name: getattr(self, name) for name in CONTEXT_FIELDS}

    @classmethod
    def from_mapping(cls, data: Any) -> Frame | None:
        if not isinstance(data, dict):
            return None
        values = {}
        for name in CONTEXT_FIELDS:
            value = data.get(name)
            values[name] = None if value is None else str(value)
        return cls(**values)


_EMPTY = Frame()
_frame: ContextVar[Frame] = ContextVar("opstrail_frame", default=_EMPTY)


def new_id() -> str:
    return str(uuid.uuid4())


def current() -> Frame:
    return _frame.get()


def current_correlation_id() -> str | None:
    return _frame.get().correlation_id


def ensure_correlation_id() -> str:
    frame = _frame.get()
    if frame.correlation_id:
        return frame.correlation_id
    correlation_id = new_id()
    _frame.set(replace(frame, correlation_id=correlation_id))
    return correlation_id


def assign(**values: str | None) -> None:
    """Overwrite context fields for the rest of the frame. Boundary adapters only."""
    unknown = set(values) - set(CONTEXT_FIELDS)
    if unknown:
        raise TypeError(f"unknown context fields: {sorted(unknown)}")
    _frame.set(replace(_frame.get(), **values))


def reset() -> None:
    _frame.set(replace(_frame.get(), correlation_id=None, request_id=None, tenant_id=None, actor_id=None))


@contextmanager
def scope(
    *,
    correlation_id: str | None = None,
    request_id: str | None = None,
    tenant_id: str | None = None,
    actor_id: str | None = None,
) -> Iterator[Frame]:
    """Apply the given fields for the duration of the block.

    Fields left as None keep their current value. On exit the four fields are
    restored to what they were on entry, whether or not the block raised.
    """
    previous = _frame.get()
    overrides = {
        name: value
        for name, value in (
            ("correlation_id", correlation_id),
            ("request_id", request_id),
            ("tenant_id", tenant_id),
            ("actor_id", actor_id),
        )
        if value is not None
    }
    _frame.set(replace(previous, **overrides))
    try:
        yield _frame.get()
    finally:
        _frame.set(replace(_frame.get(), **previous.to_dict()))


def is_recording() -> bool:
    return _frame.get().recording


@contextmanager
def recording_guard() -> Iterator[None]:
    _frame.set(replace(_frame.get(), recording=True))
    try:
        yield
    finally:
        _frame.set(replace(_frame.get(), recording=False))
