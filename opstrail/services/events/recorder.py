from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

import orjson

from opstrail.core import context
from opstrail.core.config import Settings
from opstrail.core.contracts import SchemaValidationError
from opstrail.core.logging import logger
from opstrail.models.events import Event, EventRecord
from opstrail.services.events.store import EventStore

_JSON_OPTIONS = orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS


def safe_serialize(value: Any) -> Any:
    """Reduce a value to JSON-native types; anything unknown becomes its string form."""
    try:
        if value is None or isinstance(value, (str, bool, int, float)):
            return value
        if isinstance(value, Mapping):
            return {str(key): safe_serialize(item) for key, item in value.items()}
        if isinstance(value, (list, tuple, set, frozenset)):
            return [safe_serialize(item) for item in value]
        return str(value)
    except Exception:
        return type(value).__name__


def canonical_bytes(value: Any) -> bytes:
    return orjson.dumps(value, option=_JSON_OPTIONS)


def bytesize(value: Any) -> int | None:
    if value is None:
        return None
    try:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return len(value)
        if isinstance(value, str):
            return len(value.encode("utf-8"))
        return len(canonical_bytes(safe_serialize(value)))
    except Exception:
        return None


def truncate_metadata(metadata: Any, max_bytes: int) -> dict[str, Any]:
    try:
        safe = safe_serialize(metadata)
        if not isinstance(safe, dict):
            safe = {"value": safe}
        if max_bytes <= 0:
            canonical_bytes(safe)
            return safe
        size = len(canonical_bytes(safe))
        if size <= max_bytes:
            return safe
        return {"truncated": True, "max_bytes": max_bytes, "bytes": size}
    except Exception:
        return {"unserializable": True}


def safe_arguments(arguments: Any, max_bytes: int) -> Any:
    try:
        if arguments is None:
            items: list[Any] = []
        elif isinstance(arguments, (list, tuple)):
            items = list(arguments)
        else:
            items = [arguments]
        safe = [safe_serialize(item) for item in items]
        if max_bytes <= 0:
            return safe
        size = len(canonical_bytes(safe))
        if size <= max_bytes:
            return safe
        return {"truncated": True, "max_bytes": max_bytes, "bytes": size}
    except Exception:
        return {"unserializable": True}


class EventRecorder:
    """Turns observed operations into stored events; never raises into the caller."""

    def __init__(self, store: EventStore, config: Settings) -> None:
        self._store = store
        self._config = config

    @property
    def config(self) -> Settings:
        return self._config

    def record(
        self,
        event_type: str,
        name: str,
        duration_ms: float | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> Event | None:
        if context.is_recording():
            return None
        if not self._config.enabled:
            return None
        if not self._config.should_sample():
            return None

        with context.recording_guard():
            try:
                context.ensure_correlation_id()
                meta = self._redact(dict(metadata or {}))
                meta = truncate_metadata(meta, self._config.max_payload_bytes)

                frame = context.current()
                record = EventRecord(
                    event_type=event_type,
                    name=str(name),
                    correlation_id=frame.correlation_id,
                    request_id=frame.request_id,
                    tenant_id=frame.tenant_id,
                    actor_id=frame.actor_id,
                    duration_ms=duration_ms,
                    occurred_at=datetime.now(UTC),
                    metadata=meta,
                )
                return self._store.append(record)
            except SchemaValidationError as exc:
                logger.warning(
                    "event_record_rejected",
                    event_type=event_type,
                    event_name=str(name),
                    error=str(exc),
                )
                return None
            except Exception as exc:
                logger.warning(
                    "event_record_failed",
                    event_type=event_type,
                    error_class=type(exc).__name__,
                    error=str(exc),
                )
                return None

    def _redact(self, metadata: dict[str, Any]) -> dict[str, Any]:
        redactor = self._config.redactor
        if redactor is None:
            return metadata
        try:
            redacted = redactor(dict(metadata))
        except Exception as exc:
            logger.warning("event_redactor_failed", error_class=type(exc).__name__, error=str(exc))
            return metadata
        if not isinstance(redacted, Mapping):
            logger.warning("event_redactor_failed", error_class="TypeError", error="redactor must return a mapping")
            return metadata
        return dict(redacted)
