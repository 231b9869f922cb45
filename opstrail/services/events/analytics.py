from __future__ import annotations

from datetime import UTC, datetime, timedelta
from statistics import fmean
from typing import Any

from opstrail.models.events import Event, EventFilter
from opstrail.services.events.store import EventStore


class OpsAnalytics:
    """Windowed summaries over the event trail for the overview, task, cache and cable views."""

    TIME_WINDOWS = {
        "5m": timedelta(minutes=5),
        "15m": timedelta(minutes=15),
        "30m": timedelta(minutes=30),
        "1h": timedelta(hours=1),
        "6h": timedelta(hours=6),
        "24h": timedelta(hours=24),
        "7d": timedelta(days=7),
    }
    DEFAULT_WINDOW = "1h"
    # Upper bound on rows scanned in Python for metadata-based counts.
    SCAN_LIMIT = 100_000

    def __init__(self, store: EventStore) -> None:
        self._store = store

    @classmethod
    def resolve_window(cls, window: str | None) -> str:
        return window if window in cls.TIME_WINDOWS else cls.DEFAULT_WINDOW

    @classmethod
    def window_start(cls, window: str | None, now: datetime | None = None) -> datetime:
        return (now or datetime.now(UTC)) - cls.TIME_WINDOWS[cls.resolve_window(window)]

    def overview(self, *, window: str | None = None, now: datetime | None = None) -> dict[str, Any]:
        since = self.window_start(window, now)
        base = EventFilter(since=since)
        stats = self._store.aggregate(base, group_by="event_type")
        return {
            "window": self.resolve_window(window),
            "since": since.isoformat(),
            "total_events": self._store.count(base),
            "unique_correlations": self._store.count_correlations(base),
            "stats": {row.key: row.model_dump(exclude={"key"}) for row in stats},
            "recent_events": self._dump(self._store.query(base, limit=10)),
        }

    def task_summary(self, *, window: str | None = None, now: datetime | None = None) -> dict[str, Any]:
        since = self.window_start(window, now)
        performed = self._store.query(
            EventFilter(event_type="task.perform", since=since),
            limit=self.SCAN_LIMIT,
        )
        durations = [event.duration_ms for event in performed if event.duration_ms is not None]
        errors = [event for event in performed if event.metadata.get("exception")]
        return {
            "window": self.resolve_window(window),
            "since": since.isoformat(),
            "enqueue_count": self._store.count(EventFilter(event_type="task.enqueue", since=since)),
            "perform_count": len(performed),
            "avg_perform_ms": fmean(durations) if durations else None,
            "max_perform_ms": max(durations) if durations else None,
            "error_count": len(errors),
            "top_tasks": self._top(EventFilter(event_type="task.perform", since=since), group_by="name"),
            "recent": self._dump(self._store.query(EventFilter(event_type_prefix="task.", since=since), limit=50)),
        }

    def cache_summary(self, *, window: str | None = None, now: datetime | None = None) -> dict[str, Any]:
        since = self.window_start(window, now)
        reads = self._store.query(EventFilter(event_type="cache.read", since=since), limit=self.SCAN_LIMIT)
        read_count = len(reads)
        hit_count = sum(1 for event in reads if event.metadata.get("hit") is True)
        family = EventFilter(event_type_prefix="cache.", since=since)
        return {
            "window": self.resolve_window(window),
            "since": since.isoformat(),
            "read_count": read_count,
            "write_count": self._store.count(EventFilter(event_type="cache.write", since=since)),
            "delete_count": self._store.count(EventFilter(event_type="cache.delete", since=since)),
            "hit_count": hit_count,
            "miss_count": read_count - hit_count,
            "hit_rate": round(hit_count / read_count * 100, 1) if read_count else None,
            "top_keys": self._top(family, group_by="name"),
            "recent": self._dump(self._store.query(family, limit=50)),
        }

    def broadcast_summary(self, *, window: str | None = None, now: datetime | None = None) -> dict[str, Any]:
        since = self.window_start(window, now)
        family = EventFilter(event_type_prefix="cable.", since=since)
        totals = self._store.aggregate(family, group_by="event_type")
        broadcast = next((row for row in totals if row.key == "cable.broadcast"), None)
        return {
            "window": self.resolve_window(window),
            "since": since.isoformat(),
            "broadcast_count": broadcast.count if broadcast else 0,
            "avg_duration_ms": broadcast.avg_duration_ms if broadcast else None,
            "streams": self._top(family, group_by="name"),
            "recent": self._dump(self._store.query(family, limit=50)),
        }

    def _top(self, filters: EventFilter, *, group_by: str, limit: int = 20) -> list[dict[str, Any]]:
        return [row.model_dump() for row in self._store.aggregate(filters, group_by=group_by, limit=limit)]

    @staticmethod
    def _dump(events: list[Event]) -> list[dict[str, Any]]:
        return [event.model_dump(mode="json") for event in events]
