from __future__ import annotations

import asyncio
from datetime import UTC, datetime

from opstrail.core.config import Settings
from opstrail.core.logging import logger
from opstrail.services.events.store import EventStore


class RetentionTask:
    """Purges events older than the configured retention period."""

    def __init__(self, store: EventStore, config: Settings) -> None:
        self._store = store
        self._config = config

    def cutoff(self, now: datetime | None = None) -> datetime | None:
        retention = self._config.retention_period
        if retention is None:
            return None
        return (now or datetime.now(UTC)) - retention

    def run(self, now: datetime | None = None) -> int | None:
        cutoff = self.cutoff(now)
        if cutoff is None:
            logger.info("retention_purge_skipped", reason="retention_disabled")
            return None
        deleted = self._store.purge(before=cutoff)
        logger.info("retention_purge_completed", deleted=deleted, cutoff=cutoff.isoformat())
        return deleted

    async def run_periodically(self, interval_seconds: float, stop: asyncio.Event | None = None) -> None:
        stop = stop or asyncio.Event()
        while not stop.is_set():
            try:
                await asyncio.to_thread(self.run)
            except Exception as exc:
                logger.error("retention_purge_failed", error_class=type(exc).__name__, error=str(exc))
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
            except TimeoutError:
                continue
