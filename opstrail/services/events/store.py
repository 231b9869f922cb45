from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    event,
    func,
    insert,
    select,
)
from sqlalchemy.engine import Engine, RowMapping
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from opstrail.core.contracts import ContractValidator
from opstrail.models.events import Event, EventFilter, EventOrder, EventRecord, EventStats, GroupBy

RELATED_LIMIT = 200
SQLITE_BUSY_TIMEOUT_SECONDS = 30.0


class UTCDateTime(TypeDecorator):
    """Stores aware UTC datetimes; SQLite hands them back naive, so re-attach UTC on read."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        return None if value is None else as_utc(value)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        return None if value is None else as_utc(value)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


metadata_obj = MetaData()

events_table = Table(
    "opstrail_events",
    metadata_obj,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("event_type", String(255), nullable=False, index=True),
    Column("name", Text, nullable=False, index=True),
    Column("correlation_id", Text, index=True),
    Column("request_id", Text, index=True),
    Column("tenant_id", Text, index=True),
    Column("actor_id", Text, index=True),
    Column("duration_ms", Float),
    Column("occurred_at", UTCDateTime, nullable=False, index=True),
    Column("metadata", JSON, nullable=False, default=dict),
    Column("created_at", UTCDateTime, nullable=False),
    Index("ix_opstrail_events_event_type_occurred_at", "event_type", "occurred_at"),
)


class EventStore:
    """Append-only event table with composable filters, aggregates and bulk deletion."""

    def __init__(
        self,
        database_url: str | None = None,
        *,
        engine: Engine | None = None,
        validator: ContractValidator | None = None,
    ) -> None:
        if engine is None:
            if database_url is None:
                raise ValueError("database_url or engine is required")
            engine = _create_engine(database_url)
        self._engine = engine
        self._validator = validator
        metadata_obj.create_all(self._engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    def append(self, record: EventRecord) -> Event:
        row = record.model_dump()
        if self._validator is not None:
            self._validator.validate_event_record(record.model_dump(mode="json"))
        row["created_at"] = datetime.now(UTC)

        with self._engine.begin() as conn:
            result = conn.execute(insert(events_table).values(**row))
            event_id = result.inserted_primary_key[0]
        return Event(id=event_id, **row)

    def get(self, event_id: int) -> Event | None:
        stmt = select(events_table).where(events_table.c.id == event_id)
        with self._engine.connect() as conn:
            row = conn.execute(stmt).mappings().first()
        return None if row is None else _to_event(row)

    def query(
        self,
        filters: EventFilter | None = None,
        *,
        order: EventOrder = "recent",
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Event]:
        stmt = _apply_filters(select(events_table), filters)
        if order == "recent":
            stmt = stmt.order_by(events_table.c.occurred_at.desc(), events_table.c.id.desc())
        else:
            stmt = stmt.order_by(events_table.c.occurred_at.asc(), events_table.c.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)

        with self._engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [_to_event(row) for row in rows]

    def count(self, filters: EventFilter | None = None) -> int:
        stmt = _apply_filters(select(func.count()).select_from(events_table), filters)
        with self._engine.connect() as conn:
            return int(conn.execute(stmt).scalar_one())

    def count_correlations(self, filters: EventFilter | None = None) -> int:
        column = events_table.c.correlation_id
        stmt = select(func.count(func.distinct(column))).where(column.is_not(None))
        stmt = _apply_filters(stmt, filters)
        with self._engine.connect() as conn:
            return int(conn.execute(stmt).scalar_one())

    def aggregate(
        self,
        filters: EventFilter | None = None,
        *,
        group_by: GroupBy = "event_type",
        limit: int | None = None,
    ) -> list[EventStats]:
        key = events_table.c[group_by]
        event_count = func.count().label("event_count")
        stmt = select(
            key.label("key"),
            event_count,
            func.avg(events_table.c.duration_ms).label("avg_duration_ms"),
            func.max(events_table.c.duration_ms).label("max_duration_ms"),
        )
        stmt = _apply_filters(stmt, filters).group_by(key).order_by(event_count.desc(), key.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        with self._engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [
            EventStats(
                key=row["key"],
                count=row["event_count"],
                avg_duration_ms=None if row["avg_duration_ms"] is None else float(row["avg_duration_ms"]),
                max_duration_ms=None if row["max_duration_ms"] is None else float(row["max_duration_ms"]),
            )
            for row in rows
        ]

    def related(self, event: Event, *, limit: int = RELATED_LIMIT) -> list[Event]:
        if event.correlation_id is None:
            return []
        return self.query(
            EventFilter(correlation_id=event.correlation_id),
            order="chronological",
            limit=limit,
        )

    def delete(self, event_id: int) -> bool:
        with self._engine.begin() as conn:
            result = conn.execute(delete(events_table).where(events_table.c.id == event_id))
        return result.rowcount > 0

    def clear(self) -> int:
        with self._engine.begin() as conn:
            result = conn.execute(delete(events_table))
        return result.rowcount

    def purge(self, before: datetime) -> int:
        stmt = delete(events_table).where(events_table.c.occurred_at < as_utc(before))
        with self._engine.begin() as conn:
            result = conn.execute(stmt)
        return result.rowcount


def _create_engine(database_url: str) -> Engine:
    if database_url in ("sqlite://", "sqlite:///:memory:", "sqlite+pysqlite:///:memory:"):
        # One shared in-memory database for every thread.
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS},
        )

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        return engine
    return create_engine(database_url, pool_pre_ping=True)


def _apply_filters(stmt: Any, filters: EventFilter | None) -> Any:
    if filters is None:
        return stmt
    c = events_table.c
    if filters.event_type is not None:
        stmt = stmt.where(c.event_type == filters.event_type)
    if filters.event_type_prefix is not None:
        stmt = stmt.where(c.event_type.startswith(filters.event_type_prefix, autoescape=True))
    if filters.correlation_id is not None:
        stmt = stmt.where(c.correlation_id == filters.correlation_id)
    if filters.request_id is not None:
        stmt = stmt.where(c.request_id == filters.request_id)
    if filters.tenant_id is not None:
        stmt = stmt.where(c.tenant_id == filters.tenant_id)
    if filters.actor_id is not None:
        stmt = stmt.where(c.actor_id == filters.actor_id)
    if filters.name_contains is not None:
        stmt = stmt.where(c.name.contains(filters.name_contains, autoescape=True))
    if filters.since is not None:
        stmt = stmt.where(c.occurred_at >= as_utc(filters.since))
    if filters.until is not None:
        stmt = stmt.where(c.occurred_at <= as_utc(filters.until))
    return stmt


def _to_event(row: RowMapping) -> Event:
    data = dict(row)
    if not isinstance(data.get("metadata"), dict):
        data["metadata"] = {}
    return Event.model_validate(data)
