from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

EventOrder = Literal["recent", "chronological"]
GroupBy = Literal["event_type", "name"]


class EventRecord(BaseModel):
    """An event as captured, before the store assigns an id."""

    model_config = ConfigDict(extra="forbid")

    event_type: str = Field(min_length=1)
    name: str = Field(min_length=1)
    correlation_id: str | None = None
    request_id: str | None = None
    tenant_id: str | None = None
    actor_id: str | None = None
    duration_ms: float | None = None
    occurred_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


class Event(EventRecord):
    id: int
    created_at: datetime


class EventFilter(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event_type: str | None = None
    event_type_prefix: str | None = None
    correlation_id: str | None = None
    request_id: str | None = None
    tenant_id: str | None = None
    actor_id: str | None = None
    name_contains: str | None = None
    since: datetime | None = None
    until: datetime | None = None

    @field_validator(
        "event_type",
        "event_type_prefix",
        "correlation_id",
        "request_id",
        "tenant_id",
        "actor_id",
        "name_contains",
        mode="before",
    )
    @classmethod
    def _blank_is_absent(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class EventStats(BaseModel):
    key: str
    count: int
    avg_duration_ms: float | None = None
    max_duration_ms: float | None = None
