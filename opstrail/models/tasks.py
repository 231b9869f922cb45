from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class TaskPayload(BaseModel):
    """The host task as handed to a queue: kind, arguments and queue bookkeeping."""

    model_config = ConfigDict(extra="ignore")

    task_id: str = Field(default_factory=lambda: uuid4().hex)
    kind: str = Field(min_length=1)
    queue_name: str = "default"
    arguments: list[Any] = Field(default_factory=list)
    provider_job_id: str | None = None
    enqueued_at: datetime | None = Field(default_factory=lambda: datetime.now(UTC))
