from __future__ import annotations

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from opstrail.api.access import require_access, runtime_of
from opstrail.models.events import EventFilter
from opstrail.services.events.analytics import OpsAnalytics

router = APIRouter(prefix="/events", tags=["events"], dependencies=[Depends(require_access)])


@router.get("")
async def list_events(
    request: Request,
    event_type: str | None = Query(default=None),
    correlation_id: str | None = Query(default=None),
    request_id: str | None = Query(default=None),
    tenant_id: str | None = Query(default=None),
    actor_id: str | None = Query(default=None),
    q: str | None = Query(default=None),
    since: datetime | None = Query(default=None),
    until: datetime | None = Query(default=None),
    limit: int | None = Query(default=None),
) -> dict:
    runtime = runtime_of(request)
    store = runtime.event_store
    limit = _clamp_limit(limit, runtime.config.query_limit_default, runtime.config.query_limit_max)
    filters = EventFilter(
        event_type=event_type,
        correlation_id=correlation_id,
        request_id=request_id,
        tenant_id=tenant_id,
        actor_id=actor_id,
        name_contains=q,
        since=since,
        until=until,
    )
    events = store.query(filters, order="recent", limit=limit)
    return {
        "count": len(events),
        "limit": limit,
        "filters": filters.model_dump(mode="json", exclude_none=True),
        "events": [event.model_dump(mode="json") for event in events],
    }


@router.get("/stats")
async def event_stats(
    request: Request,
    window: str = Query(default=OpsAnalytics.DEFAULT_WINDOW),
    group_by: Literal["event_type", "name"] = Query(default="event_type"),
    event_type: str | None = Query(default=None),
) -> dict:
    runtime = runtime_of(request)
    since = OpsAnalytics.window_start(window)
    rows = runtime.event_store.aggregate(EventFilter(event_type=event_type, since=since), group_by=group_by)
    return {
        "window": OpsAnalytics.resolve_window(window),
        "group_by": group_by,
        "stats": [row.model_dump() for row in rows],
    }


@router.post("/purge")
async def purge_events(
    request: Request,
    before: datetime | None = Query(default=None),
) -> dict:
    runtime = runtime_of(request)
    cutoff = before or runtime.retention.cutoff()
    if cutoff is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "RETENTION_DISABLED"},
        )
    deleted = runtime.event_store.purge(before=cutoff)
    return {"deleted": deleted, "before": cutoff.isoformat()}


@router.delete("")
async def clear_events(request: Request) -> dict:
    return {"deleted": runtime_of(request).event_store.clear()}


@router.get("/{event_id}")
async def show_event(event_id: int, request: Request) -> dict:
    store = runtime_of(request).event_store
    event = store.get(event_id)
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "EVENT_NOT_FOUND", "event_id": event_id},
        )
    related = store.related(event, limit=runtime_of(request).config.related_limit)
    return {
        "event": event.model_dump(mode="json"),
        "related": [item.model_dump(mode="json") for item in related],
    }


@router.delete("/{event_id}")
async def delete_event(event_id: int, request: Request) -> dict:
    if not runtime_of(request).event_store.delete(event_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "EVENT_NOT_FOUND", "event_id": event_id},
        )
    return {"deleted": 1, "event_id": event_id}


def _clamp_limit(limit: int | None, default: int, maximum: int) -> int:
    if limit is None or limit <= 0:
        return default
    return min(limit, maximum)
