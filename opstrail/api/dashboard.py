from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from opstrail.api.access import require_access, runtime_of

router = APIRouter(prefix="/dashboard", tags=["dashboard"], dependencies=[Depends(require_access)])


@router.get("")
async def overview(request: Request, window: str | None = Query(default=None)) -> dict:
    return runtime_of(request).analytics.overview(window=window)


@router.get("/tasks")
async def tasks(request: Request, window: str | None = Query(default=None)) -> dict:
    return runtime_of(request).analytics.task_summary(window=window)


@router.get("/cache")
async def cache(request: Request, window: str | None = Query(default=None)) -> dict:
    return runtime_of(request).analytics.cache_summary(window=window)


@router.get("/cable")
async def cable(request: Request, window: str | None = Query(default=None)) -> dict:
    return runtime_of(request).analytics.broadcast_summary(window=window)
