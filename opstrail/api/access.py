from __future__ import annotations

from fastapi import HTTPException, Request, status

from opstrail.core.logging import logger
from opstrail.runtime import Runtime


def runtime_of(request: Request) -> Runtime:
    return request.app.state.runtime


def require_access(request: Request) -> None:
    check = runtime_of(request).config.auth_check
    if check is None:
        return
    try:
        allowed = bool(check(request))
    except Exception as exc:
        logger.warning("auth_check_failed", error_class=type(exc).__name__, error=str(exc))
        allowed = False
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "UNAUTHORIZED"},
        )
