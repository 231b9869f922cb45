from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from opstrail.core import context
from opstrail.core.config import Resolver, Settings, settings
from opstrail.core.logging import logger

CORRELATION_HEADER = "X-Correlation-ID"
REQUEST_ID_HEADER = "X-Request-ID"


class ContextMiddleware(BaseHTTPMiddleware):
    """Seeds the correlation context for each inbound request and clears it afterwards."""

    def __init__(self, app: ASGIApp, config: Settings | None = None) -> None:
        super().__init__(app)
        self._config = config if config is not None else settings

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        context.reset()
        try:
            context.assign(
                correlation_id=request.headers.get(CORRELATION_HEADER) or context.new_id(),
                request_id=(
                    request.headers.get(REQUEST_ID_HEADER)
                    or getattr(request.state, "request_id", None)
                    or context.new_id()
                ),
                tenant_id=self._resolve("tenant_resolver", self._config.tenant_resolver, request),
                actor_id=self._resolve("actor_resolver", self._config.actor_resolver, request),
            )
            return await call_next(request)
        finally:
            context.reset()

    @staticmethod
    def _resolve(label: str, resolver: Resolver | None, request: Request) -> str | None:
        if resolver is None:
            return None
        try:
            value: Any = resolver(request)
            return None if value is None else str(value)
        except Exception as exc:
            logger.warning(
                "context_resolver_failed",
                resolver=label,
                error_class=type(exc).__name__,
                error=str(exc),
            )
            return None
