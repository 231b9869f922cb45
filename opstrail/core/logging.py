import logging
from typing import Any

import structlog

from opstrail.core import context
from opstrail.core.config import settings


def add_correlation_context(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    frame = context.current()
    if frame.correlation_id is not None:
        event_dict.setdefault("correlation_id", frame.correlation_id)
    if frame.request_id is not None:
        event_dict.setdefault("request_id", frame.request_id)
    return event_dict


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format="%(message)s",
    )

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.add_log_level,
            add_correlation_context,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger("opstrail")
