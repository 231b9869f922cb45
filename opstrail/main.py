from fastapi import FastAPI

from opstrail.adapters.http import ContextMiddleware
from opstrail.api.dashboard import router as dashboard_router
from opstrail.api.events import router as events_router
from opstrail.api.health import router as health_router
from opstrail.core.config import Settings, settings
from opstrail.core.logging import configure_logging
from opstrail.runtime import Runtime, build_runtime


def create_application(
    *,
    configuration: Settings | None = None,
    database_url: str | None = None,
    runtime: Runtime | None = None,
) -> FastAPI:
    config = configuration if configuration is not None else settings
    configure_logging(config.log_level)

    if runtime is None:
        runtime = build_runtime(configuration=config, database_url=database_url)

    app = FastAPI(title="opstrail")
    app.add_middleware(ContextMiddleware, config=runtime.config)

    app.state.runtime = runtime
    app.state.event_store = runtime.event_store
    app.state.recorder = runtime.recorder
    app.state.signal_bus = runtime.bus
    app.state.task_hooks = runtime.task_hooks

    prefix = runtime.config.api_prefix
    app.include_router(health_router, prefix=prefix)
    app.include_router(events_router, prefix=prefix)
    app.include_router(dashboard_router, prefix=prefix)
    return app
