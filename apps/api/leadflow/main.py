from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from leadflow.api.routes import router as api_router
from leadflow.core.config import get_settings
from leadflow.core.database import get_db
from leadflow.core.events import InternalEvent, event_bus
from leadflow.health import run_startup_health_check
from leadflow.logging import configure_logging
from leadflow.middleware.request_context import RequestContextMiddleware
from leadflow.middleware.request_logging import RequestLoggingMiddleware
from leadflow.otel import server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("leadflow.lifecycle")


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system.started", extra={"event_type": event.name})


def _on_stage_changed(event: InternalEvent) -> None:
    payload = event.payload.get("payload", {})
    logger.info(
        "lead.stage_changed",
        extra={
            "event_type": event.name,
            "lead_id": payload.get("lead_id"),
            "stage_id": payload.get("from_stage_id"),
            "target_stage_id": payload.get("stage_id"),
            "eligibility": payload.get("eligibility"),
        },
    )


def _run_health_check(app: FastAPI) -> None:
    # Tests swap the session factory through the get_db override; honour it here too.
    provider = app.dependency_overrides.get(get_db, get_db)
    sessions = provider()
    session = next(sessions)
    try:
        run_startup_health_check(session)
    finally:
        sessions.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    event_bus.subscribe("system.started", _on_system_started)
    event_bus.subscribe("pipeline.lead.stage_changed", _on_stage_changed)
    if get_settings().startup_health_check:
        _run_health_check(app)
    event_bus.publish("system.started", {"service": get_settings().app_name})
    yield
    event_bus.unsubscribe("pipeline.lead.stage_changed", _on_stage_changed)
    event_bus.unsubscribe("system.started", _on_system_started)


settings = get_settings()

app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
# Added last runs first: the request context must be bound before request logging.
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestContextMiddleware)
app.include_router(api_router)

setup_otel(settings)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=server_request_hook)
