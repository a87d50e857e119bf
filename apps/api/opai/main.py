from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from opai import events
from opai.api.routes import router as api_router
from opai.core.config import get_settings
from opai.core.database import SessionLocal
from opai.cpq.seed import seed_cpq_catalogs
from opai.logging import configure_logging
from opai.middleware.request_context import RequestContextMiddleware
from opai.otel import configure_tracing, server_request_hook


configure_logging()
logger = logging.getLogger("opai.lifecycle")


def _log_lead_event(envelope: events.EventEnvelope) -> None:
    payload = envelope.get("payload") or {}
    logger.info(
        "lead_event",
        extra={"event_name": envelope.get("event_type"), "lead_id": payload.get("lead_id")},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    for event_type in (events.LEAD_APPROVED, events.LEAD_REJECTED):
        events.subscribe(event_type, _log_lead_event)
    if settings.seed_catalogs_on_startup:
        with SessionLocal() as session:
            seed_cpq_catalogs(session)
        logger.info("catalogs_seeded")
    logger.info("startup", extra={"event_name": "system.started"})
    yield
    for event_type in (events.LEAD_APPROVED, events.LEAD_REJECTED):
        events.unsubscribe(event_type, _log_lead_event)


app = FastAPI(title="OPAI API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestContextMiddleware)
app.include_router(api_router)

configure_tracing()
if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=server_request_hook)
