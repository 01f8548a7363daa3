import asyncio
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import asynccontextmanager, contextmanager
from typing import Any
from urllib.parse import urlsplit

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy.orm import Session

from toolgostar.api.routes import router as api_router
from toolgostar.core.config import get_settings
from toolgostar.core.context import RequestContextMiddleware
from toolgostar.core.database import SessionLocal, engine, get_db
from toolgostar.core.errors import register_exception_handlers
from toolgostar.core.events import InternalEvent, event_bus
from toolgostar.leads.analytics import analytics_recorder
from toolgostar.logging import configure_logging
from toolgostar.middleware.correlation_id import CorrelationIdMiddleware
from toolgostar.middleware.request_logging import RequestLoggingMiddleware
from toolgostar.middleware.shutdown import ShutdownDrainMiddleware, drain_state
from toolgostar.otel import get_fastapi_server_request_hook, setup_otel, shutdown_otel


configure_logging()
logger = logging.getLogger("toolgostar.lifecycle")
_subscriptions_registered = False

_lead_event_types = [
    "lead.contact.submitted",
    "lead.quote.submitted",
]


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


def _on_lead_submitted(event: InternalEvent) -> None:
    payload = event.payload.get("payload", {}) if isinstance(event.payload, dict) else {}
    logger.info("lead.event", extra={"event_name": event.name, "entity_id": payload.get("contact_id")})


@contextmanager
def _session_scope() -> Iterator[Session]:
    override = app.dependency_overrides.get(get_db) if "app" in globals() else None
    if override is None:
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()
        return

    generator = override()
    session = next(generator)
    try:
        yield session
    finally:
        try:
            next(generator)
        except StopIteration:
            pass


def _handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    # Process state is unknown after an unhandled loop fault; the supervisor restarts us.
    logger.critical(
        "process.unhandled_async_error",
        exc_info=context.get("exception"),
        extra={"error": str(context.get("message", ""))},
    )
    logging.shutdown()
    os._exit(1)


def _handle_uncaught_exception(exc_type, exc_value, exc_traceback) -> None:  # type: ignore[no-untyped-def]
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logger.critical("process.uncaught_exception", exc_info=(exc_type, exc_value, exc_traceback))


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    settings = get_settings()
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        for event_name in _lead_event_types:
            event_bus.subscribe(event_name, _on_lead_submitted)
        _subscriptions_registered = True

    asyncio.get_running_loop().set_exception_handler(_handle_loop_exception)
    sys.excepthook = _handle_uncaught_exception
    if settings.rate_limit_disabled and not settings.rate_limit_bypass_active:
        logger.warning("ratelimit.bypass_ignored", extra={"status": settings.app_env})
    elif settings.rate_limit_bypass_active:
        logger.warning("ratelimit.bypass_active", extra={"status": settings.app_env})

    drain_state.reset()
    event_bus.publish("system.started", {"service": "api"})
    logger.info("server.started", extra={"status": settings.app_env})
    try:
        yield
    finally:
        drain_state.begin()
        engine.dispose()
        shutdown_otel()
        logger.info("server.stopped")


settings = get_settings()

app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
app.add_middleware(ShutdownDrainMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
register_exception_handlers(app)
app.include_router(api_router)

analytics_recorder.configure(
    session_scope=_session_scope,
    frontend_host=urlsplit(settings.frontend_url).hostname,
)

if settings.otel_enabled:
    setup_otel(settings)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
