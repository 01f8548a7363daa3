from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from toolgostar.core.config import Settings, get_settings


_configured = False
_provider: TracerProvider | None = None


def _get_or_create_provider(service_name: str, service_version: str) -> TracerProvider:
    global _provider

    if _provider is not None:
        return _provider

    resource = Resource.create({"service.name": service_name, "service.version": service_version})
    provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def setup_otel(settings: Settings | None = None) -> TracerProvider | None:
    global _configured

    settings = settings or get_settings()
    if not settings.otel_enabled:
        return None

    provider = _get_or_create_provider(settings.otel_service_name, settings.app_version)
    if _configured:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _configured = True
    return provider


def shutdown_otel() -> None:
    """Flush batched spans before the process exits; a no-op when tracing was never configured."""
    global _configured

    if _provider is not None and _configured:
        _provider.force_flush()
        _provider.shutdown()
        _configured = False


def setup_inmemory_otel(service_name: str = "toolgostar-api") -> InMemorySpanExporter:
    provider = _get_or_create_provider(service_name, get_settings().app_version)
    exporter = InMemorySpanExporter()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def get_fastapi_server_request_hook():
    def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
        if span is None or not span.is_recording():
            return
        headers = dict(scope.get("headers", []))
        correlation_raw = headers.get(b"x-correlation-id")
        if correlation_raw:
            span.set_attribute("correlation_id", correlation_raw.decode("utf-8", errors="replace"))

    return server_request_hook
