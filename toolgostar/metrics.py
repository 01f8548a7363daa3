from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

rate_limit_decisions_total = Counter(
    "rate_limit_decisions_total",
    "Rate limiter decisions by tier and outcome",
    ["tier", "outcome"],
)

rate_limit_store_errors_total = Counter(
    "rate_limit_store_errors_total",
    "Counter store failures that caused the limiter to fail open",
    ["backend"],
)

auth_failures_total = Counter(
    "auth_failures_total",
    "Authentication and authorization failures by kind",
    ["kind"],
)

lead_submissions_total = Counter(
    "lead_submissions_total",
    "Accepted public lead submissions",
    ["form_type"],
)

lead_transitions_total = Counter(
    "lead_transitions_total",
    "Lead lifecycle transitions",
    ["entity_type", "action"],
)

analytics_failures_total = Counter(
    "analytics_failures_total",
    "Analytics events dropped because recording failed",
    ["form_type"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_rate_limit_decision(tier: str, allowed: bool) -> None:
    rate_limit_decisions_total.labels(tier=tier, outcome="allow" if allowed else "deny").inc()


def observe_rate_limit_store_error(backend: str) -> None:
    rate_limit_store_errors_total.labels(backend=backend).inc()


def observe_auth_failure(kind: str) -> None:
    auth_failures_total.labels(kind=kind).inc()


def observe_lead_submission(form_type: str) -> None:
    lead_submissions_total.labels(form_type=form_type).inc()


def observe_lead_transition(entity_type: str, action: str) -> None:
    lead_transitions_total.labels(entity_type=entity_type, action=action).inc()


def observe_analytics_failure(form_type: str) -> None:
    analytics_failures_total.labels(form_type=form_type).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
