from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


UNMATCHED_PATH = "__unmatched__"

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

crm_lead_conversions_total = Counter(
    "crm_lead_conversions_total",
    "Lead approval attempts by outcome (approved or the error code that stopped it)",
    ["outcome"],
)

crm_lead_conversion_duration_seconds = Histogram(
    "crm_lead_conversion_duration_seconds",
    "Duration of the lead approval unit of work in seconds",
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

cpq_quotes_created_total = Counter(
    "cpq_quotes_created_total",
    "Draft quotes created by lead approval",
    ["kind"],
)


def resolve_http_path_label(request: Request) -> str:
    """Label requests by route template so ids never become label values."""
    route = request.scope.get("route")
    path_format = getattr(route, "path_format", None)
    if not isinstance(path_format, str) or not path_format:
        return UNMATCHED_PATH
    segments = [
        "{id}" if segment.startswith("{") and segment.endswith("}") else segment
        for segment in path_format.split("/")
    ]
    return "/".join(segments)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_lead_conversion(outcome: str, duration: float | None = None) -> None:
    crm_lead_conversions_total.labels(outcome=outcome).inc()
    if duration is not None:
        crm_lead_conversion_duration_seconds.observe(duration)


def observe_quote_created(kind: str) -> None:
    cpq_quotes_created_total.labels(kind=kind).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
