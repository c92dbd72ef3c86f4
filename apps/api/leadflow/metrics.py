from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


UNMATCHED_PATH = "unmatched"

http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests by method, route template and status",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
)

pipeline_transitions_total = Counter(
    "pipeline_transitions_total",
    "Stage transition requests by outcome",
    ["outcome"],
)

pipeline_eligibility_failures_total = Counter(
    "pipeline_eligibility_failures_total",
    "Eligibility checks that raised and were treated as ineligible",
)

pipeline_generated_activities_total = Counter(
    "pipeline_generated_activities_total",
    "Mandatory activities generated on stage entry",
    ["stage_id"],
)

pipeline_activity_insert_failures_total = Counter(
    "pipeline_activity_insert_failures_total",
    "Mandatory activity inserts that failed",
    ["stage_id"],
)

_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def resolve_http_path_label(request: Request) -> str:
    """Route template with every parameter collapsed to ``{id}``.

    Requests that matched no route share one label to keep cardinality bounded.
    """
    route = request.scope.get("route")
    template = getattr(route, "path_format", None) or getattr(route, "path", None)
    if not isinstance(template, str) or not template:
        return UNMATCHED_PATH
    return _PATH_PARAM_RE.sub("{id}", template)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_transition(outcome: str) -> None:
    pipeline_transitions_total.labels(outcome=outcome).inc()


def observe_eligibility_failure() -> None:
    pipeline_eligibility_failures_total.inc()


def observe_generated_activities(stage_id: str, count: int) -> None:
    if count > 0:
        pipeline_generated_activities_total.labels(stage_id=stage_id).inc(count)


def observe_activity_insert_failure(stage_id: str) -> None:
    pipeline_activity_insert_failures_total.labels(stage_id=stage_id).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
