"""Prometheus metrics definitions and helpers."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests processed",
    ("method", "route", "status"),
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ("method", "route"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

ERROR_COUNTER = Counter(
    "app_internal_errors_total",
    "Number of requests ending in internal server error responses",
    ("method", "route"),
)

LOGIN_COUNTER = Counter(
    "app_logins_total",
    "Number of successful user login events",
)

STAGE_INVOCATIONS = Counter(
    "pipeline_stage_invocations_total",
    "Pipeline stage runs by final outcome",
    ("stage", "outcome"),
)

STAGE_DURATION = Histogram(
    "pipeline_stage_duration_seconds",
    "Wall time of a pipeline stage run, AI calls and retries included",
    ("stage",),
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0, 120.0, 300.0, 900.0),
)

AI_ATTEMPTS = Counter(
    "pipeline_ai_attempts_total",
    "Individual AI-service attempts by step and result",
    ("step", "result"),
)


def observe_request(
    method: str,
    route: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record metrics for a completed HTTP request."""

    safe_route = route or "unknown"
    safe_method = method or "UNKNOWN"
    observed_duration = duration_seconds if duration_seconds >= 0 else 0

    REQUEST_COUNT.labels(
        method=safe_method,
        route=safe_route,
        status=str(status_code),
    ).inc()
    REQUEST_LATENCY.labels(method=safe_method, route=safe_route).observe(
        observed_duration
    )

    if status_code >= 500:
        ERROR_COUNTER.labels(method=safe_method, route=safe_route).inc()


def increment_login() -> None:
    """Increment the successful login counter."""

    LOGIN_COUNTER.inc()


def observe_stage(stage: str, outcome: str, duration_seconds: float) -> None:
    """Record one finished stage run (``completed``, ``transient``, ...)."""

    STAGE_INVOCATIONS.labels(stage=stage, outcome=outcome).inc()
    STAGE_DURATION.labels(stage=stage).observe(max(duration_seconds, 0))


def observe_ai_attempt(step: str, success: bool) -> None:
    AI_ATTEMPTS.labels(step=step, result="success" if success else "error").inc()
