"""Telemetry helpers and metrics."""

from .metrics import (
    AI_ATTEMPTS,
    ERROR_COUNTER,
    LOGIN_COUNTER,
    REQUEST_COUNT,
    REQUEST_LATENCY,
    STAGE_DURATION,
    STAGE_INVOCATIONS,
    increment_login,
    observe_ai_attempt,
    observe_request,
    observe_stage,
)

__all__ = [
    "AI_ATTEMPTS",
    "ERROR_COUNTER",
    "LOGIN_COUNTER",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "STAGE_DURATION",
    "STAGE_INVOCATIONS",
    "increment_login",
    "observe_ai_attempt",
    "observe_request",
    "observe_stage",
]
