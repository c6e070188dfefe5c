"""Retry wrapper and transient/permanent classification for AI-service calls.

Only failures that look like upstream unavailability (HTML or non-JSON
bodies, 502/503/504, gateway wording, connection drops and timeouts) are
retried. Everything else is permanent and surfaces after the first attempt.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .errors import (
    ErrorClass,
    InferenceServiceError,
    PermanentInputError,
    PipelineError,
    TransientServiceError,
)

logger = logging.getLogger("optihub.pipeline")

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({502, 503, 504})
_TRANSIENT_MARKERS = (
    "temporarily unavailable",
    "service unavailable",
    "bad gateway",
    "gateway timeout",
    "cdn error",
    "upstream connect error",
)
_STATUS_IN_TEXT = re.compile(r"\b(502|503|504)\b")
_TRANSIENT_AWS_CODES = frozenset(
    {
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "InternalServerException",
        "ModelNotReadyException",
    }
)
_CONNECTION_ERRORS = (
    TimeoutError,
    asyncio.TimeoutError,
    ConnectionError,
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
    httpx.TransportError,
)


def looks_like_html(body: str | bytes | None) -> bool:
    """Return True when a response body is an HTML error page."""

    if not body:
        return False
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    head = body.lstrip()[:512].lower()
    return head.startswith("<!doctype") or head.startswith("<html") or "<html" in head


def _status_code_of(exc: BaseException) -> int | None:
    if isinstance(exc, InferenceServiceError):
        return exc.status_code
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    if isinstance(exc, ClientError):
        metadata = exc.response.get("ResponseMetadata", {})
        return metadata.get("HTTPStatusCode")
    return getattr(exc, "status_code", None)


def _body_of(exc: BaseException) -> str | None:
    if isinstance(exc, InferenceServiceError):
        return exc.body
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.text
    if isinstance(exc, json.JSONDecodeError):
        return exc.doc
    return None


def classify_error(exc: BaseException) -> ErrorClass:
    """Label a failure TRANSIENT (retry later) or PERMANENT (needs new input)."""

    if isinstance(exc, TransientServiceError):
        return ErrorClass.TRANSIENT
    if isinstance(exc, PipelineError):
        return ErrorClass.PERMANENT
    if isinstance(exc, _CONNECTION_ERRORS):
        return ErrorClass.TRANSIENT
    if isinstance(exc, json.JSONDecodeError):
        # A body that was supposed to be JSON but was not: gateway/CDN page.
        return ErrorClass.TRANSIENT

    status_code = _status_code_of(exc)
    if status_code in TRANSIENT_STATUS_CODES:
        return ErrorClass.TRANSIENT
    if looks_like_html(_body_of(exc)):
        return ErrorClass.TRANSIENT
    if isinstance(exc, ClientError):
        if exc.response.get("Error", {}).get("Code") in _TRANSIENT_AWS_CODES:
            return ErrorClass.TRANSIENT

    text = str(exc).lower()
    if any(marker in text for marker in _TRANSIENT_MARKERS):
        return ErrorClass.TRANSIENT
    if looks_like_html(text):
        return ErrorClass.TRANSIENT
    if status_code is None and _STATUS_IN_TEXT.search(text):
        return ErrorClass.TRANSIENT
    return ErrorClass.PERMANENT


def is_transient(exc: BaseException) -> bool:
    return classify_error(exc) is ErrorClass.TRANSIENT


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 2.0
    attempt_timeout: float = 20.0
    max_delay: float = 30.0


@dataclass(frozen=True)
class AttemptOutcome:
    """What happened during one attempt; handed to the audit callback."""

    step: str
    attempt: int
    success: bool
    latency_ms: int
    result: Any = None
    error: Optional[BaseException] = None


AttemptCallback = Callable[[AttemptOutcome], Awaitable[None]]


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    step: str,
    policy: RetryPolicy,
    on_attempt: AttemptCallback | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``operation`` with exponential backoff on transient failures.

    Raises ``TransientServiceError`` once the backoff loop is exhausted and
    ``PermanentInputError`` for anything classified permanent.
    """

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.attempts),
        wait=wait_exponential(multiplier=policy.base_delay, max=policy.max_delay),
        retry=retry_if_exception(is_transient),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
        reraise=True,
    )

    attempts_made = 0
    try:
        async for attempt in retrying:
            with attempt:
                attempts_made = attempt.retry_state.attempt_number
                started = time.perf_counter()
                try:
                    result = await asyncio.wait_for(
                        operation(), timeout=policy.attempt_timeout
                    )
                except Exception as exc:
                    if on_attempt is not None:
                        await on_attempt(
                            AttemptOutcome(
                                step=step,
                                attempt=attempts_made,
                                success=False,
                                latency_ms=_elapsed_ms(started),
                                error=exc,
                            )
                        )
                    raise
                if on_attempt is not None:
                    await on_attempt(
                        AttemptOutcome(
                            step=step,
                            attempt=attempts_made,
                            success=True,
                            latency_ms=_elapsed_ms(started),
                            result=result,
                        )
                    )
                return result
    except PermanentInputError:
        raise
    except Exception as exc:
        error_class = classify_error(exc)
        if error_class is ErrorClass.TRANSIENT:
            logger.error(
                "Step %s failed after %s attempts: %s", step, attempts_made, exc
            )
            raise TransientServiceError(
                f"{step} failed after {attempts_made} attempts: {exc}",
                step=step,
                attempts=attempts_made,
            ) from exc
        logger.error("Step %s failed permanently: %s", step, exc)
        raise PermanentInputError(
            f"{step} failed: {exc}",
            step=step,
            attempts=attempts_made,
        ) from exc

    raise TransientServiceError(f"{step} produced no attempts", step=step)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


__all__ = [
    "AttemptCallback",
    "AttemptOutcome",
    "RetryPolicy",
    "TRANSIENT_STATUS_CODES",
    "call_with_retry",
    "classify_error",
    "is_transient",
    "looks_like_html",
]
