"""Error classification and the retry wrapper."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from optihub.pipeline import (
    ErrorClass,
    PermanentInputError,
    RetryPolicy,
    TransientServiceError,
    call_with_retry,
    classify_error,
)
from optihub.pipeline.errors import InferenceServiceError
from optihub.pipeline.retry import looks_like_html


def _client_error(code: str, status: int) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} raised"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        "Converse",
    )


@pytest.mark.parametrize(
    "exc",
    [
        InferenceServiceError("gateway", status_code=502),
        InferenceServiceError("odd", status_code=200, body="<!DOCTYPE html><html>CDN</html>"),
        _client_error("ServiceUnavailableException", 503),
        _client_error("ModelNotReadyException", 429),
        EndpointConnectionError(endpoint_url="https://bedrock.example"),
        asyncio.TimeoutError(),
        ConnectionResetError("peer reset"),
        httpx.ConnectError("refused"),
        json.JSONDecodeError("Expecting value", "<html>", 0),
        RuntimeError("Service temporarily unavailable, retry later"),
        RuntimeError("upstream returned 504"),
    ],
)
def test_transient_failures(exc):
    assert classify_error(exc) is ErrorClass.TRANSIENT


@pytest.mark.parametrize(
    "exc",
    [
        InferenceServiceError("ValidationException: unsupported media", status_code=400),
        _client_error("AccessDeniedException", 403),
        ValueError("audio file is corrupt"),
        PermanentInputError("bad input"),
    ],
)
def test_permanent_failures(exc):
    assert classify_error(exc) is ErrorClass.PERMANENT


def test_looks_like_html():
    assert looks_like_html("  <html><body>502</body></html>")
    assert looks_like_html(b"<!doctype html>")
    assert not looks_like_html('{"output": "ok"}')
    assert not looks_like_html(None)


class Recorder:
    def __init__(self):
        self.sleeps = []
        self.outcomes = []

    async def sleep(self, delay):
        self.sleeps.append(delay)

    async def on_attempt(self, outcome):
        self.outcomes.append(outcome)


def _scripted(*items):
    queue = list(items)

    async def operation():
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    return operation


def test_transient_errors_retry_with_exponential_backoff():
    recorder = Recorder()
    operation = _scripted(
        InferenceServiceError("bad gateway", status_code=502),
        InferenceServiceError("bad gateway", status_code=502),
        "done",
    )

    result = asyncio.run(
        call_with_retry(
            operation,
            step="process",
            policy=RetryPolicy(),
            on_attempt=recorder.on_attempt,
            sleep=recorder.sleep,
        )
    )

    assert result == "done"
    assert recorder.sleeps == [2, 4]
    assert [o.success for o in recorder.outcomes] == [False, False, True]
    assert [o.attempt for o in recorder.outcomes] == [1, 2, 3]


def test_exhausted_retries_raise_transient_error():
    recorder = Recorder()
    operation = _scripted(*[InferenceServiceError("down", status_code=503)] * 3)

    with pytest.raises(TransientServiceError) as excinfo:
        asyncio.run(
            call_with_retry(
                operation,
                step="analyze",
                policy=RetryPolicy(),
                on_attempt=recorder.on_attempt,
                sleep=recorder.sleep,
            )
        )

    assert "after 3 attempts" in excinfo.value.message
    assert excinfo.value.details["attempts"] == 3
    assert len(recorder.outcomes) == 3


def test_permanent_error_is_not_retried():
    recorder = Recorder()
    operation = _scripted(
        InferenceServiceError("ValidationException: bad audio", status_code=400), "unused"
    )

    with pytest.raises(PermanentInputError):
        asyncio.run(
            call_with_retry(
                operation,
                step="transcribe",
                policy=RetryPolicy(),
                on_attempt=recorder.on_attempt,
                sleep=recorder.sleep,
            )
        )

    assert recorder.sleeps == []
    assert len(recorder.outcomes) == 1


def test_slow_attempt_times_out_and_retries():
    recorder = Recorder()
    calls = []

    async def operation():
        calls.append(1)
        if len(calls) == 1:
            await asyncio.sleep(1)
        return "recovered"

    result = asyncio.run(
        call_with_retry(
            operation,
            step="process",
            policy=RetryPolicy(attempts=2, attempt_timeout=0.01),
            on_attempt=recorder.on_attempt,
            sleep=recorder.sleep,
        )
    )

    assert result == "recovered"
    assert len(calls) == 2
    assert recorder.outcomes[0].success is False
