"""Single entry point for AI calls: retry, classification, audit, metrics."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from optihub.services.api_log import ApiLogService
from optihub.services.inference import InferenceClient, InferenceRequest, InferenceResult
from optihub.services.prompts import describe_request
from optihub.telemetry import observe_ai_attempt

from .retry import AttemptOutcome, RetryPolicy, call_with_retry


async def invoke_with_retry(
    inference: InferenceClient,
    api_log: ApiLogService,
    request: InferenceRequest,
    *,
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> InferenceResult:
    recorder = api_log.recorder(
        request.recording_id,
        prompt_sent=describe_request(request),
        model_used=request.model_id,
    )

    async def _on_attempt(outcome: AttemptOutcome) -> None:
        observe_ai_attempt(outcome.step, outcome.success)
        await recorder(outcome)

    return await call_with_retry(
        lambda: inference.invoke(request),
        step=request.step,
        policy=policy,
        on_attempt=_on_attempt,
        sleep=sleep,
    )


__all__ = ["invoke_with_retry"]
