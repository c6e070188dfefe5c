"""Wiring of pipeline services for the API process."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from optihub.config.settings import settings
from optihub.pipeline.executor import StageExecutor
from optihub.pipeline.registry import StatusRegistry
from optihub.pipeline.retry import RetryPolicy
from optihub.pipeline.versions import VersionManager
from optihub.services.api_log import ApiLogService
from optihub.services.inference import (
    BedrockInferenceClient,
    InferenceClient,
    StepRouter,
    TranscribeJobClient,
)
from optihub.services.prompt_library import PromptService
from optihub.services.recordings import RecordingService
from optihub.services.shares import ShareService
from optihub.services.storage import ObjectStorage, UploadCache


@dataclass
class Services:
    session_factory: async_sessionmaker[AsyncSession]
    storage: ObjectStorage
    upload_cache: UploadCache
    registry: StatusRegistry
    api_log: ApiLogService
    inference: InferenceClient
    executor: StageExecutor
    versions: VersionManager
    shares: ShareService
    recordings: RecordingService
    prompts: PromptService


def text_policy() -> RetryPolicy:
    return RetryPolicy(
        attempts=settings.pipeline.retry_attempts,
        base_delay=settings.pipeline.retry_base_delay_seconds,
        attempt_timeout=settings.pipeline.attempt_timeout_seconds,
    )


def transcribe_policy() -> RetryPolicy:
    return RetryPolicy(
        attempts=settings.pipeline.retry_attempts,
        base_delay=settings.pipeline.retry_base_delay_seconds,
        attempt_timeout=settings.pipeline.transcribe_attempt_timeout_seconds,
    )


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    storage: ObjectStorage | None = None,
    inference: InferenceClient | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Services:
    storage = storage or ObjectStorage()
    inference = inference or StepRouter(
        transcriber=TranscribeJobClient(storage),
        text_model=BedrockInferenceClient(),
    )
    registry = StatusRegistry(
        session_factory,
        orphan_threshold_seconds=settings.pipeline.orphan_threshold_seconds,
    )
    api_log = ApiLogService(session_factory)
    policy = text_policy()

    return Services(
        session_factory=session_factory,
        storage=storage,
        upload_cache=UploadCache(),
        registry=registry,
        api_log=api_log,
        inference=inference,
        executor=StageExecutor(
            session_factory,
            registry,
            inference,
            api_log,
            storage,
            policy=policy,
            transcribe_policy=transcribe_policy(),
            sleep=sleep,
        ),
        versions=VersionManager(
            session_factory, inference, api_log, policy=policy, sleep=sleep
        ),
        shares=ShareService(session_factory),
        recordings=RecordingService(session_factory, storage),
        prompts=PromptService(session_factory),
    )


__all__ = ["Services", "build_services", "text_policy", "transcribe_policy"]
