"""AI inference clients: Bedrock for text steps, Amazon Transcribe for audio."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol
from uuid import UUID, uuid4

from botocore.exceptions import ClientError
from fastapi.concurrency import run_in_threadpool

from optihub.config.settings import settings
from optihub.pipeline.errors import InferenceServiceError
from optihub.services.aws import create_boto3_client
from optihub.services.prompts import build_prompt
from optihub.services.storage import ObjectStorage

logger = logging.getLogger(__name__)

TRANSCRIBE_STEP = "transcribe"


@dataclass(frozen=True)
class InferenceRequest:
    recording_id: UUID
    step: str
    input_text: Optional[str] = None
    audio_ref: Optional[str] = None
    instruction: Optional[str] = None
    model_id: Optional[str] = None
    system_prompt: Optional[str] = None
    variables: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class InferenceResult:
    artifact: str
    model_used: str
    tokens_used: Optional[int] = None
    prompt_sent: Optional[str] = None
    language: Optional[str] = None


class InferenceClient(Protocol):
    async def invoke(self, request: InferenceRequest) -> InferenceResult:
        ...


def _client_error(exc: ClientError) -> InferenceServiceError:
    error = exc.response.get("Error", {})
    status_code = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return InferenceServiceError(
        f"{error.get('Code', 'ClientError')}: {error.get('Message', exc)}",
        status_code=status_code,
        body=error.get("Message"),
    )


class BedrockInferenceClient:
    """Invoke Amazon Bedrock models through the ``converse`` API."""

    def __init__(self, client: Any | None = None, *, model_id: str | None = None) -> None:
        self._model_id = model_id or settings.bedrock.model_id
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = create_boto3_client(
                "bedrock-runtime",
                region_name=settings.bedrock.region,
                read_timeout=settings.pipeline.attempt_timeout_seconds,
            )
        return self._client

    async def invoke(self, request: InferenceRequest) -> InferenceResult:
        if request.input_text is None or not request.input_text.strip():
            raise InferenceServiceError(
                f"Step '{request.step}' received empty input text.", status_code=400
            )

        target_model_id = request.model_id or self._model_id
        prompt = build_prompt(request)
        inference_cfg = {
            "maxTokens": settings.bedrock.max_tokens,
            "temperature": settings.bedrock.temperature,
            "topP": settings.bedrock.top_p,
        }

        def _call() -> dict[str, Any]:
            return self.client.converse(
                modelId=target_model_id,
                system=[{"text": prompt.system_prompt}],
                messages=[{"role": "user", "content": [{"text": prompt.user_prompt}]}],
                inferenceConfig=inference_cfg,
            )

        try:
            response = await run_in_threadpool(_call)
        except ClientError as exc:
            raise _client_error(exc) from exc

        content_blocks = response.get("output", {}).get("message", {}).get("content", [])
        texts = [block.get("text", "") for block in content_blocks if block.get("text")]
        text = "\n".join(texts).strip()
        if not text:
            raise InferenceServiceError(
                f"Model {target_model_id} returned an empty response for '{request.step}'."
            )

        usage = response.get("usage") or {}
        return InferenceResult(
            artifact=text,
            model_used=target_model_id,
            tokens_used=usage.get("totalTokens"),
            prompt_sent=prompt.describe(),
        )


class TranscribeJobClient:
    """Run an Amazon Transcribe batch job against audio already in S3."""

    def __init__(
        self,
        storage: ObjectStorage,
        client: Any | None = None,
        *,
        language_code: str | None = None,
        poll_interval: float | None = None,
        max_wait: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._storage = storage
        self._client = client
        self._language_code = language_code or settings.transcribe.language_code
        self._poll_interval = poll_interval or settings.transcribe.poll_interval_seconds
        self._max_wait = max_wait or settings.transcribe.max_wait_seconds
        self._sleep = sleep

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = create_boto3_client(
                "transcribe", region_name=settings.transcribe.region
            )
        return self._client

    async def invoke(self, request: InferenceRequest) -> InferenceResult:
        if not request.audio_ref:
            raise InferenceServiceError("Transcription needs an audio object key.", status_code=400)

        job_name = f"optihub-{request.recording_id}-{uuid4().hex[:8]}"
        output_key = f"{settings.transcribe.output_prefix.strip('/')}/{job_name}.json"
        media_uri = self._storage.media_uri(request.audio_ref)

        try:
            await run_in_threadpool(
                self.client.start_transcription_job,
                TranscriptionJobName=job_name,
                LanguageCode=self._language_code,
                Media={"MediaFileUri": media_uri},
                OutputBucketName=self._storage.bucket,
                OutputKey=output_key,
            )
        except ClientError as exc:
            raise _client_error(exc) from exc

        logger.info("Started transcription job %s for %s", job_name, media_uri)
        job = await self._wait_for_job(job_name)
        status = job.get("TranscriptionJobStatus")
        if status == "FAILED":
            raise InferenceServiceError(
                f"Transcription job {job_name} failed: {job.get('FailureReason', 'unknown reason')}"
            )

        payload = await self._storage.read_json(output_key)
        transcripts = payload.get("results", {}).get("transcripts", [])
        text = " ".join(item.get("transcript", "") for item in transcripts).strip()
        if not text:
            raise InferenceServiceError(
                f"Transcription job {job_name} produced no speech.", status_code=422
            )

        return InferenceResult(
            artifact=text,
            model_used="amazon-transcribe",
            prompt_sent=f"[transcribe] {media_uri}",
            language=job.get("LanguageCode") or self._language_code,
        )

    async def _wait_for_job(self, job_name: str) -> dict[str, Any]:
        deadline = time.monotonic() + self._max_wait
        while True:
            try:
                response = await run_in_threadpool(
                    self.client.get_transcription_job, TranscriptionJobName=job_name
                )
            except ClientError as exc:
                raise _client_error(exc) from exc
            job = response.get("TranscriptionJob", {})
            if job.get("TranscriptionJobStatus") in ("COMPLETED", "FAILED"):
                return job
            if time.monotonic() >= deadline:
                raise TimeoutError(
                    f"Transcription job {job_name} did not finish within {self._max_wait:.0f}s"
                )
            await self._sleep(self._poll_interval)


class StepRouter:
    """Dispatch requests to the transcriber or the text model by step."""

    def __init__(self, transcriber: InferenceClient, text_model: InferenceClient) -> None:
        self._transcriber = transcriber
        self._text_model = text_model

    async def invoke(self, request: InferenceRequest) -> InferenceResult:
        if request.step == TRANSCRIBE_STEP:
            return await self._transcriber.invoke(request)
        return await self._text_model.invoke(request)


__all__ = [
    "BedrockInferenceClient",
    "InferenceClient",
    "InferenceRequest",
    "InferenceResult",
    "StepRouter",
    "TRANSCRIBE_STEP",
    "TranscribeJobClient",
]
