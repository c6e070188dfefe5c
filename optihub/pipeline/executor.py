"""Runs pipeline stages: gate, call the AI service, persist, update status.

``begin`` performs gating and the ``processing`` mark and is cheap enough
to run inside the request. ``run`` does the AI work and always leaves the
stage ``completed`` or ``failed``; it is normally scheduled as a background
task. A successful artifact write and the ``completed`` transition share
one transaction, and both are skipped when a later ``begin`` has taken the
stage over.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from optihub.models.artifacts import Extract, OptimizationContext, Transcript
from optihub.models.prompt import PromptType
from optihub.models.recording import DiscardedRecording, StageStatus
from optihub.services.analysis_contract import AnalysisResponse, ResponseContractError
from optihub.services.api_log import ApiLogService
from optihub.services.inference import (
    TRANSCRIBE_STEP,
    InferenceClient,
    InferenceRequest,
    InferenceResult,
)
from optihub.services.prompt_library import prompt_variables, resolve_system_prompt
from optihub.services.recordings import purge_recording_rows
from optihub.services.storage import ObjectStorage, StorageError
from optihub.telemetry import observe_stage

from .calls import invoke_with_retry
from .errors import (
    ConsistencyError,
    ErrorClass,
    InvalidTransition,
    PermanentInputError,
    PipelineError,
    RecordingNotFound,
    TransientServiceError,
)
from .registry import (
    RecordingStatus,
    Stage,
    StatusRegistry,
    complete_run,
    ensure_upstream_completed,
    load_recording,
    owns_stage,
)
from .retry import RetryPolicy
from .versions import FIELD_SPECS, EditableField, push_version

logger = logging.getLogger("optihub.pipeline")

ANALYZE_STEP = "analyze"
EXTRACT_STEP = "extract"
PROCESS_STEP = "process"


@dataclass(frozen=True)
class StageOutcome:
    recording_id: UUID
    stage: Stage
    status: StageStatus
    model_used: str | None = None


def error_class_for(exc: BaseException) -> ErrorClass:
    if isinstance(exc, TransientServiceError):
        return ErrorClass.TRANSIENT
    if isinstance(exc, ConsistencyError):
        return ErrorClass.CONSISTENCY
    return ErrorClass.PERMANENT


class StageExecutor:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: StatusRegistry,
        inference: InferenceClient,
        api_log: ApiLogService,
        storage: ObjectStorage,
        *,
        policy: RetryPolicy,
        transcribe_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self.registry = registry
        self._inference = inference
        self._api_log = api_log
        self._storage = storage
        self._policy = policy
        self._transcribe_policy = transcribe_policy or policy
        self._sleep = sleep

    async def begin(self, recording_id: UUID, stage: Stage) -> RecordingStatus:
        """Mark ``stage`` processing; the returned status carries the new run id."""

        return await self.registry.begin_stage(recording_id, stage)

    async def invoke_stage(
        self,
        recording_id: UUID,
        stage: Stage,
        *,
        model_id: str | None = None,
        instruction: str | None = None,
    ) -> StageOutcome:
        """Gate, mark ``processing`` and run to completion in one await."""

        status = await self.begin(recording_id, stage)
        return await self.run(
            recording_id,
            stage,
            status.run_id_of(stage),
            model_id=model_id,
            instruction=instruction,
        )

    async def prepare_force_retry(self, recording_id: UUID, stage: Stage) -> RecordingStatus:
        await self.registry.force_reset(recording_id, stage)
        return await self.begin(recording_id, stage)

    async def force_retry(
        self,
        recording_id: UUID,
        stage: Stage,
        *,
        model_id: str | None = None,
    ) -> StageOutcome:
        status = await self.prepare_force_retry(recording_id, stage)
        return await self.run(recording_id, stage, status.run_id_of(stage), model_id=model_id)

    async def run(
        self,
        recording_id: UUID,
        stage: Stage,
        run_id: UUID,
        *,
        model_id: str | None = None,
        instruction: str | None = None,
    ) -> StageOutcome:
        """Execute a stage already marked ``processing`` under ``run_id``.

        Results and failures of a run that no longer owns the stage are
        dropped.
        """

        started = time.perf_counter()
        handlers = {
            Stage.TRANSCRIBE: self._transcribe,
            Stage.PROCESS: self._process,
            Stage.ANALYZE: self._analyze,
        }
        try:
            model_used = await handlers[stage](recording_id, run_id, model_id, instruction)
        except RecordingNotFound:
            logger.warning(
                "Recording %s disappeared while running %s; result dropped",
                recording_id,
                stage.value,
            )
            observe_stage(stage.value, "dropped", time.perf_counter() - started)
            raise
        except InvalidTransition:
            logger.warning(
                "Run %s of stage %s for recording %s was superseded or reset; result dropped",
                run_id,
                stage.value,
                recording_id,
            )
            observe_stage(stage.value, "dropped", time.perf_counter() - started)
            raise
        except PermanentInputError as exc:
            await self._handle_permanent(recording_id, stage, run_id, exc)
            observe_stage(stage.value, "permanent", time.perf_counter() - started)
            raise
        except PipelineError as exc:
            error_class = error_class_for(exc)
            await self.registry.mark_failed(
                recording_id, stage, error_class, exc.message, run_id=run_id
            )
            observe_stage(stage.value, error_class.value, time.perf_counter() - started)
            raise
        except Exception as exc:
            logger.exception(
                "Unexpected failure in stage %s for recording %s", stage.value, recording_id
            )
            await self.registry.mark_failed(
                recording_id, stage, ErrorClass.PERMANENT, str(exc), run_id=run_id
            )
            observe_stage(stage.value, "error", time.perf_counter() - started)
            raise

        observe_stage(stage.value, "completed", time.perf_counter() - started)
        return StageOutcome(
            recording_id=recording_id,
            stage=stage,
            status=StageStatus.COMPLETED,
            model_used=model_used,
        )

    async def run_detached(
        self, recording_id: UUID, stage: Stage, run_id: UUID, **kwargs: Any
    ) -> None:
        """Background-task wrapper; failures are already recorded on the stage."""

        try:
            await self.run(recording_id, stage, run_id, **kwargs)
        except PipelineError as exc:
            logger.warning(
                "Background %s for recording %s ended with %s: %s",
                stage.value,
                recording_id,
                exc.code,
                exc.message,
            )

    async def _call(self, request: InferenceRequest, policy: RetryPolicy) -> InferenceResult:
        return await invoke_with_retry(
            self._inference,
            self._api_log,
            request,
            policy=policy,
            sleep=self._sleep,
        )

    async def _transcribe(
        self,
        recording_id: UUID,
        run_id: UUID,
        model_id: str | None,
        instruction: str | None,
    ) -> str:
        async with self._session_factory() as session:
            recording = await load_recording(session, recording_id)
            ensure_upstream_completed(recording, Stage.TRANSCRIBE)
            audio_path = recording.audio_path
            system_prompt = await resolve_system_prompt(
                session, recording, PromptType.TRANSCRIBE
            )

        result = await self._call(
            InferenceRequest(
                recording_id=recording_id,
                step=TRANSCRIBE_STEP,
                audio_ref=audio_path,
                model_id=model_id,
                system_prompt=system_prompt,
            ),
            self._transcribe_policy,
        )

        async with self._session_factory() as session:
            recording = await load_recording(session, recording_id, for_update=True)
            transcript = await session.scalar(
                select(Transcript).where(Transcript.recording_id == recording_id)
            )
            if transcript is None:
                session.add(
                    Transcript(
                        recording_id=recording_id,
                        language=result.language,
                        original_text=result.artifact,
                        full_text=result.artifact,
                        edit_count=0,
                    )
                )
            else:
                push_version(
                    transcript, FIELD_SPECS[EditableField.FULL_TEXT], result.artifact
                )
                if result.language:
                    transcript.language = result.language
            complete_run(recording, Stage.TRANSCRIBE, run_id)
            await session.commit()
        return result.model_used

    async def _process(
        self,
        recording_id: UUID,
        run_id: UUID,
        model_id: str | None,
        instruction: str | None,
    ) -> str:
        async with self._session_factory() as session:
            recording = await load_recording(session, recording_id)
            ensure_upstream_completed(recording, Stage.PROCESS)
            transcript = await self._require_transcript(session, recording_id)
            if not transcript.full_text:
                raise ConsistencyError(
                    "Transcription is completed but the transcript is empty.",
                    recording_id=str(recording_id),
                )
            request = InferenceRequest(
                recording_id=recording_id,
                step=PROCESS_STEP,
                input_text=transcript.full_text,
                instruction=instruction,
                model_id=model_id,
                system_prompt=await resolve_system_prompt(
                    session, recording, PromptType.PROCESS
                ),
                variables=prompt_variables(recording),
            )

        result = await self._call(request, self._policy)

        async with self._session_factory() as session:
            recording = await load_recording(session, recording_id, for_update=True)
            transcript = await self._require_transcript(session, recording_id)
            push_version(
                transcript, FIELD_SPECS[EditableField.PROCESSED_TEXT], result.artifact
            )
            complete_run(recording, Stage.PROCESS, run_id)
            await session.commit()
        return result.model_used

    async def _analyze(
        self,
        recording_id: UUID,
        run_id: UUID,
        model_id: str | None,
        instruction: str | None,
    ) -> str:
        async with self._session_factory() as session:
            recording = await load_recording(session, recording_id)
            ensure_upstream_completed(recording, Stage.ANALYZE)
            transcript = await self._require_transcript(session, recording_id)
            if not transcript.processed_text:
                raise ConsistencyError(
                    "Processing is completed but the processed transcript is missing.",
                    recording_id=str(recording_id),
                )
            processed_text = transcript.processed_text
            account_id = recording.account_id
            variables = {
                **prompt_variables(recording),
                "recorded_by": recording.recorded_by,
                "recorded_at": recording.recorded_at.isoformat()
                if recording.recorded_at
                else None,
            }
            system_prompt = await resolve_system_prompt(
                session, recording, PromptType.ANALYZE
            )

        analysis_result = await self._call(
            InferenceRequest(
                recording_id=recording_id,
                step=ANALYZE_STEP,
                input_text=processed_text,
                instruction=instruction,
                model_id=model_id,
                system_prompt=system_prompt,
                variables=variables,
            ),
            self._policy,
        )
        try:
            analysis = AnalysisResponse.from_json(analysis_result.artifact)
        except ResponseContractError as exc:
            raise PermanentInputError(str(exc), step=ANALYZE_STEP) from exc

        extract_result = await self._call(
            InferenceRequest(
                recording_id=recording_id,
                step=EXTRACT_STEP,
                input_text=processed_text,
                model_id=model_id,
                variables={**variables, "summary": analysis.summary},
            ),
            self._policy,
        )

        async with self._session_factory() as session:
            recording = await load_recording(session, recording_id, for_update=True)

            context = await session.scalar(
                select(OptimizationContext).where(
                    OptimizationContext.recording_id == recording_id
                )
            )
            if context is None:
                context = OptimizationContext(recording_id=recording_id, account_id=account_id)
                session.add(context)
            context.summary = analysis.summary
            context.actions_taken = analysis.actions_taken
            context.metrics_mentioned = analysis.metrics_mentioned
            context.strategy = analysis.strategy
            context.timeline = analysis.timeline
            context.confidence_level = analysis.confidence_level
            context.revised_at = None
            context.revised_by = None

            extract = await session.scalar(
                select(Extract).where(Extract.recording_id == recording_id)
            )
            if extract is None:
                session.add(
                    Extract(
                        recording_id=recording_id,
                        extract_text=extract_result.artifact,
                        edit_count=0,
                    )
                )
            else:
                push_version(
                    extract, FIELD_SPECS[EditableField.EXTRACT_TEXT], extract_result.artifact
                )

            complete_run(recording, Stage.ANALYZE, run_id)
            await session.commit()
        return extract_result.model_used

    async def _require_transcript(
        self, session: AsyncSession, recording_id: UUID
    ) -> Transcript:
        transcript = await session.scalar(
            select(Transcript).where(Transcript.recording_id == recording_id)
        )
        if transcript is None:
            raise ConsistencyError(
                "Transcription is completed but no transcript exists.",
                recording_id=str(recording_id),
            )
        return transcript

    async def _handle_permanent(
        self,
        recording_id: UUID,
        stage: Stage,
        run_id: UUID,
        exc: PermanentInputError,
    ) -> None:
        """Fail the stage, or discard a recording that never produced output.

        A discarded recording leaves a ``DiscardedRecording`` row behind so
        the status and audio-download endpoints can still hand the raw audio
        back to the uploader.
        """

        if stage is Stage.TRANSCRIBE:
            async with self._session_factory() as session:
                recording = await load_recording(session, recording_id, for_update=True)
                if not owns_stage(recording, stage, run_id):
                    logger.warning(
                        "Run %s no longer owns transcription of %s; permanent failure dropped",
                        run_id,
                        recording_id,
                    )
                    return
                has_transcript = await session.scalar(
                    select(Transcript.id).where(Transcript.recording_id == recording_id)
                )
                if has_transcript is None:
                    audio_path = recording.audio_path
                    session.add(
                        DiscardedRecording(
                            id=recording.id,
                            account_id=recording.account_id,
                            recorded_by=recording.recorded_by,
                            audio_path=audio_path,
                            content_type=recording.content_type,
                            reason=exc.message,
                        )
                    )
                    await purge_recording_rows(session, recording_id)
                    await session.commit()
                    exc.details["recording_deleted"] = True
                    if audio_path:
                        try:
                            exc.details["recovery_url"] = await self._storage.presigned_url(
                                audio_path
                            )
                        except StorageError:
                            logger.exception(
                                "Could not sign recovery URL for %s", audio_path
                            )
                    logger.warning(
                        "Discarded recording %s after permanent transcription failure; audio kept at %s",
                        recording_id,
                        audio_path,
                    )
                    return

        await self.registry.mark_failed(
            recording_id, stage, ErrorClass.PERMANENT, exc.message, run_id=run_id
        )


__all__ = ["StageExecutor", "StageOutcome", "error_class_for"]
