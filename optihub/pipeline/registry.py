"""Per-recording stage status registry and stage gating.

Each recording carries one status column per stage. A stage may only start
once its upstream stage is ``completed``; transitions outside
``ALLOWED_TRANSITIONS`` are rejected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from optihub.models.base import as_utc, utcnow
from optihub.models.recording import Recording, StageStatus

from .errors import (
    ErrorClass,
    InvalidTransition,
    RecordingNotFound,
    StageNotReady,
    StaleRunError,
)

logger = logging.getLogger("optihub.pipeline")


class Stage(str, Enum):
    """Pipeline stages in execution order."""

    TRANSCRIBE = "transcribe"
    PROCESS = "process"
    ANALYZE = "analyze"


@dataclass(frozen=True)
class StageColumns:
    status: str
    updated_at: str
    error: str
    run_id: str


STAGE_COLUMNS: Mapping[Stage, StageColumns] = {
    Stage.TRANSCRIBE: StageColumns(
        "transcription_status",
        "transcription_updated_at",
        "transcription_error",
        "transcription_run_id",
    ),
    Stage.PROCESS: StageColumns(
        "processing_status",
        "processing_updated_at",
        "processing_error",
        "processing_run_id",
    ),
    Stage.ANALYZE: StageColumns(
        "analysis_status",
        "analysis_updated_at",
        "analysis_error",
        "analysis_run_id",
    ),
}

UPSTREAM: Mapping[Stage, Stage | None] = {
    Stage.TRANSCRIBE: None,
    Stage.PROCESS: Stage.TRANSCRIBE,
    Stage.ANALYZE: Stage.PROCESS,
}

# processing -> pending and failed -> pending only happen through force retry.
# processing -> processing is a second invocation taking over the stage.
ALLOWED_TRANSITIONS: Mapping[StageStatus, frozenset[StageStatus]] = {
    StageStatus.PENDING: frozenset({StageStatus.PROCESSING}),
    StageStatus.PROCESSING: frozenset(
        {
            StageStatus.PROCESSING,
            StageStatus.COMPLETED,
            StageStatus.FAILED,
            StageStatus.PENDING,
        }
    ),
    StageStatus.FAILED: frozenset({StageStatus.PROCESSING, StageStatus.PENDING}),
    StageStatus.COMPLETED: frozenset({StageStatus.PROCESSING}),
}


def stage_status(recording: Recording, stage: Stage) -> StageStatus:
    raw = getattr(recording, STAGE_COLUMNS[stage].status)
    return StageStatus(raw) if raw is not None else StageStatus.PENDING


def ensure_upstream_completed(recording: Recording, stage: Stage) -> None:
    """Raise ``StageNotReady`` unless the upstream stage has completed."""

    upstream = UPSTREAM[stage]
    if upstream is None:
        if not recording.audio_path:
            raise StageNotReady(
                "Recording has no uploaded audio to transcribe.",
                stage=stage.value,
            )
        return

    upstream_status = stage_status(recording, upstream)
    if upstream_status is not StageStatus.COMPLETED:
        raise StageNotReady(
            f"Stage '{stage.value}' requires '{upstream.value}' to be completed "
            f"(currently {upstream_status.value}).",
            stage=stage.value,
            upstream=upstream.value,
            upstream_status=upstream_status.value,
        )


def transition(
    recording: Recording,
    stage: Stage,
    target: StageStatus,
    *,
    error_class: ErrorClass | None = None,
    message: str | None = None,
    now: datetime | None = None,
) -> None:
    """Move ``stage`` to ``target`` on the loaded row; the caller commits."""

    current = stage_status(recording, stage)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Stage '{stage.value}' cannot move from {current.value} to {target.value}.",
            stage=stage.value,
            current=current.value,
            target=target.value,
        )

    columns = STAGE_COLUMNS[stage]
    setattr(recording, columns.status, target)
    setattr(recording, columns.updated_at, now or utcnow())
    if target is StageStatus.FAILED:
        setattr(
            recording,
            columns.error,
            {
                "error_class": error_class.value if error_class else None,
                "message": message,
            },
        )
    else:
        setattr(recording, columns.error, None)

    logger.info(
        "Stage transition recording=%s stage=%s %s -> %s",
        recording.id,
        stage.value,
        current.value,
        target.value,
    )


def owns_stage(recording: Recording, stage: Stage, run_id: UUID) -> bool:
    """True while ``run_id`` is the invocation the stage is processing for."""

    return (
        stage_status(recording, stage) is StageStatus.PROCESSING
        and getattr(recording, STAGE_COLUMNS[stage].run_id) == run_id
    )


def ensure_run_owns_stage(recording: Recording, stage: Stage, run_id: UUID) -> None:
    if not owns_stage(recording, stage, run_id):
        raise StaleRunError(
            f"Run {run_id} no longer owns stage '{stage.value}' "
            f"(currently {stage_status(recording, stage).value}).",
            stage=stage.value,
            run_id=str(run_id),
        )


def complete_run(
    recording: Recording,
    stage: Stage,
    run_id: UUID,
    now: datetime | None = None,
) -> None:
    """Mark ``stage`` completed if ``run_id`` still owns it; the caller commits."""

    ensure_run_owns_stage(recording, stage, run_id)
    transition(recording, stage, StageStatus.COMPLETED, now=now)


def is_orphaned(
    recording: Recording,
    stage: Stage,
    threshold_seconds: int,
    now: datetime | None = None,
) -> bool:
    """Return True when the stage has sat in ``processing`` beyond the threshold."""

    if stage_status(recording, stage) is not StageStatus.PROCESSING:
        return False
    updated_at = as_utc(getattr(recording, STAGE_COLUMNS[stage].updated_at))
    if updated_at is None:
        return True
    return (now or utcnow()) - updated_at > timedelta(seconds=threshold_seconds)


@dataclass(frozen=True)
class StageSnapshot:
    stage: Stage
    status: StageStatus
    updated_at: datetime | None
    error: Mapping[str, Any] | None
    orphaned: bool
    run_id: UUID | None = None


@dataclass(frozen=True)
class RecordingStatus:
    """Point-in-time view of all three stage statuses."""

    recording_id: UUID
    stages: Mapping[Stage, StageSnapshot]

    def status_of(self, stage: Stage) -> StageStatus:
        return self.stages[stage].status

    def run_id_of(self, stage: Stage) -> UUID | None:
        return self.stages[stage].run_id

    @property
    def transcription_status(self) -> StageStatus:
        return self.status_of(Stage.TRANSCRIBE)

    @property
    def processing_status(self) -> StageStatus:
        return self.status_of(Stage.PROCESS)

    @property
    def analysis_status(self) -> StageStatus:
        return self.status_of(Stage.ANALYZE)


def snapshot(
    recording: Recording,
    threshold_seconds: int,
    now: datetime | None = None,
) -> RecordingStatus:
    moment = now or utcnow()
    stages = {}
    for stage, columns in STAGE_COLUMNS.items():
        stages[stage] = StageSnapshot(
            stage=stage,
            status=stage_status(recording, stage),
            updated_at=as_utc(getattr(recording, columns.updated_at)),
            error=getattr(recording, columns.error),
            orphaned=is_orphaned(recording, stage, threshold_seconds, moment),
            run_id=getattr(recording, columns.run_id),
        )
    return RecordingStatus(recording_id=recording.id, stages=stages)


async def load_recording(
    session: AsyncSession,
    recording_id: UUID,
    *,
    for_update: bool = False,
) -> Recording:
    query = select(Recording).where(Recording.id == recording_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    recording = result.scalar_one_or_none()
    if recording is None:
        raise RecordingNotFound(recording_id=str(recording_id))
    return recording


class StatusRegistry:
    """Session-owning facade over the status columns."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        orphan_threshold_seconds: int = 600,
    ) -> None:
        self._session_factory = session_factory
        self.orphan_threshold_seconds = orphan_threshold_seconds

    async def get_status(self, recording_id: UUID) -> RecordingStatus:
        async with self._session_factory() as session:
            recording = await load_recording(session, recording_id)
            return snapshot(recording, self.orphan_threshold_seconds)

    async def begin_stage(self, recording_id: UUID, stage: Stage) -> RecordingStatus:
        """Gate on the upstream stage and mark ``stage`` as processing.

        Every call issues a new run id, also when the stage is already
        processing. Only the holder of the latest run id may complete or
        fail the stage, so the last invocation wins.
        """

        async with self._session_factory() as session:
            recording = await load_recording(session, recording_id, for_update=True)
            ensure_upstream_completed(recording, stage)
            previous_run = getattr(recording, STAGE_COLUMNS[stage].run_id)
            takeover = stage_status(recording, stage) is StageStatus.PROCESSING
            transition(recording, stage, StageStatus.PROCESSING)
            run_id = uuid4()
            setattr(recording, STAGE_COLUMNS[stage].run_id, run_id)
            await session.commit()
            if takeover:
                logger.info(
                    "Run %s takes over recording=%s stage=%s from %s",
                    run_id,
                    recording_id,
                    stage.value,
                    previous_run,
                )
            return snapshot(recording, self.orphan_threshold_seconds)

    async def mark_failed(
        self,
        recording_id: UUID,
        stage: Stage,
        error_class: ErrorClass,
        message: str,
        *,
        run_id: UUID | None = None,
    ) -> None:
        """Fail the stage unless it moved on; ``run_id`` must still own it when given."""

        async with self._session_factory() as session:
            recording = await load_recording(session, recording_id, for_update=True)
            current = stage_status(recording, stage)
            if current is not StageStatus.PROCESSING or (
                run_id is not None and not owns_stage(recording, stage, run_id)
            ):
                logger.warning(
                    "Skipping failure mark recording=%s stage=%s status=%s run=%s",
                    recording_id,
                    stage.value,
                    current.value,
                    run_id,
                )
                return
            transition(
                recording,
                stage,
                StageStatus.FAILED,
                error_class=error_class,
                message=message,
            )
            await session.commit()

    async def force_reset(self, recording_id: UUID, stage: Stage) -> RecordingStatus:
        """Reset an orphaned or failed stage to ``pending``."""

        async with self._session_factory() as session:
            recording = await load_recording(session, recording_id, for_update=True)
            current = stage_status(recording, stage)
            orphaned = is_orphaned(recording, stage, self.orphan_threshold_seconds)
            if current is StageStatus.PROCESSING and not orphaned:
                raise InvalidTransition(
                    f"Stage '{stage.value}' is still within its processing window.",
                    stage=stage.value,
                    current=current.value,
                )
            if current not in (StageStatus.PROCESSING, StageStatus.FAILED):
                raise InvalidTransition(
                    f"Only failed or orphaned stages can be force-retried "
                    f"(stage '{stage.value}' is {current.value}).",
                    stage=stage.value,
                    current=current.value,
                )
            transition(recording, stage, StageStatus.PENDING)
            setattr(recording, STAGE_COLUMNS[stage].run_id, None)
            await session.commit()
            logger.warning(
                "Force reset recording=%s stage=%s from %s",
                recording_id,
                stage.value,
                current.value,
            )
            return snapshot(recording, self.orphan_threshold_seconds)


__all__ = [
    "Stage",
    "StageColumns",
    "STAGE_COLUMNS",
    "UPSTREAM",
    "ALLOWED_TRANSITIONS",
    "StageSnapshot",
    "RecordingStatus",
    "StatusRegistry",
    "complete_run",
    "ensure_run_owns_stage",
    "ensure_upstream_completed",
    "is_orphaned",
    "load_recording",
    "owns_stage",
    "snapshot",
    "stage_status",
    "transition",
]
