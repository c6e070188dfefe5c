"""Edit, undo and AI-assisted improvement of stage artifacts.

History is single-slot: each editable field keeps its current value plus at
most one previous value. ``save`` pushes, ``undo`` pops and clears the slot.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from optihub.models.artifacts import ConfidenceLevel, Extract, OptimizationContext, Transcript
from optihub.models.base import utcnow
from optihub.models.recording import StageStatus
from optihub.services.api_log import ApiLogService
from optihub.services.inference import InferenceClient, InferenceRequest

from .calls import invoke_with_retry
from .errors import ConsistencyError, StageNotReady
from .registry import Stage, load_recording, stage_status
from .retry import RetryPolicy

logger = logging.getLogger("optihub.pipeline")


class EditableField(str, Enum):
    FULL_TEXT = "full_text"
    PROCESSED_TEXT = "processed_text"
    EXTRACT_TEXT = "extract_text"


@dataclass(frozen=True)
class FieldSpec:
    """Where a field and its history slot live."""

    model: Any
    value: str
    previous: str
    count: str
    stage: Stage | None = None
    improve_step: str | None = None
    edited_at: str | None = None
    edited_by: str | None = None


FIELD_SPECS: Mapping[EditableField, FieldSpec] = {
    EditableField.FULL_TEXT: FieldSpec(
        model=Transcript,
        value="full_text",
        previous="previous_version",
        count="edit_count",
        stage=Stage.TRANSCRIBE,
        improve_step="improve_transcript",
        edited_at="last_edited_at",
        edited_by="last_edited_by",
    ),
    EditableField.PROCESSED_TEXT: FieldSpec(
        model=Transcript,
        value="processed_text",
        previous="processed_previous_version",
        count="processed_edit_count",
        stage=Stage.PROCESS,
        improve_step="improve_processed",
        edited_at="last_edited_at",
        edited_by="last_edited_by",
    ),
    EditableField.EXTRACT_TEXT: FieldSpec(
        model=Extract,
        value="extract_text",
        previous="previous_version",
        count="edit_count",
        stage=Stage.ANALYZE,
        improve_step="improve_extract",
        edited_by="last_edited_by",
    ),
}

REVISABLE_CONTEXT_FIELDS = frozenset(
    {"summary", "actions_taken", "metrics_mentioned", "strategy", "timeline"}
)


def _stamp(row: Any, spec: FieldSpec, editor: str | None, now: datetime | None) -> None:
    if spec.edited_at:
        setattr(row, spec.edited_at, now or utcnow())
    if spec.edited_by and editor:
        setattr(row, spec.edited_by, editor)


def push_version(
    row: Any,
    spec: FieldSpec,
    new_value: str,
    *,
    editor: str | None = None,
    now: datetime | None = None,
) -> bool:
    """Apply the single-slot rule; return False when nothing changed.

    A field that has never held a value is filled without touching the
    history slot or the counter.
    """

    current = getattr(row, spec.value)
    if new_value == current:
        return False
    if current is None:
        setattr(row, spec.value, new_value)
        _stamp(row, spec, editor, now)
        return True

    setattr(row, spec.previous, current)
    setattr(row, spec.value, new_value)
    setattr(row, spec.count, (getattr(row, spec.count) or 0) + 1)
    _stamp(row, spec, editor, now)
    return True


def pop_version(
    row: Any,
    spec: FieldSpec,
    *,
    editor: str | None = None,
    now: datetime | None = None,
) -> bool:
    """Restore the previous value; return False when the slot is empty."""

    previous = getattr(row, spec.previous)
    if previous is None:
        return False
    setattr(row, spec.value, previous)
    setattr(row, spec.previous, None)
    setattr(row, spec.count, max(0, (getattr(row, spec.count) or 0) - 1))
    _stamp(row, spec, editor, now)
    return True


@dataclass(frozen=True)
class FieldState:
    recording_id: UUID
    field: EditableField
    value: str | None
    previous_version: str | None
    edit_count: int
    changed: bool = False

    @property
    def can_undo(self) -> bool:
        return self.previous_version is not None


@dataclass(frozen=True)
class ImprovementCandidate:
    """AI suggestion for a field; nothing is persisted until saved."""

    recording_id: UUID
    field: EditableField
    current_value: str
    candidate: str
    model_used: str
    instruction: str | None = None


def _state(recording_id: UUID, field: EditableField, row: Any, changed: bool) -> FieldState:
    spec = FIELD_SPECS[field]
    return FieldState(
        recording_id=recording_id,
        field=field,
        value=getattr(row, spec.value),
        previous_version=getattr(row, spec.previous),
        edit_count=getattr(row, spec.count) or 0,
        changed=changed,
    )


class VersionManager:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        inference: InferenceClient,
        api_log: ApiLogService,
        *,
        policy: RetryPolicy,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._inference = inference
        self._api_log = api_log
        self._policy = policy
        self._sleep = sleep

    async def _load_row(
        self,
        session: AsyncSession,
        recording_id: UUID,
        field: EditableField,
        *,
        for_update: bool = False,
    ) -> Any:
        spec = FIELD_SPECS[field]
        recording = await load_recording(session, recording_id, for_update=for_update)
        status = stage_status(recording, spec.stage)
        if status is not StageStatus.COMPLETED:
            raise StageNotReady(
                f"'{field.value}' can only be edited once '{spec.stage.value}' has completed "
                f"(currently {status.value}).",
                stage=spec.stage.value,
                status=status.value,
            )

        row = await session.scalar(
            select(spec.model).where(spec.model.recording_id == recording_id)
        )
        if row is None or getattr(row, spec.value) is None:
            raise ConsistencyError(
                f"Stage '{spec.stage.value}' is completed but '{field.value}' is missing.",
                recording_id=str(recording_id),
                field=field.value,
            )
        return row

    async def get(self, recording_id: UUID, field: EditableField) -> FieldState:
        async with self._session_factory() as session:
            row = await self._load_row(session, recording_id, field)
            return _state(recording_id, field, row, changed=False)

    async def save(
        self,
        recording_id: UUID,
        field: EditableField,
        new_value: str,
        *,
        editor: str | None = None,
    ) -> FieldState:
        async with self._session_factory() as session:
            row = await self._load_row(session, recording_id, field, for_update=True)
            changed = push_version(row, FIELD_SPECS[field], new_value, editor=editor)
            if changed:
                await session.commit()
                logger.info(
                    "Saved %s recording=%s editor=%s", field.value, recording_id, editor
                )
            return _state(recording_id, field, row, changed)

    async def undo(
        self,
        recording_id: UUID,
        field: EditableField,
        *,
        editor: str | None = None,
    ) -> FieldState:
        async with self._session_factory() as session:
            row = await self._load_row(session, recording_id, field, for_update=True)
            changed = pop_version(row, FIELD_SPECS[field], editor=editor)
            if changed:
                await session.commit()
                logger.info(
                    "Undid %s recording=%s editor=%s", field.value, recording_id, editor
                )
            return _state(recording_id, field, row, changed)

    async def revert_to_original(
        self,
        recording_id: UUID,
        *,
        editor: str | None = None,
    ) -> FieldState:
        """Save the first transcription output back into ``full_text``."""

        async with self._session_factory() as session:
            row = await self._load_row(
                session, recording_id, EditableField.FULL_TEXT, for_update=True
            )
            if row.original_text is None:
                raise ConsistencyError(
                    "Transcript has no original text to revert to.",
                    recording_id=str(recording_id),
                )
            changed = push_version(
                row, FIELD_SPECS[EditableField.FULL_TEXT], row.original_text, editor=editor
            )
            if changed:
                await session.commit()
            return _state(recording_id, EditableField.FULL_TEXT, row, changed)

    async def ai_improve(
        self,
        recording_id: UUID,
        field: EditableField,
        instruction: str | None = None,
        *,
        model_id: str | None = None,
    ) -> ImprovementCandidate:
        """Ask the model for an improved version. Never writes the field."""

        async with self._session_factory() as session:
            row = await self._load_row(session, recording_id, field)
            current_value = getattr(row, FIELD_SPECS[field].value)

        request = InferenceRequest(
            recording_id=recording_id,
            step=FIELD_SPECS[field].improve_step,
            input_text=current_value,
            instruction=instruction,
            model_id=model_id,
        )
        result = await invoke_with_retry(
            self._inference,
            self._api_log,
            request,
            policy=self._policy,
            sleep=self._sleep,
        )
        return ImprovementCandidate(
            recording_id=recording_id,
            field=field,
            current_value=current_value,
            candidate=result.artifact,
            model_used=result.model_used,
            instruction=instruction,
        )

    async def revise_context(
        self,
        recording_id: UUID,
        changes: Mapping[str, Any],
        *,
        editor: str,
    ) -> OptimizationContext:
        """Apply manual corrections to the analysis; marks it ``revised``."""

        unknown = set(changes) - REVISABLE_CONTEXT_FIELDS
        if unknown:
            raise ValueError(f"Unknown context fields: {', '.join(sorted(unknown))}")

        async with self._session_factory() as session:
            recording = await load_recording(session, recording_id, for_update=True)
            status = stage_status(recording, Stage.ANALYZE)
            if status is not StageStatus.COMPLETED:
                raise StageNotReady(
                    "The analysis can only be revised once it has completed.",
                    stage=Stage.ANALYZE.value,
                    status=status.value,
                )
            context = await session.scalar(
                select(OptimizationContext).where(
                    OptimizationContext.recording_id == recording_id
                )
            )
            if context is None:
                raise ConsistencyError(
                    "Analysis is completed but no context exists.",
                    recording_id=str(recording_id),
                )

            for name, value in changes.items():
                setattr(context, name, value)
            context.confidence_level = ConfidenceLevel.REVISED
            context.revised_at = utcnow()
            context.revised_by = editor
            await session.commit()
            logger.info("Revised context recording=%s editor=%s", recording_id, editor)
            return context


__all__ = [
    "EditableField",
    "FIELD_SPECS",
    "FieldSpec",
    "FieldState",
    "ImprovementCandidate",
    "REVISABLE_CONTEXT_FIELDS",
    "VersionManager",
    "pop_version",
    "push_version",
]
