"""Schemas for field edits, undo and AI improvement."""

from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from optihub.pipeline.versions import EditableField, FieldState, ImprovementCandidate


class FieldSaveRequest(BaseModel):
    value: str = Field(min_length=1)


class FieldStateResponse(BaseModel):
    recording_id: UUID
    field: EditableField
    value: Optional[str] = None
    previous_version: Optional[str] = None
    edit_count: int
    changed: bool
    can_undo: bool

    @classmethod
    def from_state(cls, state: FieldState) -> "FieldStateResponse":
        return cls(
            recording_id=state.recording_id,
            field=state.field,
            value=state.value,
            previous_version=state.previous_version,
            edit_count=state.edit_count,
            changed=state.changed,
            can_undo=state.can_undo,
        )


class ImproveRequest(BaseModel):
    instruction: Optional[str] = Field(default=None, max_length=2000)
    model_id: Optional[str] = Field(default=None, max_length=255)


class ImproveResponse(BaseModel):
    recording_id: UUID
    field: EditableField
    current_value: str
    candidate: str
    model_used: str
    instruction: Optional[str] = None

    @classmethod
    def from_candidate(cls, candidate: ImprovementCandidate) -> "ImproveResponse":
        return cls(
            recording_id=candidate.recording_id,
            field=candidate.field,
            current_value=candidate.current_value,
            candidate=candidate.candidate,
            model_used=candidate.model_used,
            instruction=candidate.instruction,
        )


class ContextRevisionRequest(BaseModel):
    summary: Optional[str] = None
    actions_taken: Optional[list[dict[str, Any]]] = None
    metrics_mentioned: Optional[dict[str, Any]] = None
    strategy: Optional[dict[str, Any]] = None
    timeline: Optional[dict[str, Any]] = None


__all__ = [
    "ContextRevisionRequest",
    "FieldSaveRequest",
    "FieldStateResponse",
    "ImproveRequest",
    "ImproveResponse",
]
