"""Schemas for recordings and their stage status."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from optihub.models.artifacts import ConfidenceLevel
from optihub.models.recording import AdPlatform, StageStatus
from optihub.pipeline.errors import (
    ConsistencyError,
    PermanentInputError,
    TransientServiceError,
)
from optihub.pipeline.registry import RecordingStatus, StageSnapshot

_ERROR_MESSAGES = {
    "transient": TransientServiceError.user_message,
    "permanent": PermanentInputError.user_message,
    "consistency": ConsistencyError.user_message,
}
ORPHANED_MESSAGE = (
    "This step has been processing for too long. You can force a retry."
)


class StageStatusResponse(BaseModel):
    status: StageStatus
    updated_at: Optional[datetime] = None
    error: Optional[dict[str, Any]] = None
    orphaned: bool = False
    user_message: Optional[str] = None
    can_force_retry: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: StageSnapshot) -> "StageStatusResponse":
        message = None
        if snapshot.orphaned:
            message = ORPHANED_MESSAGE
        elif snapshot.status is StageStatus.FAILED and snapshot.error:
            message = _ERROR_MESSAGES.get(snapshot.error.get("error_class") or "")
        return cls(
            status=snapshot.status,
            updated_at=snapshot.updated_at,
            error=dict(snapshot.error) if snapshot.error else None,
            orphaned=snapshot.orphaned,
            user_message=message,
            can_force_retry=snapshot.orphaned or snapshot.status is StageStatus.FAILED,
        )


class RecordingStatusResponse(BaseModel):
    recording_id: UUID
    transcription_status: StageStatus
    processing_status: StageStatus
    analysis_status: StageStatus
    stages: dict[str, StageStatusResponse]

    @classmethod
    def from_status(cls, status: RecordingStatus) -> "RecordingStatusResponse":
        return cls(
            recording_id=status.recording_id,
            transcription_status=status.transcription_status,
            processing_status=status.processing_status,
            analysis_status=status.analysis_status,
            stages={
                stage.value: StageStatusResponse.from_snapshot(snapshot)
                for stage, snapshot in status.stages.items()
            },
        )


class RecordingResponse(BaseModel):
    id: UUID
    account_id: str
    recorded_by: str
    recorded_at: datetime
    audio_path: Optional[str] = None
    content_type: Optional[str] = None
    duration_seconds: Optional[int] = None
    platform: Optional[AdPlatform] = None
    selected_objectives: Optional[list[str]] = None
    override_context: Optional[str] = None
    transcription_status: StageStatus
    processing_status: StageStatus
    analysis_status: StageStatus

    model_config = ConfigDict(from_attributes=True)


class TranscriptResponse(BaseModel):
    language: Optional[str] = None
    original_text: Optional[str] = None
    full_text: str
    previous_version: Optional[str] = None
    edit_count: int = 0
    last_edited_at: Optional[datetime] = None
    last_edited_by: Optional[str] = None
    processed_text: Optional[str] = None
    processed_previous_version: Optional[str] = None
    processed_edit_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class ExtractResponse(BaseModel):
    extract_text: str
    previous_version: Optional[str] = None
    edit_count: int = 0
    last_edited_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ContextResponse(BaseModel):
    summary: str
    actions_taken: list[dict[str, Any]] = Field(default_factory=list)
    metrics_mentioned: dict[str, Any] = Field(default_factory=dict)
    strategy: dict[str, Any] = Field(default_factory=dict)
    timeline: dict[str, Any] = Field(default_factory=dict)
    confidence_level: ConfidenceLevel
    revised_at: Optional[datetime] = None
    revised_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RecordingDetailResponse(BaseModel):
    recording: RecordingResponse
    transcript: Optional[TranscriptResponse] = None
    extract: Optional[ExtractResponse] = None
    context: Optional[ContextResponse] = None


class StageInvocationRequest(BaseModel):
    model_id: Optional[str] = Field(default=None, max_length=255)
    instruction: Optional[str] = Field(default=None, max_length=2000)


class RecoveryDownloadResponse(BaseModel):
    url: str
    expires_in: int


__all__ = [
    "ContextResponse",
    "ExtractResponse",
    "ORPHANED_MESSAGE",
    "RecordingDetailResponse",
    "RecordingResponse",
    "RecordingStatusResponse",
    "RecoveryDownloadResponse",
    "StageInvocationRequest",
    "StageStatusResponse",
    "TranscriptResponse",
]
