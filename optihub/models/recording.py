"""Optimization recordings and their per-stage status columns."""

from __future__ import annotations

import uuid
from enum import Enum

from sqlalchemy import Column, DateTime
from sqlalchemy import Enum as SqlEnum
from sqlalchemy import Integer, String, Text, Uuid

from optihub.models.base import Base, JSONType, utcnow


class StageStatus(str, Enum):
    """Lifecycle states shared by every pipeline stage."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AdPlatform(str, Enum):
    META = "meta"
    GOOGLE = "google"


def _status_column() -> Column:
    return Column(
        SqlEnum(StageStatus, name="stage_status", native_enum=False, length=16),
        nullable=False,
        default=StageStatus.PENDING,
    )


class Recording(Base):
    __tablename__ = "optimization_recordings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id = Column(String(64), nullable=False, index=True)
    recorded_by = Column(String(255), nullable=False)
    recorded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    audio_path = Column(Text, nullable=True)
    content_type = Column(String(64), nullable=True)
    duration_seconds = Column(Integer, nullable=True)

    # Prompt selection
    platform = Column(
        SqlEnum(AdPlatform, name="ad_platform", native_enum=False, length=16),
        nullable=True,
    )
    selected_objectives = Column(JSONType, nullable=True)
    override_context = Column(Text, nullable=True)

    # The *_run_id columns identify the invocation that currently owns the stage.
    transcription_status = _status_column()
    transcription_updated_at = Column(DateTime(timezone=True), nullable=True)
    transcription_error = Column(JSONType, nullable=True)
    transcription_run_id = Column(Uuid, nullable=True)

    processing_status = _status_column()
    processing_updated_at = Column(DateTime(timezone=True), nullable=True)
    processing_error = Column(JSONType, nullable=True)
    processing_run_id = Column(Uuid, nullable=True)

    analysis_status = _status_column()
    analysis_updated_at = Column(DateTime(timezone=True), nullable=True)
    analysis_error = Column(JSONType, nullable=True)
    analysis_run_id = Column(Uuid, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<Recording {self.id} transcription={self.transcription_status} "
            f"processing={self.processing_status} analysis={self.analysis_status}>"
        )


class DiscardedRecording(Base):
    """Recording removed after a permanent transcription failure.

    Keeps the id and audio location so the uploader can still download the
    raw audio. Never listed with live recordings.
    """

    __tablename__ = "discarded_recordings"

    id = Column(Uuid, primary_key=True)
    account_id = Column(String(64), nullable=False, index=True)
    recorded_by = Column(String(255), nullable=False)
    audio_path = Column(Text, nullable=True)
    content_type = Column(String(64), nullable=True)
    reason = Column(Text, nullable=False)
    discarded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


__all__ = ["AdPlatform", "DiscardedRecording", "Recording", "StageStatus"]
