"""Stage artifacts: transcript, extract and structured analysis context.

Each table holds at most one row per recording; writers upsert by
``recording_id``.
"""

from __future__ import annotations

import uuid
from enum import Enum

from sqlalchemy import Column, DateTime
from sqlalchemy import Enum as SqlEnum
from sqlalchemy import ForeignKey, Integer, String, Text, Uuid

from optihub.models.base import Base, JSONType, utcnow


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    REVISED = "revised"


class Transcript(Base):
    __tablename__ = "optimization_transcripts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    recording_id = Column(
        Uuid,
        ForeignKey("optimization_recordings.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    language = Column(String(16), nullable=True)

    # Stage 1
    original_text = Column(Text, nullable=True)
    full_text = Column(Text, nullable=False, default="")
    previous_version = Column(Text, nullable=True)
    edit_count = Column(Integer, nullable=False, default=0)
    last_edited_at = Column(DateTime(timezone=True), nullable=True)
    last_edited_by = Column(String(255), nullable=True)

    # Stage 2
    processed_text = Column(Text, nullable=True)
    processed_previous_version = Column(Text, nullable=True)
    processed_edit_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Extract(Base):
    __tablename__ = "optimization_extracts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    recording_id = Column(
        Uuid,
        ForeignKey("optimization_recordings.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    extract_text = Column(Text, nullable=False, default="")
    previous_version = Column(Text, nullable=True)
    edit_count = Column(Integer, nullable=False, default=0)
    last_edited_by = Column(String(255), nullable=True)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class OptimizationContext(Base):
    __tablename__ = "optimization_contexts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    recording_id = Column(
        Uuid,
        ForeignKey("optimization_recordings.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    account_id = Column(String(64), nullable=False, index=True)
    summary = Column(Text, nullable=False, default="")
    actions_taken = Column(JSONType, nullable=False, default=list)
    metrics_mentioned = Column(JSONType, nullable=False, default=dict)
    strategy = Column(JSONType, nullable=False, default=dict)
    timeline = Column(JSONType, nullable=False, default=dict)
    confidence_level = Column(
        SqlEnum(ConfidenceLevel, name="confidence_level", native_enum=False, length=16),
        nullable=False,
        default=ConfidenceLevel.MEDIUM,
    )
    revised_at = Column(DateTime(timezone=True), nullable=True)
    revised_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


__all__ = ["Transcript", "Extract", "OptimizationContext", "ConfidenceLevel"]
