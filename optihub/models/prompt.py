"""Editable system prompts per ad platform, campaign objective and stage."""

from __future__ import annotations

import uuid
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime
from sqlalchemy import Enum as SqlEnum
from sqlalchemy import Integer, String, Text, UniqueConstraint, Uuid

from optihub.models.base import Base, JSONType, utcnow
from optihub.models.recording import AdPlatform


class PromptType(str, Enum):
    TRANSCRIBE = "transcribe"
    PROCESS = "process"
    ANALYZE = "analyze"


class OptimizationPrompt(Base):
    __tablename__ = "optimization_prompts"
    __table_args__ = (
        UniqueConstraint("platform", "objective", "prompt_type", name="uq_prompt_selector"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    platform = Column(
        SqlEnum(AdPlatform, name="ad_platform", native_enum=False, length=16),
        nullable=False,
    )
    objective = Column(String(64), nullable=False)
    prompt_type = Column(
        SqlEnum(PromptType, name="prompt_type", native_enum=False, length=16),
        nullable=False,
    )
    prompt_text = Column(Text, nullable=False)
    variables = Column(JSONType, nullable=False, default=list)
    is_default = Column(Boolean, nullable=False, default=False)

    previous_version = Column(Text, nullable=True)
    edit_count = Column(Integer, nullable=False, default=0)
    edited_by = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


__all__ = ["OptimizationPrompt", "PromptType"]
