"""Schemas for the editable stage prompts."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from optihub.models.prompt import PromptType
from optihub.models.recording import AdPlatform


class PromptResponse(BaseModel):
    id: UUID
    platform: AdPlatform
    objective: str
    prompt_type: PromptType
    prompt_text: str
    variables: list[str] = Field(default_factory=list)
    is_default: bool = False
    previous_version: Optional[str] = None
    edit_count: int = 0
    edited_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PromptCreateRequest(BaseModel):
    platform: AdPlatform
    objective: str = Field(min_length=1, max_length=64)
    prompt_type: PromptType
    prompt_text: str = Field(min_length=1)
    variables: list[str] = Field(default_factory=list)
    is_default: bool = False


class PromptUpdateRequest(BaseModel):
    prompt_text: str = Field(min_length=1)


class PromptEditResponse(BaseModel):
    prompt: PromptResponse
    changed: bool
    can_undo: bool


__all__ = [
    "PromptCreateRequest",
    "PromptEditResponse",
    "PromptResponse",
    "PromptUpdateRequest",
]
