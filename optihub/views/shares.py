"""Schemas for public share links."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ShareCreateRequest(BaseModel):
    expires_in_days: Optional[int] = Field(default=None, ge=1, le=365)
    password: Optional[str] = Field(default=None, min_length=4, max_length=128)


class ShareCreateResponse(BaseModel):
    url: str
    slug: str
    expires_at: Optional[datetime] = None


class SharedOptimizationResponse(BaseModel):
    recording_id: UUID
    account_id: str
    recorded_at: Optional[datetime] = None
    extract_text: str
    summary: Optional[str] = None
    actions_taken: Optional[list[dict[str, Any]]] = None
    metrics_mentioned: Optional[dict[str, Any]] = None
    strategy: Optional[dict[str, Any]] = None
    timeline: Optional[dict[str, Any]] = None
    view_count: int = 0


__all__ = [
    "ShareCreateRequest",
    "ShareCreateResponse",
    "SharedOptimizationResponse",
]
