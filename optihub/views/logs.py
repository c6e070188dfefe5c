"""Schemas for the debug log viewer."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ApiLogResponse(BaseModel):
    id: int
    step: str
    attempt: int
    model_used: Optional[str] = None
    prompt_sent: Optional[str] = None
    response: Optional[str] = None
    success: bool
    error_message: Optional[str] = None
    tokens_used: Optional[int] = None
    latency_ms: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


__all__ = ["ApiLogResponse"]
