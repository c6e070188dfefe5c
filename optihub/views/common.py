"""Common response schemas."""

from typing import Any, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    detail: str
    code: Optional[str] = None
    user_message: Optional[str] = None


class SuccessResponse(BaseModel):
    message: str
    data: Optional[dict[str, Any]] = None
