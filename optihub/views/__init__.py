"""Pydantic schemas used as views in the MVC architecture."""

from .auth import LoginRequest, TokenResponse
from .common import ErrorResponse, SuccessResponse
from .edits import (
    ContextRevisionRequest,
    FieldSaveRequest,
    FieldStateResponse,
    ImproveRequest,
    ImproveResponse,
)
from .logs import ApiLogResponse
from .recordings import (
    ContextResponse,
    ExtractResponse,
    RecordingDetailResponse,
    RecordingResponse,
    RecordingStatusResponse,
    RecoveryDownloadResponse,
    StageInvocationRequest,
    StageStatusResponse,
    TranscriptResponse,
)
from .prompts import (
    PromptCreateRequest,
    PromptEditResponse,
    PromptResponse,
    PromptUpdateRequest,
)
from .shares import ShareCreateRequest, ShareCreateResponse, SharedOptimizationResponse

__all__ = [
    "ApiLogResponse",
    "ContextResponse",
    "ContextRevisionRequest",
    "ErrorResponse",
    "ExtractResponse",
    "FieldSaveRequest",
    "FieldStateResponse",
    "ImproveRequest",
    "ImproveResponse",
    "LoginRequest",
    "PromptCreateRequest",
    "PromptEditResponse",
    "PromptResponse",
    "PromptUpdateRequest",
    "RecordingDetailResponse",
    "RecordingResponse",
    "RecordingStatusResponse",
    "RecoveryDownloadResponse",
    "ShareCreateRequest",
    "ShareCreateResponse",
    "SharedOptimizationResponse",
    "StageInvocationRequest",
    "StageStatusResponse",
    "SuccessResponse",
    "TokenResponse",
    "TranscriptResponse",
]
