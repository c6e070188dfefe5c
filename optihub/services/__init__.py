"""Service layer: storage, inference, audit log, shares and wiring."""

from .api_log import ApiLogService
from .inference import (
    BedrockInferenceClient,
    InferenceClient,
    InferenceRequest,
    InferenceResult,
    StepRouter,
    TranscribeJobClient,
)
from .recordings import RecordingService
from .shares import ShareService
from .storage import ObjectStorage, StorageError, UploadCache, UploadResult

__all__ = [
    "ApiLogService",
    "BedrockInferenceClient",
    "InferenceClient",
    "InferenceRequest",
    "InferenceResult",
    "ObjectStorage",
    "RecordingService",
    "ShareService",
    "StepRouter",
    "StorageError",
    "TranscribeJobClient",
    "UploadCache",
    "UploadResult",
]
