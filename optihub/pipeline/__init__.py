"""Stage status, retry classification and polling for the recording pipeline.

The executor and version manager live in ``optihub.pipeline.executor`` and
``optihub.pipeline.versions``; they depend on the service layer and are
imported from there directly.
"""

from .errors import (
    ConsistencyError,
    ErrorClass,
    InvalidTransition,
    PermanentInputError,
    PermissionDenied,
    PipelineError,
    RecordingNotFound,
    ShareAuthError,
    ShareExpiredError,
    ShareNotFound,
    StageNotReady,
    StaleRunError,
    TransientServiceError,
)
from .registry import RecordingStatus, Stage, StatusRegistry
from .retry import RetryPolicy, call_with_retry, classify_error, is_transient
from .watcher import TimeoutAdvisory, WatchContext, WatchResult, wait_for_stage

__all__ = [
    "ConsistencyError",
    "ErrorClass",
    "InvalidTransition",
    "PermanentInputError",
    "PermissionDenied",
    "PipelineError",
    "RecordingNotFound",
    "RecordingStatus",
    "RetryPolicy",
    "ShareAuthError",
    "ShareExpiredError",
    "ShareNotFound",
    "Stage",
    "StageNotReady",
    "StaleRunError",
    "StatusRegistry",
    "TimeoutAdvisory",
    "TransientServiceError",
    "WatchContext",
    "WatchResult",
    "call_with_retry",
    "classify_error",
    "is_transient",
    "wait_for_stage",
]
