"""Error taxonomy for the recording pipeline.

Every error carries the HTTP status and the message the dashboard shows to
the user, so the FastAPI exception handler can render them uniformly.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorClass(str, Enum):
    """Classification applied to AI-service failures."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    CONSISTENCY = "consistency"


class PipelineError(Exception):
    """Base class for recoverable pipeline failures."""

    status_code = 500
    code = "pipeline_error"
    user_message = "Unexpected pipeline error."

    def __init__(self, message: str | None = None, **details: Any) -> None:
        super().__init__(message or self.user_message)
        self.message = message or self.user_message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "detail": self.message,
            "code": self.code,
            "user_message": self.user_message,
        }
        payload.update({k: v for k, v in self.details.items() if v is not None})
        return payload


class RecordingNotFound(PipelineError):
    status_code = 404
    code = "recording_not_found"
    user_message = "Recording not found."


class StageNotReady(PipelineError):
    """Upstream stage is not completed; nothing was mutated."""

    status_code = 409
    code = "stage_not_ready"
    user_message = "The previous step must finish before this one can run."


class InvalidTransition(PipelineError):
    status_code = 409
    code = "invalid_transition"
    user_message = "This step cannot change to the requested state right now."


class StaleRunError(InvalidTransition):
    """A newer invocation or a force retry took over the stage."""

    code = "stale_run"
    user_message = "A newer run of this step replaced this one."


class TransientServiceError(PipelineError):
    """Retryable upstream failure; all inputs were preserved."""

    status_code = 503
    code = "transient_service_error"
    user_message = "The AI service is temporarily unavailable. Your work was saved, try again later."


class PermanentInputError(PipelineError):
    """Non-retryable failure; a retry needs different input or configuration."""

    status_code = 422
    code = "permanent_input_error"
    user_message = "The AI service rejected this input. Review it and retry."

    @property
    def recovery_url(self) -> str | None:
        """Download link for the raw input when the recording was discarded."""

        return self.details.get("recovery_url")


class ConsistencyError(PipelineError):
    """Status claims completion but the artifact row is missing."""

    status_code = 500
    code = "consistency_error"
    user_message = (
        "Data inconsistency detected. Please retry generation, "
        "contact an admin if it persists."
    )


class PermissionDenied(PipelineError):
    status_code = 403
    code = "permission_denied"
    user_message = "You are not allowed to perform this action."


class ShareNotFound(PipelineError):
    status_code = 404
    code = "share_not_found"
    user_message = "Link not found or deactivated."


class ShareExpiredError(PipelineError):
    status_code = 410
    code = "share_expired"
    user_message = "This link has expired."


class ShareAuthError(PipelineError):
    status_code = 401
    code = "share_auth_required"
    user_message = "A valid password is required to view this link."


class PromptNotFound(PipelineError):
    status_code = 404
    code = "prompt_not_found"
    user_message = "Prompt not found."


class PromptConflict(PipelineError):
    status_code = 409
    code = "prompt_conflict"
    user_message = "A prompt already exists for this platform, objective and stage."


class InferenceServiceError(Exception):
    """Raw failure reported by an AI-service client before classification."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


__all__ = [
    "ErrorClass",
    "PipelineError",
    "RecordingNotFound",
    "StageNotReady",
    "InvalidTransition",
    "StaleRunError",
    "TransientServiceError",
    "PermanentInputError",
    "ConsistencyError",
    "PermissionDenied",
    "ShareNotFound",
    "ShareExpiredError",
    "ShareAuthError",
    "PromptNotFound",
    "PromptConflict",
    "InferenceServiceError",
]
