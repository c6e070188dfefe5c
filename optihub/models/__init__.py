"""SQLAlchemy models for the recording pipeline."""

from .base import Base
from .artifacts import ConfidenceLevel, Extract, OptimizationContext, Transcript  # noqa: F401
from .log import ApiLog  # noqa: F401
from .prompt import OptimizationPrompt, PromptType  # noqa: F401
from .recording import AdPlatform, DiscardedRecording, Recording, StageStatus  # noqa: F401
from .share_link import ShareLink  # noqa: F401
from .user import User, UserRole  # noqa: F401

__all__ = [
    "Base",
    "AdPlatform",
    "ApiLog",
    "ConfidenceLevel",
    "DiscardedRecording",
    "Extract",
    "OptimizationContext",
    "OptimizationPrompt",
    "PromptType",
    "Recording",
    "ShareLink",
    "StageStatus",
    "Transcript",
    "User",
    "UserRole",
]
