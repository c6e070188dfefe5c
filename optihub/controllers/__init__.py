"""API routers."""

from . import auth, edits, logs, prompts, recordings, shares

__all__ = ["auth", "edits", "logs", "prompts", "recordings", "shares"]
