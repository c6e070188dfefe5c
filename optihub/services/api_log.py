"""Append-only audit log of AI-service attempts.

Rows are written for every attempt regardless of outcome and mirrored to the
``optihub.logs.api`` file logger. Reading is restricted to elevated roles.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from optihub.config.settings import settings
from optihub.models.log import ApiLog
from optihub.models.user import User
from optihub.pipeline.errors import InferenceServiceError, PermissionDenied
from optihub.pipeline.retry import AttemptCallback, AttemptOutcome
from optihub.services.inference import InferenceResult

logger = logging.getLogger(__name__)
api_logger = logging.getLogger("optihub.logs.api")

TRUNCATION_SUFFIX = "…[truncated]"


def truncate_payload(value: str | None, limit: int) -> str | None:
    """Clip ``value`` to ``limit`` characters including the truncation marker."""

    if value is None or len(value) <= limit:
        return value
    keep = max(limit - len(TRUNCATION_SUFFIX), 0)
    return value[:keep] + TRUNCATION_SUFFIX


class ApiLogService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        max_chars: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.max_chars = max_chars or settings.pipeline.api_log_max_chars

    async def record(
        self,
        recording_id: UUID,
        outcome: AttemptOutcome,
        *,
        prompt_sent: str | None = None,
        model_used: str | None = None,
    ) -> None:
        """Persist one attempt. Storage failures are logged, never raised."""

        response_text: str | None = None
        error_message: str | None = None
        tokens_used: int | None = None

        if outcome.success and isinstance(outcome.result, InferenceResult):
            response_text = outcome.result.artifact
            tokens_used = outcome.result.tokens_used
            model_used = outcome.result.model_used or model_used
            prompt_sent = outcome.result.prompt_sent or prompt_sent
        elif outcome.error is not None:
            error_message = f"{type(outcome.error).__name__}: {outcome.error}"
            if isinstance(outcome.error, InferenceServiceError):
                response_text = outcome.error.body

        entry = ApiLog(
            recording_id=recording_id,
            step=outcome.step,
            attempt=outcome.attempt,
            model_used=model_used,
            prompt_sent=truncate_payload(prompt_sent, self.max_chars),
            response=truncate_payload(response_text, self.max_chars),
            success=outcome.success,
            error_message=truncate_payload(error_message, self.max_chars),
            tokens_used=tokens_used,
            latency_ms=outcome.latency_ms,
        )

        api_logger.info(
            "recording=%s step=%s attempt=%s success=%s latency_ms=%s model=%s error=%s",
            recording_id,
            outcome.step,
            outcome.attempt,
            outcome.success,
            outcome.latency_ms,
            model_used or "-",
            error_message or "-",
        )

        async with self._session_factory() as session:
            session.add(entry)
            try:
                await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                logger.exception(
                    "Failed to persist api log recording=%s step=%s",
                    recording_id,
                    outcome.step,
                )

    def recorder(
        self,
        recording_id: UUID,
        *,
        prompt_sent: str | None = None,
        model_used: str | None = None,
    ) -> AttemptCallback:
        """Return a retry callback bound to one recording and prompt."""

        async def _record(outcome: AttemptOutcome) -> None:
            await self.record(
                recording_id,
                outcome,
                prompt_sent=prompt_sent,
                model_used=model_used,
            )

        return _record

    async def list_logs(
        self,
        user: User,
        recording_id: UUID,
        steps: Iterable[str] | None = None,
        *,
        limit: int = 200,
    ) -> Sequence[ApiLog]:
        """Most-recent-first attempts for a recording, optionally by step."""

        if not user.is_elevated:
            raise PermissionDenied(
                "Only admin and staff users can read the debug log.",
                user_id=str(user.id),
            )

        query = select(ApiLog).where(ApiLog.recording_id == recording_id)
        step_filter = [step for step in (steps or []) if step]
        if step_filter:
            query = query.where(ApiLog.step.in_(step_filter))
        query = query.order_by(ApiLog.created_at.desc(), ApiLog.id.desc()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())


__all__ = ["ApiLogService", "TRUNCATION_SUFFIX", "truncate_payload"]
