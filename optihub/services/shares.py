"""Public share links for analysed recordings."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from optihub.config.settings import settings
from optihub.models.artifacts import Extract, OptimizationContext
from optihub.models.base import as_utc, utcnow
from optihub.models.recording import Recording, StageStatus
from optihub.models.share_link import ShareLink
from optihub.pipeline.errors import (
    ConsistencyError,
    ShareAuthError,
    ShareExpiredError,
    ShareNotFound,
    StageNotReady,
)
from optihub.pipeline.registry import Stage, load_recording, stage_status
from optihub.utils.security import hash_password, verify_password

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShareCreated:
    url: str
    slug: str
    expires_at: datetime | None


@dataclass(frozen=True)
class SharedArtifact:
    """Read-only view served on the public link."""

    slug: str
    recording_id: UUID
    account_id: str
    recorded_at: datetime | None
    extract_text: str
    summary: str | None = None
    actions_taken: Any = None
    metrics_mentioned: Any = None
    strategy: Any = None
    timeline: Any = None
    view_count: int = 0


class ShareService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        public_base_url: str | None = None,
        slug_bytes: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.public_base_url = (public_base_url or settings.share.public_base_url).rstrip("/")
        self.slug_bytes = slug_bytes or settings.share.slug_bytes
        self._clock = clock

    def url_for(self, slug: str) -> str:
        return f"{self.public_base_url}/{slug}"

    async def create_share(
        self,
        recording_id: UUID,
        *,
        expires_in_days: int | None = None,
        password: str | None = None,
        created_by: str | None = None,
    ) -> ShareCreated:
        """Issue a new link; requires a completed analysis."""

        if expires_in_days is not None and expires_in_days <= 0:
            raise ValueError("expires_in_days must be positive when provided.")

        async with self._session_factory() as session:
            recording = await load_recording(session, recording_id)
            status = stage_status(recording, Stage.ANALYZE)
            if status is not StageStatus.COMPLETED:
                raise StageNotReady(
                    "Only analysed recordings can be shared.",
                    stage=Stage.ANALYZE.value,
                    status=status.value,
                )

            extract = await session.scalar(
                select(Extract).where(Extract.recording_id == recording_id)
            )
            if extract is None:
                raise ConsistencyError(
                    "Analysis is completed but no extract exists.",
                    recording_id=str(recording_id),
                )

            expires_at = None
            if expires_in_days is not None:
                expires_at = self._clock() + timedelta(days=expires_in_days)

            link = ShareLink(
                slug=secrets.token_urlsafe(self.slug_bytes),
                recording_id=recording_id,
                expires_at=expires_at,
                password_hash=hash_password(password) if password else None,
                created_by=created_by,
            )
            session.add(link)
            await session.commit()

        logger.info(
            "Created share slug=%s recording=%s expires_at=%s protected=%s",
            link.slug,
            recording_id,
            expires_at,
            bool(password),
        )
        return ShareCreated(url=self.url_for(link.slug), slug=link.slug, expires_at=expires_at)

    async def resolve_share(self, slug: str, password: str | None = None) -> SharedArtifact:
        """Validate the link and return the shared artifact; counts the view."""

        async with self._session_factory() as session:
            link = await session.scalar(select(ShareLink).where(ShareLink.slug == slug))
            if link is None or not link.is_active:
                raise ShareNotFound(slug=slug)

            now = self._clock()
            expires_at = as_utc(link.expires_at)
            if expires_at is not None and expires_at < now:
                raise ShareExpiredError(slug=slug)

            if link.password_hash:
                if not password or not verify_password(password, link.password_hash):
                    raise ShareAuthError(slug=slug)

            recording = await session.get(Recording, link.recording_id)
            if recording is None:
                raise ShareNotFound(slug=slug)
            extract = await session.scalar(
                select(Extract).where(Extract.recording_id == link.recording_id)
            )
            if extract is None:
                raise ConsistencyError(
                    "Shared recording has no extract.",
                    recording_id=str(link.recording_id),
                )
            context = await session.scalar(
                select(OptimizationContext).where(
                    OptimizationContext.recording_id == link.recording_id
                )
            )

            link.view_count = (link.view_count or 0) + 1
            link.last_viewed_at = now
            await session.commit()

            return SharedArtifact(
                slug=slug,
                recording_id=recording.id,
                account_id=recording.account_id,
                recorded_at=as_utc(recording.recorded_at),
                extract_text=extract.extract_text,
                summary=context.summary if context else None,
                actions_taken=context.actions_taken if context else None,
                metrics_mentioned=context.metrics_mentioned if context else None,
                strategy=context.strategy if context else None,
                timeline=context.timeline if context else None,
                view_count=link.view_count,
            )

    async def revoke_share(self, slug: str) -> None:
        async with self._session_factory() as session:
            link = await session.scalar(select(ShareLink).where(ShareLink.slug == slug))
            if link is None or not link.is_active:
                raise ShareNotFound(slug=slug)
            link.is_active = False
            await session.commit()
        logger.info("Revoked share slug=%s", slug)


__all__ = ["ShareCreated", "ShareService", "SharedArtifact"]
