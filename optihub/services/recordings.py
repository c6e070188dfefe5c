"""Recording lifecycle: creation after upload, lookup and cascading delete."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from optihub.models.artifacts import Extract, OptimizationContext, Transcript
from optihub.models.log import ApiLog
from optihub.models.recording import AdPlatform, DiscardedRecording, Recording, StageStatus
from optihub.models.share_link import ShareLink
from optihub.pipeline.errors import PermanentInputError, RecordingNotFound
from optihub.pipeline.registry import Stage, load_recording
from optihub.services.storage import ObjectStorage, StorageError, UploadResult

logger = logging.getLogger(__name__)


async def purge_recording_rows(session: AsyncSession, recording_id: UUID) -> None:
    """Delete a recording and every dependent row; the caller commits."""

    for model in (ApiLog, ShareLink, Extract, OptimizationContext, Transcript):
        await session.execute(delete(model).where(model.recording_id == recording_id))
    await session.execute(delete(Recording).where(Recording.id == recording_id))


@dataclass(frozen=True)
class RecordingDetail:
    recording: Recording
    transcript: Optional[Transcript]
    extract: Optional[Extract]
    context: Optional[OptimizationContext]


class RecordingService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: ObjectStorage,
    ) -> None:
        self._session_factory = session_factory
        self._storage = storage

    async def create(
        self,
        *,
        account_id: str,
        recorded_by: str,
        upload: UploadResult,
        duration_seconds: int | None = None,
        platform: AdPlatform | None = None,
        objectives: Iterable[str] | None = None,
        override_context: str | None = None,
    ) -> Recording:
        recording = Recording(
            account_id=account_id,
            recorded_by=recorded_by,
            audio_path=upload.object_key,
            content_type=upload.content_type,
            duration_seconds=duration_seconds,
            platform=platform,
            selected_objectives=list(objectives) if objectives else None,
            override_context=override_context or None,
            transcription_status=StageStatus.PENDING,
            processing_status=StageStatus.PENDING,
            analysis_status=StageStatus.PENDING,
        )
        async with self._session_factory() as session:
            session.add(recording)
            await session.commit()
        logger.info(
            "Created recording %s account=%s audio=%s",
            recording.id,
            account_id,
            upload.object_key,
        )
        return recording

    async def get_detail(self, recording_id: UUID) -> RecordingDetail:
        async with self._session_factory() as session:
            recording = await load_recording(session, recording_id)
            transcript = await session.scalar(
                select(Transcript).where(Transcript.recording_id == recording_id)
            )
            extract = await session.scalar(
                select(Extract).where(Extract.recording_id == recording_id)
            )
            context = await session.scalar(
                select(OptimizationContext).where(
                    OptimizationContext.recording_id == recording_id
                )
            )
            return RecordingDetail(recording, transcript, extract, context)

    async def list_for_account(
        self,
        account_id: str | None = None,
        *,
        limit: int = 50,
    ) -> Sequence[Recording]:
        query = select(Recording).order_by(Recording.recorded_at.desc()).limit(limit)
        if account_id:
            query = query.where(Recording.account_id == account_id)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def delete(self, recording_id: UUID) -> bool:
        """Remove the audio blob best-effort, then every row authoritatively.

        Also clears a discarded recording and its kept audio. Returns whether
        the blob removal succeeded.
        """

        async with self._session_factory() as session:
            recording = await session.get(Recording, recording_id)
            discarded = None
            if recording is None:
                discarded = await session.get(DiscardedRecording, recording_id)
                if discarded is None:
                    raise RecordingNotFound(recording_id=str(recording_id))
            audio_path = (recording or discarded).audio_path

        blob_removed = True
        if audio_path:
            blob_removed = await self._storage.delete(audio_path)

        async with self._session_factory() as session:
            await purge_recording_rows(session, recording_id)
            await session.execute(
                delete(DiscardedRecording).where(DiscardedRecording.id == recording_id)
            )
            await session.commit()

        logger.info(
            "Deleted recording %s (audio removed=%s)", recording_id, blob_removed
        )
        return blob_removed

    async def get_discarded(self, recording_id: UUID) -> DiscardedRecording | None:
        async with self._session_factory() as session:
            return await session.get(DiscardedRecording, recording_id)

    async def discard_notice(self, recording_id: UUID) -> PermanentInputError | None:
        """Error describing a discarded recording, with a fresh download link."""

        discarded = await self.get_discarded(recording_id)
        if discarded is None:
            return None
        recovery_url = None
        if discarded.audio_path:
            try:
                recovery_url = await self._storage.presigned_url(discarded.audio_path)
            except StorageError:
                logger.exception("Could not sign recovery URL for %s", discarded.audio_path)
        return PermanentInputError(
            discarded.reason,
            stage=Stage.TRANSCRIBE.value,
            recording_id=str(recording_id),
            recording_deleted=True,
            recovery_url=recovery_url,
            discarded_at=discarded.discarded_at.isoformat()
            if discarded.discarded_at
            else None,
        )

    async def recovery_url(self, recording_id: UUID) -> str:
        """Signed download link for the raw audio, live or discarded."""

        async with self._session_factory() as session:
            recording = await session.get(Recording, recording_id)
            if recording is None:
                recording = await session.get(DiscardedRecording, recording_id)
            if recording is None:
                raise RecordingNotFound(recording_id=str(recording_id))
            audio_path = recording.audio_path
        if not audio_path:
            raise ValueError("Recording has no audio to download.")
        return await self._storage.presigned_url(audio_path)


__all__ = [
    "RecordingDetail",
    "RecordingService",
    "purge_recording_rows",
]
