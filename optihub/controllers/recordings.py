"""Recording upload, status, stage invocation and deletion endpoints."""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Annotated, Optional
from uuid import UUID

from fastapi import (
    APIRouter,
    BackgroundTasks,
    File,
    Form,
    HTTPException,
    Query,
    UploadFile,
    status,
)

from optihub.config.settings import settings
from optihub.controllers.dependencies import CurrentUserDep, ServicesDep
from optihub.models.recording import AdPlatform
from optihub.pipeline.errors import RecordingNotFound
from optihub.pipeline.registry import Stage
from optihub.services.storage import StorageError
from optihub.views import (
    ContextResponse,
    ExtractResponse,
    RecordingDetailResponse,
    RecordingResponse,
    RecordingStatusResponse,
    RecoveryDownloadResponse,
    StageInvocationRequest,
    SuccessResponse,
    TranscriptResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recordings", tags=["recordings"])

_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/ogg": "ogg",
}


def _extension_for(upload: UploadFile) -> str:
    suffix = PurePosixPath(upload.filename or "").suffix.lstrip(".")
    if suffix:
        return suffix.lower()
    return _EXTENSIONS.get(upload.content_type or "", "webm")


@router.post(
    "",
    response_model=RecordingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_recording(
    user: CurrentUserDep,
    services: ServicesDep,
    background_tasks: BackgroundTasks,
    account_id: Annotated[str, Form(min_length=1, max_length=64)],
    audio_file: Annotated[UploadFile, File()],
    duration_seconds: Annotated[Optional[int], Form(ge=0)] = None,
    slot_id: Annotated[Optional[str], Form(max_length=128)] = None,
    auto_transcribe: Annotated[bool, Form()] = False,
    platform: Annotated[Optional[AdPlatform], Form()] = None,
    objectives: Annotated[Optional[list[str]], Form()] = None,
    override_context: Annotated[Optional[str], Form(max_length=20000)] = None,
) -> RecordingResponse:
    """Store uploaded audio and register the recording.

    ``slot_id`` is generated by the client per upload slot; a retried submit
    with the same slot reuses the audio already stored. ``platform`` and
    ``objectives`` select the stage prompts; ``override_context`` replaces
    the account context sent to the model.
    """

    upload = services.upload_cache.get(slot_id)
    if upload is None:
        data = await audio_file.read()
        if not data:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="The uploaded audio file is empty.",
            )
        try:
            upload = await services.storage.upload(
                account_id=account_id,
                data=data,
                content_type=audio_file.content_type or "application/octet-stream",
                extension=_extension_for(audio_file),
            )
        except StorageError as exc:
            logger.error("Audio upload failed for account %s: %s", account_id, exc)
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Could not store the audio file. Try again.",
            ) from exc
        services.upload_cache.put(slot_id, upload)
    else:
        logger.info("Reusing upload for slot %s: %s", slot_id, upload.object_key)

    recording = await services.recordings.create(
        account_id=account_id,
        recorded_by=user.email,
        upload=upload,
        duration_seconds=duration_seconds,
        platform=platform,
        objectives=[item for item in objectives or [] if item],
        override_context=override_context,
    )
    services.upload_cache.discard(slot_id)

    if auto_transcribe:
        started = await services.executor.begin(recording.id, Stage.TRANSCRIBE)
        background_tasks.add_task(
            services.executor.run_detached,
            recording.id,
            Stage.TRANSCRIBE,
            started.run_id_of(Stage.TRANSCRIBE),
        )
        detail = await services.recordings.get_detail(recording.id)
        recording = detail.recording

    return RecordingResponse.model_validate(recording)


@router.get("", response_model=list[RecordingResponse])
async def list_recordings(
    _: CurrentUserDep,
    services: ServicesDep,
    account_id: Annotated[Optional[str], Query(max_length=64)] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> list[RecordingResponse]:
    recordings = await services.recordings.list_for_account(account_id, limit=limit)
    return [RecordingResponse.model_validate(item) for item in recordings]


@router.get("/{recording_id}", response_model=RecordingDetailResponse)
async def get_recording(
    recording_id: UUID,
    _: CurrentUserDep,
    services: ServicesDep,
) -> RecordingDetailResponse:
    detail = await services.recordings.get_detail(recording_id)
    return RecordingDetailResponse(
        recording=RecordingResponse.model_validate(detail.recording),
        transcript=TranscriptResponse.model_validate(detail.transcript)
        if detail.transcript
        else None,
        extract=ExtractResponse.model_validate(detail.extract) if detail.extract else None,
        context=ContextResponse.model_validate(detail.context) if detail.context else None,
    )


@router.delete("/{recording_id}", response_model=SuccessResponse)
async def delete_recording(
    recording_id: UUID,
    _: CurrentUserDep,
    services: ServicesDep,
) -> SuccessResponse:
    audio_removed = await services.recordings.delete(recording_id)
    return SuccessResponse(
        message="Recording deleted.",
        data={"audio_removed": audio_removed},
    )


@router.get("/{recording_id}/status", response_model=RecordingStatusResponse)
async def get_recording_status(
    recording_id: UUID,
    _: CurrentUserDep,
    services: ServicesDep,
) -> RecordingStatusResponse:
    """Stage statuses; a discarded recording answers with its recovery link."""

    try:
        status_view = await services.registry.get_status(recording_id)
    except RecordingNotFound:
        notice = await services.recordings.discard_notice(recording_id)
        if notice is None:
            raise
        raise notice from None
    return RecordingStatusResponse.from_status(status_view)


@router.post(
    "/{recording_id}/stages/{stage}",
    response_model=RecordingStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def invoke_stage(
    recording_id: UUID,
    stage: Stage,
    _: CurrentUserDep,
    services: ServicesDep,
    background_tasks: BackgroundTasks,
    payload: Optional[StageInvocationRequest] = None,
) -> RecordingStatusResponse:
    """Mark the stage as processing and run it in the background."""

    payload = payload or StageInvocationRequest()
    status_view = await services.executor.begin(recording_id, stage)
    background_tasks.add_task(
        services.executor.run_detached,
        recording_id,
        stage,
        status_view.run_id_of(stage),
        model_id=payload.model_id,
        instruction=payload.instruction,
    )
    return RecordingStatusResponse.from_status(status_view)


@router.post(
    "/{recording_id}/stages/{stage}/force-retry",
    response_model=RecordingStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def force_retry_stage(
    recording_id: UUID,
    stage: Stage,
    _: CurrentUserDep,
    services: ServicesDep,
    background_tasks: BackgroundTasks,
) -> RecordingStatusResponse:
    """Reset an orphaned or failed stage and start it again."""

    status_view = await services.executor.prepare_force_retry(recording_id, stage)
    background_tasks.add_task(
        services.executor.run_detached,
        recording_id,
        stage,
        status_view.run_id_of(stage),
    )
    return RecordingStatusResponse.from_status(status_view)


@router.get(
    "/{recording_id}/audio-download",
    response_model=RecoveryDownloadResponse,
)
async def download_audio(
    recording_id: UUID,
    _: CurrentUserDep,
    services: ServicesDep,
) -> RecoveryDownloadResponse:
    try:
        url = await services.recordings.recovery_url(recording_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Could not create a download link.",
        ) from exc
    return RecoveryDownloadResponse(
        url=url, expires_in=settings.s3.recovery_url_expires_seconds
    )
