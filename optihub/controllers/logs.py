"""Debug log endpoint for AI-call attempts."""

from __future__ import annotations

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Query

from optihub.controllers.dependencies import ElevatedUserDep, ServicesDep
from optihub.views import ApiLogResponse

router = APIRouter(prefix="/recordings", tags=["logs"])


@router.get("/{recording_id}/logs", response_model=list[ApiLogResponse])
async def list_api_logs(
    recording_id: UUID,
    user: ElevatedUserDep,
    services: ServicesDep,
    step: Annotated[Optional[list[str]], Query()] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 200,
) -> list[ApiLogResponse]:
    """Attempts for the recording, newest first. Admin and staff only."""

    entries = await services.api_log.list_logs(user, recording_id, step, limit=limit)
    return [ApiLogResponse.model_validate(entry) for entry in entries]
