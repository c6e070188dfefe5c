"""Edit, undo and AI-improvement endpoints for stage artifacts."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from optihub.controllers.dependencies import CurrentUserDep, ServicesDep
from optihub.pipeline.versions import EditableField
from optihub.views import (
    ContextResponse,
    ContextRevisionRequest,
    FieldSaveRequest,
    FieldStateResponse,
    ImproveRequest,
    ImproveResponse,
)

router = APIRouter(prefix="/recordings/{recording_id}", tags=["edits"])


@router.get("/fields/{field}", response_model=FieldStateResponse)
async def get_field(
    recording_id: UUID,
    field: EditableField,
    _: CurrentUserDep,
    services: ServicesDep,
) -> FieldStateResponse:
    state = await services.versions.get(recording_id, field)
    return FieldStateResponse.from_state(state)


@router.put("/fields/{field}", response_model=FieldStateResponse)
async def save_field(
    recording_id: UUID,
    field: EditableField,
    payload: FieldSaveRequest,
    user: CurrentUserDep,
    services: ServicesDep,
) -> FieldStateResponse:
    state = await services.versions.save(
        recording_id, field, payload.value, editor=user.email
    )
    return FieldStateResponse.from_state(state)


@router.post("/fields/{field}/undo", response_model=FieldStateResponse)
async def undo_field(
    recording_id: UUID,
    field: EditableField,
    user: CurrentUserDep,
    services: ServicesDep,
) -> FieldStateResponse:
    state = await services.versions.undo(recording_id, field, editor=user.email)
    return FieldStateResponse.from_state(state)


@router.post("/fields/{field}/improve", response_model=ImproveResponse)
async def improve_field(
    recording_id: UUID,
    field: EditableField,
    payload: ImproveRequest,
    _: CurrentUserDep,
    services: ServicesDep,
) -> ImproveResponse:
    """Return an AI candidate; the field is only changed by a later save."""

    candidate = await services.versions.ai_improve(
        recording_id, field, payload.instruction, model_id=payload.model_id
    )
    return ImproveResponse.from_candidate(candidate)


@router.post("/transcript/revert", response_model=FieldStateResponse)
async def revert_transcript(
    recording_id: UUID,
    user: CurrentUserDep,
    services: ServicesDep,
) -> FieldStateResponse:
    state = await services.versions.revert_to_original(recording_id, editor=user.email)
    return FieldStateResponse.from_state(state)


@router.patch("/context", response_model=ContextResponse)
async def revise_context(
    recording_id: UUID,
    payload: ContextRevisionRequest,
    user: CurrentUserDep,
    services: ServicesDep,
) -> ContextResponse:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No context fields supplied.",
        )
    context = await services.versions.revise_context(
        recording_id, changes, editor=user.email
    )
    return ContextResponse.model_validate(context)
