"""Stage prompt library: browse for everyone, edit for admin and staff."""

from __future__ import annotations

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from optihub.controllers.dependencies import CurrentUserDep, ElevatedUserDep, ServicesDep
from optihub.models.prompt import OptimizationPrompt, PromptType
from optihub.models.recording import AdPlatform
from optihub.views import (
    PromptCreateRequest,
    PromptEditResponse,
    PromptResponse,
    PromptUpdateRequest,
)

router = APIRouter(prefix="/prompts", tags=["prompts"])


def _edit_response(prompt: OptimizationPrompt, changed: bool) -> PromptEditResponse:
    return PromptEditResponse(
        prompt=PromptResponse.model_validate(prompt),
        changed=changed,
        can_undo=prompt.previous_version is not None,
    )


@router.get("", response_model=list[PromptResponse])
async def list_prompts(
    _: CurrentUserDep,
    services: ServicesDep,
    platform: Optional[AdPlatform] = None,
    objective: Annotated[Optional[str], Query(max_length=64)] = None,
    prompt_type: Optional[PromptType] = None,
) -> list[PromptResponse]:
    prompts = await services.prompts.list_prompts(
        platform=platform, objective=objective, prompt_type=prompt_type
    )
    return [PromptResponse.model_validate(prompt) for prompt in prompts]


@router.get("/{prompt_id}", response_model=PromptResponse)
async def get_prompt(
    prompt_id: UUID,
    _: CurrentUserDep,
    services: ServicesDep,
) -> PromptResponse:
    return PromptResponse.model_validate(await services.prompts.get(prompt_id))


@router.post("", response_model=PromptResponse, status_code=status.HTTP_201_CREATED)
async def create_prompt(
    payload: PromptCreateRequest,
    user: ElevatedUserDep,
    services: ServicesDep,
) -> PromptResponse:
    prompt = await services.prompts.create(
        platform=payload.platform,
        objective=payload.objective,
        prompt_type=payload.prompt_type,
        prompt_text=payload.prompt_text,
        variables=payload.variables,
        is_default=payload.is_default,
        editor=user.email,
    )
    return PromptResponse.model_validate(prompt)


@router.put("/{prompt_id}", response_model=PromptEditResponse)
async def update_prompt(
    prompt_id: UUID,
    payload: PromptUpdateRequest,
    user: ElevatedUserDep,
    services: ServicesDep,
) -> PromptEditResponse:
    prompt, changed = await services.prompts.update(
        prompt_id, payload.prompt_text, editor=user.email
    )
    return _edit_response(prompt, changed)


@router.post("/{prompt_id}/undo", response_model=PromptEditResponse)
async def undo_prompt(
    prompt_id: UUID,
    user: ElevatedUserDep,
    services: ServicesDep,
) -> PromptEditResponse:
    prompt, changed = await services.prompts.undo(prompt_id, editor=user.email)
    return _edit_response(prompt, changed)
