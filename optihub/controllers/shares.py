"""Share link management and the public shared-optimization view."""

from __future__ import annotations

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Header, Response, status

from optihub.controllers.dependencies import CurrentUserDep, ServicesDep
from optihub.views import (
    ShareCreateRequest,
    ShareCreateResponse,
    SharedOptimizationResponse,
)

router = APIRouter(tags=["shares"])


@router.post(
    "/recordings/{recording_id}/shares",
    response_model=ShareCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_share(
    recording_id: UUID,
    payload: ShareCreateRequest,
    user: CurrentUserDep,
    services: ServicesDep,
) -> ShareCreateResponse:
    created = await services.shares.create_share(
        recording_id,
        expires_in_days=payload.expires_in_days,
        password=payload.password,
        created_by=user.email,
    )
    return ShareCreateResponse(
        url=created.url, slug=created.slug, expires_at=created.expires_at
    )


@router.delete("/shares/{slug}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_share(
    slug: str,
    _: CurrentUserDep,
    services: ServicesDep,
) -> Response:
    await services.shares.revoke_share(slug)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/shared/{slug}", response_model=SharedOptimizationResponse)
async def view_shared(
    slug: str,
    services: ServicesDep,
    x_share_password: Annotated[Optional[str], Header()] = None,
) -> SharedOptimizationResponse:
    """Public endpoint; no bearer token required."""

    shared = await services.shares.resolve_share(slug, x_share_password)
    return SharedOptimizationResponse(
        recording_id=shared.recording_id,
        account_id=shared.account_id,
        recorded_at=shared.recorded_at,
        extract_text=shared.extract_text,
        summary=shared.summary,
        actions_taken=shared.actions_taken,
        metrics_mentioned=shared.metrics_mentioned,
        strategy=shared.strategy,
        timeline=shared.timeline,
        view_count=shared.view_count,
    )
