"""Common FastAPI dependencies reused across controllers."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from optihub.database import SessionFactory, get_session
from optihub.models.user import User as UserModel
from optihub.pipeline.errors import PermissionDenied
from optihub.services.container import Services, build_services
from optihub.utils import AuthenticationError, decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
SessionDep = Annotated[AsyncSession, Depends(get_session)]


def get_services(request: Request) -> Services:
    """Return the service container stored on the application state."""

    services = getattr(request.app.state, "services", None)
    if services is None:
        services = build_services(SessionFactory)
        request.app.state.services = services
    return services


ServicesDep = Annotated[Services, Depends(get_services)]


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    session: SessionDep,
) -> UserModel:
    """Resolve and validate the user referenced by the bearer token."""

    try:
        payload = decode_access_token(token)
        user_id = UUID(payload.sub)
    except (AuthenticationError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from None

    result = await session.execute(select(UserModel).where(UserModel.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    return user


CurrentUserDep = Annotated[UserModel, Depends(get_current_user)]


async def get_elevated_user(user: CurrentUserDep) -> UserModel:
    if not user.is_elevated:
        raise PermissionDenied(user_id=str(user.id))
    return user


ElevatedUserDep = Annotated[UserModel, Depends(get_elevated_user)]


__all__ = [
    "CurrentUserDep",
    "ElevatedUserDep",
    "ServicesDep",
    "SessionDep",
    "get_current_user",
    "get_elevated_user",
    "get_services",
    "oauth2_scheme",
]
