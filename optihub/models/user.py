"""SQLAlchemy model for application users."""

from __future__ import annotations

import uuid
from enum import Enum

from sqlalchemy import Column, DateTime
from sqlalchemy import Enum as SqlEnum
from sqlalchemy import String, Uuid

from optihub.models.base import Base, utcnow


class UserRole(str, Enum):
    """Enumeration of dashboard roles."""

    ADMIN = "admin"
    STAFF = "staff"
    CLIENT = "client"


ELEVATED_ROLES = frozenset({UserRole.ADMIN, UserRole.STAFF})


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(120), nullable=False, default="")
    password_hash = Column(String(256), nullable=False)
    role = Column(
        SqlEnum(UserRole, name="user_role"),
        nullable=False,
        default=UserRole.CLIENT,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES


__all__ = ["User", "UserRole", "ELEVATED_ROLES"]
