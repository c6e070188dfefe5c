"""Public share links for analysed recordings."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Uuid

from optihub.models.base import Base, utcnow


class ShareLink(Base):
    __tablename__ = "optimization_share_links"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    slug = Column(String(96), unique=True, nullable=False, index=True)
    recording_id = Column(
        Uuid,
        ForeignKey("optimization_recordings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    expires_at = Column(DateTime(timezone=True), nullable=True)
    password_hash = Column(String(256), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    view_count = Column(Integer, nullable=False, default=0)
    last_viewed_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


__all__ = ["ShareLink"]
