"""Append-only record of AI-service call attempts."""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
)

from .base import Base, utcnow


class ApiLog(Base):
    """One AI call attempt, successful or not."""

    __tablename__ = "optimization_api_logs"

    id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    recording_id = Column(
        Uuid,
        ForeignKey("optimization_recordings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step = Column(String(64), nullable=False, index=True)
    attempt = Column(Integer, nullable=False, default=1)
    model_used = Column(String(255), nullable=True)
    prompt_sent = Column(Text, nullable=True)
    response = Column(Text, nullable=True)
    success = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    tokens_used = Column(Integer, nullable=True)
    latency_ms = Column(Integer, nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )


__all__ = ["ApiLog"]
