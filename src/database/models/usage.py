"""Usage request tracking models."""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class UsageStatus(str, Enum):
    RESERVED = "reserved"
    # SETTLED_OK
    COMMITTED = "committed"
    # SETTLED_FAILED
    RELEASED = "released"
    EXPIRED = "expired"


class UsageRequest(Base):
    __tablename__ = "usage_requests"
    __table_args__ = (
        Index("ix_usage_requests_status_created", "status", "created_at"),
        Index("ix_usage_requests_identity_created", "identity_key", "created_at"),
    )

    # Client-supplied idempotency key
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    identity_key: Mapped[str] = mapped_column(String(128), nullable=False)
    resource: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[UsageStatus] = mapped_column(
        String(16), nullable=False, default=UsageStatus.RESERVED
    )
    credits_reserved: Mapped[int] = mapped_column(Integer, nullable=False)
    requested_count: Mapped[int] = mapped_column(Integer, nullable=False)
    prompt_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    result: Mapped[list | None] = mapped_column(JSON, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    settled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
