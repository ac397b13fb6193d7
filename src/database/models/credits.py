"""Credit ledger models: balances, reservations, receipts and the audit log."""

import uuid
from datetime import date, datetime, timezone
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    UUID,
)
from sqlalchemy.orm import Mapped, mapped_column, validates

from .base import Base


class TransactionKind(str, Enum):
    FREE_GRANT = "free_grant"
    BONUS_GRANT = "bonus_grant"
    PURCHASE = "purchase"
    RESERVATION = "reservation"
    COMMIT = "commit"
    RELEASE = "release"
    REFUND = "refund"


class ReservationState(str, Enum):
    HELD = "held"
    COMMITTED = "committed"
    RELEASED = "released"


class CreditBalance(Base):
    __tablename__ = "credit_balances"
    __table_args__ = (
        CheckConstraint("free_used_today >= 0", name="ck_balance_free_used"),
        CheckConstraint("bonus_credits >= 0", name="ck_balance_bonus"),
        CheckConstraint("paid_credits >= 0", name="ck_balance_paid"),
    )

    identity_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    free_used_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    free_reset_date: Mapped[date] = mapped_column(Date, nullable=False)
    bonus_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    paid_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Compare-and-swap token; every ledger write bumps it
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"
    __table_args__ = (
        Index("ix_credit_transactions_identity_created", "identity_key", "created_at"),
        Index("ix_credit_transactions_kind_created", "kind", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID, primary_key=True, default=uuid.uuid4)
    identity_key: Mapped[str] = mapped_column(String(128), nullable=False)
    kind: Mapped[TransactionKind] = mapped_column(String(32), nullable=False)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    @validates("kind")
    def validate_kind(self, key: str, value: str) -> str:
        # Raises ValueError for anything outside the closed set
        return TransactionKind(value).value


class CreditReservation(Base):
    """A provisional deduction, remembered per pool so it can be refunded."""

    __tablename__ = "credit_reservations"
    __table_args__ = (
        Index("ix_credit_reservations_state_created", "state", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    identity_key: Mapped[str] = mapped_column(String(128), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    bonus_drawn: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    free_drawn: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    paid_drawn: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Free-credit day the free draw was taken from
    free_date: Mapped[date] = mapped_column(Date, nullable=False)
    state: Mapped[ReservationState] = mapped_column(
        String(16), nullable=False, default=ReservationState.HELD
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    settled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class CreditReceipt(Base):
    """Once-only marker for externally referenced grants (purchases, awards)."""

    __tablename__ = "credit_receipts"

    reference: Mapped[str] = mapped_column(String(255), primary_key=True)
    identity_key: Mapped[str] = mapped_column(String(128), nullable=False)
    kind: Mapped[TransactionKind] = mapped_column(String(32), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
