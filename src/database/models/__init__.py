"""Database models for the WedAI credit engine."""

from .base import Base
from .credits import (
    CreditBalance,
    CreditReceipt,
    CreditReservation,
    CreditTransaction,
    ReservationState,
    TransactionKind,
)
from .usage import UsageRequest, UsageStatus

# Export all models and enums
__all__ = [
    # Base
    "Base",
    # Enums
    "TransactionKind",
    "ReservationState",
    "UsageStatus",
    # Models
    "CreditBalance",
    "CreditTransaction",
    "CreditReservation",
    "CreditReceipt",
    "UsageRequest",
]
