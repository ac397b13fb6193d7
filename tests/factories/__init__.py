"""Test factories for WedAI API models."""

from .base import AsyncSQLAlchemyModelFactory
from .credits import (
    CreditBalanceFactory,
    CreditReservationFactory,
    CreditTransactionFactory,
)
from .usage import UsageRequestFactory

__all__ = [
    "AsyncSQLAlchemyModelFactory",
    "CreditBalanceFactory",
    "CreditReservationFactory",
    "CreditTransactionFactory",
    "UsageRequestFactory",
]
