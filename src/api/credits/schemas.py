"""Credits API schemas (combined models/requests)."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from src.api.core.messages import APIResponse, Paginated


class CreditTransactionModel(BaseModel):
    id: UUID
    kind: str
    delta: int
    balance_after: int
    reference: str | None = None
    description: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class CreditsSummaryModel(BaseModel):
    identity_key: str
    total_available: int
    free_remaining: int
    free_daily_allowance: int
    used_today: int
    bonus_credits: int
    paid_credits: int
    total_purchased: int
    total_consumed: int
    next_free_reset: datetime


CreditsSummaryResponse = APIResponse[CreditsSummaryModel]
CreditTransactionsResponse = APIResponse[Paginated[CreditTransactionModel]]
