"""Admin API schemas."""

from pydantic import BaseModel, Field

from src.api.core.messages import APIResponse, Paginated
from src.api.core.models.rate_limit import WindowSnapshot
from src.api.credits.schemas import CreditTransactionModel
from src.api.generation.schemas import UsageRequestModel


class AdminTransactionModel(CreditTransactionModel):
    identity_key: str


class AdminUsageRequestModel(UsageRequestModel):
    identity_key: str


class CreditStatsModel(BaseModel):
    paying_identities: int
    outstanding_paid_credits: int
    outstanding_bonus_credits: int
    credits_sold_30d: int
    credits_used_today: int
    credits_used_7d: int
    requests_by_status: dict[str, int]


class ReconciliationModel(BaseModel):
    identity_key: str
    stored_total: int
    replayed_total: int
    consistent: bool


class BonusGrantRequest(BaseModel):
    identity_key: str = Field(min_length=1, max_length=128)
    amount: int = Field(gt=0)
    # Once-only key for the award, e.g. a campaign or ticket id
    reference: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=255)


class BonusGrantModel(BaseModel):
    identity_key: str
    reference: str
    applied: bool


class SweepReportModel(BaseModel):
    expired: int
    repaired: int
    orphans_released: int
    conflicts: int


AdminTransactionsResponse = APIResponse[Paginated[AdminTransactionModel]]
AdminUsageRequestsResponse = APIResponse[Paginated[AdminUsageRequestModel]]
RateWindowsResponse = APIResponse[list[WindowSnapshot]]
CreditStatsResponse = APIResponse[CreditStatsModel]
ReconciliationResponse = APIResponse[ReconciliationModel]
BonusGrantResponse = APIResponse[BonusGrantModel]
SweepReportResponse = APIResponse[SweepReportModel]
