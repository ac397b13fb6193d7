"""Generation API schemas (combined models/requests)."""

from datetime import datetime

from pydantic import BaseModel, Field

from src.api.core.constants import MAX_PROMPT_LENGTH, MAX_REQUEST_ID_LENGTH
from src.api.core.messages import APIResponse
from src.utils.settings.provider import ProviderSettings


class GenerationRequest(BaseModel):
    # Client-generated idempotency key; reuse it when retrying
    request_id: str = Field(
        min_length=1, max_length=MAX_REQUEST_ID_LENGTH, pattern=r"^[A-Za-z0-9_.:-]+$"
    )
    prompt: str = Field(min_length=1, max_length=MAX_PROMPT_LENGTH)
    count: int = Field(
        default=1, ge=1, le=ProviderSettings().MAX_OUTPUTS_PER_REQUEST
    )


class GenerationResultModel(BaseModel):
    request_id: str
    status: str
    outputs: list[str]
    credits_charged: int
    replayed: bool = False


class RateLimitStatusModel(BaseModel):
    tier: str
    limit_hourly: int
    limit_daily: int
    remaining_hourly: int
    remaining_daily: int
    hourly_reset_at: datetime
    daily_reset_at: datetime


class UsageRequestModel(BaseModel):
    id: str
    status: str
    resource: str
    credits_reserved: int
    requested_count: int
    result: list[str] | None = None
    error_code: str | None = None
    created_at: datetime
    settled_at: datetime | None = None

    model_config = {"from_attributes": True}


GenerationResponse = APIResponse[GenerationResultModel]
RateLimitStatusResponse = APIResponse[RateLimitStatusModel]
UsageRequestResponse = APIResponse[UsageRequestModel]
