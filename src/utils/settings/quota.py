"""Quota, pool priority and daily reset configuration."""

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.core.enums import CreditPool, Resource, Tier


class TierLimit(BaseModel):
    """Hourly and daily admission limits for one (tier, resource) pair."""

    hourly: int = Field(ge=0)
    daily: int = Field(ge=0)


DEFAULT_TIER_LIMITS: dict[Tier, dict[Resource, TierLimit]] = {
    Tier.ANONYMOUS: {Resource.GENERATION: TierLimit(hourly=3, daily=9)},
    Tier.REGISTERED: {Resource.GENERATION: TierLimit(hourly=5, daily=15)},
    Tier.PAID: {Resource.GENERATION: TierLimit(hourly=50, daily=150)},
    Tier.PREMIUM: {Resource.GENERATION: TierLimit(hourly=100, daily=300)},
}


class QuotaSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # JSON in the environment, e.g. {"anonymous": {"generation": {"hourly": 3, "daily": 9}}}
    TIER_LIMITS: dict[Tier, dict[Resource, TierLimit]] = DEFAULT_TIER_LIMITS

    FREE_DAILY_CREDITS: int = Field(default=3, ge=0)
    POOL_PRIORITY: list[CreditPool] = [
        CreditPool.BONUS,
        CreditPool.FREE,
        CreditPool.PAID,
    ]

    # Hour (UTC) at which daily windows and the free pool roll over
    DAILY_RESET_HOUR_UTC: int = Field(default=0, ge=0, le=23)

    # How long expired window counters are kept around for analytics
    RATE_WINDOW_RETENTION_SECONDS: int = Field(default=7 * 86400, ge=0)

    LEDGER_MAX_CAS_ATTEMPTS: int = Field(default=25, ge=1)

    @field_validator("POOL_PRIORITY")
    @classmethod
    def validate_pool_priority(cls, value: list[CreditPool]) -> list[CreditPool]:
        if sorted(value) != sorted(CreditPool):
            raise ValueError(
                "POOL_PRIORITY must list each of bonus, free and paid exactly once"
            )
        return value

    @model_validator(mode="after")
    def validate_tiers_present(self) -> "QuotaSettings":
        missing = set(Tier) - set(self.TIER_LIMITS)
        if missing:
            names = ", ".join(sorted(t.value for t in missing))
            raise ValueError(f"TIER_LIMITS is missing tiers: {names}")
        return self

    def limit_for(self, tier: Tier, resource: Resource) -> TierLimit | None:
        """Configured limit for a (tier, resource) pair, or None if unset."""
        return self.TIER_LIMITS.get(tier, {}).get(resource)
