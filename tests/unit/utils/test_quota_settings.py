"""Tests for quota configuration validation."""

import pytest
from pydantic import ValidationError

from src.core.enums import CreditPool, Resource, Tier
from src.utils.settings.quota import DEFAULT_TIER_LIMITS, QuotaSettings, TierLimit


def test_defaults_cover_every_tier():
    settings = QuotaSettings()

    for tier in Tier:
        assert settings.limit_for(tier, Resource.GENERATION) is not None
    assert settings.limit_for(Tier.ANONYMOUS, Resource.GENERATION) == TierLimit(
        hourly=3, daily=9
    )


def test_pool_priority_must_be_a_permutation():
    with pytest.raises(ValidationError):
        QuotaSettings(POOL_PRIORITY=[CreditPool.BONUS, CreditPool.BONUS, CreditPool.PAID])

    with pytest.raises(ValidationError):
        QuotaSettings(POOL_PRIORITY=[CreditPool.FREE, CreditPool.PAID])


def test_missing_tier_is_rejected():
    limits = {k: v for k, v in DEFAULT_TIER_LIMITS.items() if k != Tier.PREMIUM}

    with pytest.raises(ValidationError):
        QuotaSettings(TIER_LIMITS=limits)


def test_negative_limits_are_rejected():
    with pytest.raises(ValidationError):
        TierLimit(hourly=-1, daily=5)


def test_tier_limits_load_from_environment_json(monkeypatch):
    monkeypatch.setenv(
        "TIER_LIMITS",
        '{"anonymous": {"generation": {"hourly": 1, "daily": 2}},'
        ' "registered": {"generation": {"hourly": 5, "daily": 15}},'
        ' "paid": {"generation": {"hourly": 50, "daily": 150}},'
        ' "premium": {"generation": {"hourly": 100, "daily": 300}}}',
    )

    settings = QuotaSettings()

    assert settings.limit_for(Tier.ANONYMOUS, Resource.GENERATION) == TierLimit(
        hourly=1, daily=2
    )
