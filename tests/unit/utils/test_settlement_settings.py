"""Tests for settlement configuration validation."""

import pytest

from src.utils.settings.provider import ProviderSettings
from src.utils.settings.settlement import SettlementSettings


def test_default_grace_outlives_default_provider_timeout():
    SettlementSettings().validate_grace(ProviderSettings().PROVIDER_TIMEOUT_SECONDS)


@pytest.mark.parametrize("grace", [30, 60])
def test_grace_not_above_provider_timeout_is_rejected(grace):
    settings = SettlementSettings(RESERVATION_GRACE_SECONDS=grace)

    with pytest.raises(ValueError, match="RESERVATION_GRACE_SECONDS"):
        settings.validate_grace(60.0)


def test_grace_above_provider_timeout_is_accepted():
    SettlementSettings(RESERVATION_GRACE_SECONDS=61).validate_grace(60.0)
