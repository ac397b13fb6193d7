"""Stripe settings configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import SecretStr


class StripeSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    STRIPE_WEBHOOK_SECRET: str = "whsec_test_webhook_secret"
    STRIPE_SECRET_KEY: SecretStr = SecretStr("sk_test_stripe_secret_key")
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Credit packages: price id -> credits, and amount_total (cents) -> credits
    STRIPE_PRICE_CREDITS: dict[str, int] = {}
    STRIPE_AMOUNT_CREDITS: dict[int, int] = {
        499: 10,
        999: 25,
        2499: 75,
        # launch discount prices
        250: 10,
        500: 25,
        1250: 75,
    }
