"""Settlement reconciler settings configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class SettlementSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    RECONCILER_ENABLED: bool = True
    RESERVATION_GRACE_SECONDS: int = 300
    RECONCILE_INTERVAL_SECONDS: int = 60
    RECONCILE_BATCH_SIZE: int = 100

    def validate_grace(self, provider_timeout_seconds: float) -> None:
        """Reservations must outlive the slowest provider call."""
        if self.RESERVATION_GRACE_SECONDS <= provider_timeout_seconds:
            raise ValueError(
                "RESERVATION_GRACE_SECONDS must be greater than PROVIDER_TIMEOUT_SECONDS"
            )
