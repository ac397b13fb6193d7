"""Generation provider settings configuration."""

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    PROVIDER_URL: str = "http://localhost:8081"
    PROVIDER_API_KEY: SecretStr = SecretStr("")
    PROVIDER_TIMEOUT_SECONDS: float = 60.0
    MAX_OUTPUTS_PER_REQUEST: int = 4
