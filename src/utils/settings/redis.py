"""Redis settings configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    REDIS_URL: str = "redis://localhost:6379/0"
    # Counter operations are single round trips; fail fast rather than queue
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 0.5


__all__ = ["RedisSettings"]
