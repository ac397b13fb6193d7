"""Client for the external image generation provider."""

from dataclasses import dataclass, field
from typing import Any, Protocol

import aiohttp

from src.api.core.exceptions.errors import (
    ProviderPermanentError,
    ProviderTransientError,
)
from src.utils.logger import get_logger
from src.utils.settings.provider import ProviderSettings

logger = get_logger(__name__)

# Provider statuses worth retrying; every other 4xx is final
TRANSIENT_STATUSES = frozenset({408, 409, 425, 429})


@dataclass
class GenerationResult:
    """Output references returned by the provider (URLs or data URIs)."""

    outputs: list[str]
    provider_request_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class GenerationProvider(Protocol):
    async def generate(self, prompt: str, count: int) -> GenerationResult: ...


class HTTPGenerationProvider:
    """Client for making generation requests to the provider's HTTP API."""

    def __init__(self, settings: ProviderSettings | None = None):
        settings = settings or ProviderSettings()
        self.url = settings.PROVIDER_URL.rstrip("/")
        self.timeout = settings.PROVIDER_TIMEOUT_SECONDS
        self.api_key = settings.PROVIDER_API_KEY.get_secret_value()

    async def generate(self, prompt: str, count: int) -> GenerationResult:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with aiohttp.ClientSession() as session:
            try:
                async with session.post(
                    f"{self.url}/v1/generate",
                    json={"prompt": prompt, "count": count},
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status >= 500 or response.status in TRANSIENT_STATUSES:
                        raise ProviderTransientError(f"provider status {response.status}")
                    if response.status >= 400:
                        raise ProviderPermanentError(f"provider status {response.status}")
                    data = await response.json()
            except aiohttp.ClientError as e:
                logger.error("Provider request failed", error=str(e))
                raise ProviderTransientError(f"provider unavailable: {e}") from e

        return self._parse_generation_result(data, count)

    def _parse_generation_result(
        self, data: dict[str, Any], count: int
    ) -> GenerationResult:
        if data.get("blocked"):
            raise ProviderPermanentError("content_blocked")

        outputs = [o for o in data.get("outputs", []) if isinstance(o, str) and o]
        if not outputs:
            raise ProviderTransientError("no_outputs")
        if len(outputs) < count:
            logger.warning(
                "Provider returned fewer outputs than requested",
                requested=count,
                returned=len(outputs),
            )

        return GenerationResult(
            outputs=outputs[:count],
            provider_request_id=data.get("id"),
            metadata={k: v for k, v in data.items() if k not in ("outputs", "id")},
        )


async def get_generation_provider() -> HTTPGenerationProvider:
    """Get generation provider client for dependency injection."""
    return HTTPGenerationProvider()
