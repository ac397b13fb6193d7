"""Tests for the HTTP generation provider client."""

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from src.api.core.exceptions.errors import (
    ProviderPermanentError,
    ProviderTransientError,
)
from src.modules.usage.provider import HTTPGenerationProvider
from src.utils.settings.provider import ProviderSettings


@pytest.fixture
def provider() -> HTTPGenerationProvider:
    return HTTPGenerationProvider(
        ProviderSettings(PROVIDER_URL="http://provider.test/", PROVIDER_API_KEY="k")
    )


def mock_response(status: int, body: dict | None = None) -> MagicMock:
    response = MagicMock(status=status)
    response.json = AsyncMock(return_value=body or {})
    context = MagicMock()
    context.__aenter__.return_value = response
    context.__aexit__.return_value = False
    return context


@pytest.mark.asyncio
async def test_successful_response_is_parsed(provider):
    body = {"id": "gen_1", "outputs": ["https://x/1.png", "https://x/2.png"], "model": "v2"}

    with patch.object(aiohttp.ClientSession, "post", return_value=mock_response(200, body)) as post:
        result = await provider.generate("prompt", 2)

    assert result.outputs == ["https://x/1.png", "https://x/2.png"]
    assert result.provider_request_id == "gen_1"
    assert result.metadata == {"model": "v2"}
    url = post.call_args.args[0]
    assert url == "http://provider.test/v1/generate"
    assert post.call_args.kwargs["headers"] == {"Authorization": "Bearer k"}
    assert post.call_args.kwargs["json"] == {"prompt": "prompt", "count": 2}


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [500, 502, 503, 429, 408])
async def test_retryable_statuses_are_transient(provider, status):
    with patch.object(aiohttp.ClientSession, "post", return_value=mock_response(status)):
        with pytest.raises(ProviderTransientError):
            await provider.generate("prompt", 1)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 422])
async def test_other_client_errors_are_permanent(provider, status):
    with patch.object(aiohttp.ClientSession, "post", return_value=mock_response(status)):
        with pytest.raises(ProviderPermanentError):
            await provider.generate("prompt", 1)


@pytest.mark.asyncio
async def test_connection_failure_is_transient(provider):
    with patch.object(
        aiohttp.ClientSession,
        "post",
        side_effect=aiohttp.ClientConnectionError("connection refused"),
    ):
        with pytest.raises(ProviderTransientError):
            await provider.generate("prompt", 1)


def test_blocked_content_is_permanent(provider):
    with pytest.raises(ProviderPermanentError) as exc_info:
        provider._parse_generation_result({"blocked": True, "outputs": []}, 1)

    assert exc_info.value.reason == "content_blocked"


def test_empty_outputs_are_transient(provider):
    with pytest.raises(ProviderTransientError):
        provider._parse_generation_result({"outputs": ["", None]}, 1)


def test_extra_outputs_are_truncated_and_short_results_kept(provider):
    many = provider._parse_generation_result({"outputs": ["a", "b", "c"]}, 2)
    few = provider._parse_generation_result({"outputs": ["a"]}, 3)

    assert many.outputs == ["a", "b"]
    assert few.outputs == ["a"]
