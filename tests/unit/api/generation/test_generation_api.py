"""Tests for the generation endpoints."""

from uuid import uuid4

import pytest
from httpx import AsyncClient

from src.api.core.constants import SESSION_COOKIE_NAME, SESSION_TOKEN_HEADER
from src.api.core.exceptions.errors import ProviderPermanentError
from src.api.core.messages import MessageCode

from tests.utils.assertions import (
    assert_error_response,
    assert_success_response,
    assert_validation_error,
)


def generation_body(count: int = 1, request_id: str | None = None) -> dict:
    return {
        "request_id": request_id or f"req-{uuid4().hex}",
        "prompt": "bride and groom on a cliff at sunset, film grain",
        "count": count,
    }


@pytest.mark.asyncio
async def test_generation_succeeds_for_account(
    authorized_client: AsyncClient, fake_provider
):
    body = generation_body(count=2)

    response = await authorized_client.post("/v1/generation", json=body)

    data = assert_success_response(
        response,
        expected_message_code=MessageCode.GENERATION_COMPLETED,
        data_assertions={
            "request_id": body["request_id"],
            "status": "committed",
            "credits_charged": 2,
            "replayed": False,
        },
    )
    assert len(data["outputs"]) == 2
    assert response.headers["X-RateLimit-Remaining-Hourly"] == "4"
    assert response.headers["X-RateLimit-Remaining-Daily"] == "14"
    assert fake_provider.calls == [(body["prompt"], 2)]


@pytest.mark.asyncio
async def test_anonymous_caller_gets_session_token(public_client: AsyncClient):
    response = await public_client.post("/v1/generation", json=generation_body())

    assert_success_response(response, MessageCode.GENERATION_COMPLETED)
    assert response.headers[SESSION_TOKEN_HEADER]


@pytest.mark.asyncio
async def test_session_token_caller_is_not_reminted(public_client: AsyncClient):
    headers = {SESSION_TOKEN_HEADER: "tok-existing-session"}

    response = await public_client.post(
        "/v1/generation", json=generation_body(), headers=headers
    )

    assert_success_response(response, MessageCode.GENERATION_COMPLETED)
    assert SESSION_TOKEN_HEADER not in response.headers


@pytest.mark.asyncio
async def test_retry_with_same_request_id_is_replayed(
    authorized_client: AsyncClient, fake_provider
):
    body = generation_body()

    first = await authorized_client.post("/v1/generation", json=body)
    second = await authorized_client.post("/v1/generation", json=body)

    first_data = assert_success_response(first, MessageCode.GENERATION_COMPLETED)
    second_data = assert_success_response(second, MessageCode.GENERATION_COMPLETED)
    assert second_data["replayed"] is True
    assert second_data["outputs"] == first_data["outputs"]
    assert len(fake_provider.calls) == 1


@pytest.mark.asyncio
async def test_request_id_of_another_identity_conflicts(
    authorized_client: AsyncClient, public_client: AsyncClient
):
    body = generation_body()
    await authorized_client.post("/v1/generation", json=body)

    response = await public_client.post(
        "/v1/generation",
        json=body,
        headers={SESSION_TOKEN_HEADER: "tok-someone-else"},
    )

    assert_error_response(response, MessageCode.REQUEST_ID_CONFLICT, 409)


@pytest.mark.asyncio
async def test_anonymous_hourly_limit_returns_retry_after(public_client: AsyncClient):
    headers = {SESSION_TOKEN_HEADER: "tok-rate-limited"}
    for _ in range(3):
        ok = await public_client.post(
            "/v1/generation", json=generation_body(), headers=headers
        )
        assert ok.status_code == 200

    response = await public_client.post(
        "/v1/generation", json=generation_body(), headers=headers
    )

    body = assert_error_response(response, MessageCode.RATE_LIMIT_EXCEEDED, 429)
    assert int(response.headers["Retry-After"]) >= 1
    assert response.headers["X-RateLimit-Remaining-Hourly"] == "0"
    assert body["details"]["retry_after"] == int(response.headers["Retry-After"])


@pytest.mark.asyncio
async def test_rotating_session_tokens_do_not_reset_the_limit(public_client: AsyncClient):
    for i in range(3):
        ok = await public_client.post(
            "/v1/generation",
            json=generation_body(),
            headers={SESSION_TOKEN_HEADER: f"tok-rotated-{i}"},
        )
        assert ok.status_code == 200

    response = await public_client.post(
        "/v1/generation",
        json=generation_body(),
        headers={SESSION_TOKEN_HEADER: "tok-rotated-fresh"},
    )

    assert_error_response(response, MessageCode.RATE_LIMIT_EXCEEDED, 429)


@pytest.mark.asyncio
async def test_rate_limited_first_contact_still_gets_session_token(
    public_client: AsyncClient,
):
    for _ in range(3):
        ok = await public_client.post("/v1/generation", json=generation_body())
        assert ok.status_code == 200

    response = await public_client.post("/v1/generation", json=generation_body())

    assert_error_response(response, MessageCode.RATE_LIMIT_EXCEEDED, 429)
    assert response.headers[SESSION_TOKEN_HEADER]
    assert "Retry-After" in response.headers


@pytest.mark.asyncio
async def test_failed_first_contact_still_gets_session_token(
    public_client: AsyncClient, fake_provider
):
    fake_provider.will_raise(ProviderPermanentError("content_policy"))

    response = await public_client.post("/v1/generation", json=generation_body())

    assert_error_response(response, MessageCode.GENERATION_FAILED, 422)
    token = response.headers[SESSION_TOKEN_HEADER]
    assert f"{SESSION_COOKIE_NAME}={token}" in response.headers["set-cookie"]

@pytest.mark.asyncio
async def test_insufficient_credits_is_payment_required(
    authorized_client: AsyncClient, fake_provider
):
    response = await authorized_client.post(
        "/v1/generation", json=generation_body(count=4)
    )

    body = assert_error_response(response, MessageCode.INSUFFICIENT_CREDITS, 402)
    assert body["details"] == {"requested": 4, "available": 3}
    assert fake_provider.calls == []


@pytest.mark.asyncio
async def test_permanent_provider_failure_refunds(
    authorized_client: AsyncClient, fake_provider
):
    fake_provider.will_raise(ProviderPermanentError("content_policy"))

    failed = await authorized_client.post("/v1/generation", json=generation_body())
    balance = await authorized_client.get("/v1/credits/balance")

    assert_error_response(failed, MessageCode.GENERATION_FAILED, 422)
    assert balance.json()["data"]["total_available"] == 3


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"prompt": "no id"},
        {"request_id": "has spaces", "prompt": "x"},
        {"request_id": "r-1", "prompt": ""},
        {"request_id": "r-1", "prompt": "x", "count": 0},
        {"request_id": "r-1", "prompt": "x", "count": 5},
    ],
)
async def test_invalid_generation_body(authorized_client: AsyncClient, body):
    response = await authorized_client.post("/v1/generation", json=body)

    assert_validation_error(response)


@pytest.mark.asyncio
async def test_limits_do_not_consume_allowance(authorized_client: AsyncClient):
    await authorized_client.post("/v1/generation", json=generation_body())

    first = await authorized_client.get("/v1/generation/limits")
    second = await authorized_client.get("/v1/generation/limits")

    data = assert_success_response(
        first,
        data_assertions={
            "tier": "registered",
            "limit_hourly": 5,
            "limit_daily": 15,
            "remaining_hourly": 4,
            "remaining_daily": 14,
        },
    )
    assert second.json()["data"] == data


@pytest.mark.asyncio
async def test_lookup_own_request(authorized_client: AsyncClient):
    body = generation_body()
    await authorized_client.post("/v1/generation", json=body)

    response = await authorized_client.get(f"/v1/generation/{body['request_id']}")

    data = assert_success_response(
        response,
        data_assertions={
            "id": body["request_id"],
            "status": "committed",
            "credits_reserved": 1,
            "requested_count": 1,
        },
    )
    assert len(data["result"]) == 1


@pytest.mark.asyncio
async def test_lookup_hides_other_identities(
    authorized_client: AsyncClient, public_client: AsyncClient
):
    body = generation_body()
    await authorized_client.post("/v1/generation", json=body)

    response = await public_client.get(
        f"/v1/generation/{body['request_id']}",
        headers={SESSION_TOKEN_HEADER: "tok-curious"},
    )

    assert_error_response(response, MessageCode.USAGE_REQUEST_NOT_FOUND, 404)
