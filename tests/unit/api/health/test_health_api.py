"""Tests for health endpoints."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_liveness(public_client: AsyncClient):
    response = await public_client.get("/health/liveness")

    assert response.status_code == 200
    assert response.json() == {"status": "alive", "service": "wedai-api"}


@pytest.mark.asyncio
async def test_health_reports_each_dependency(public_client: AsyncClient):
    response = await public_client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert set(body["services"]) == {"database", "redis", "rate_limit"}
    assert body["services"]["rate_limit"]["details"] == {"script_works": True}


@pytest.mark.asyncio
async def test_responses_carry_security_headers(public_client: AsyncClient):
    response = await public_client.get("/health/liveness")

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert "X-WedAI-Version" in response.headers
