"""Health endpoint tests."""

from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis
from httpx import AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from linkshortener.enums import HealthStatus


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == HealthStatus.HEALTHY.value
    assert data["cache"] == HealthStatus.HEALTHY.value


@pytest.mark.asyncio
async def test_health_check_cache_down(
    client: AsyncClient, redis_client: redis.Redis, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(redis_client, "ping", AsyncMock(side_effect=RedisConnectionError("down")))

    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == HealthStatus.UNHEALTHY.value
