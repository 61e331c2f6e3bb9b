"""Shared pytest fixtures: in-process Redis, core components and the ASGI client."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
import redis.asyncio as redis
from fakeredis import FakeServer
from fakeredis import aioredis as fake_aioredis
from httpx import ASGITransport, AsyncClient

from linkshortener.analytics import AnalyticsRecorder
from linkshortener.config import Settings
from linkshortener.dependencies import _service_manager
from linkshortener.enums import WatchBackend
from linkshortener.main import app
from linkshortener.notifier import ChangeNotifier
from linkshortener.store import LinkStore


@pytest.fixture
def settings() -> Settings:
    return Settings(
        APP_ENV="test",
        BASE_URL="http://test",
        MULTI_TENANT=True,
        CLICK_MAX_ATTEMPTS=50,
        CLICK_RETRY_BASE_DELAY_SECONDS=0.001,
        CLICK_RETRY_MAX_DELAY_SECONDS=0.02,
        WATCH_BACKEND=WatchBackend.PUBSUB,
        WATCH_POLL_INTERVAL_SECONDS=0.05,
    )


@pytest_asyncio.fixture(scope="function")
async def redis_client() -> AsyncGenerator[redis.Redis, None]:
    client = fake_aioredis.FakeRedis(server=FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def store(redis_client: redis.Redis) -> LinkStore:
    return LinkStore(redis_client, multi_tenant=True)


@pytest.fixture
def public_store(redis_client: redis.Redis) -> LinkStore:
    return LinkStore(redis_client)


@pytest.fixture
def recorder(store: LinkStore, settings: Settings) -> AnalyticsRecorder:
    return AnalyticsRecorder(
        store,
        max_attempts=settings.CLICK_MAX_ATTEMPTS,
        base_delay_seconds=settings.CLICK_RETRY_BASE_DELAY_SECONDS,
        max_delay_seconds=settings.CLICK_RETRY_MAX_DELAY_SECONDS,
    )


@pytest_asyncio.fixture(scope="function")
async def notifier(store: LinkStore, settings: Settings) -> AsyncGenerator[ChangeNotifier, None]:
    change_notifier = ChangeNotifier(store, poll_interval_seconds=settings.WATCH_POLL_INTERVAL_SECONDS)
    yield change_notifier
    await change_notifier.close_all()


@pytest_asyncio.fixture(scope="function")
async def client(redis_client: redis.Redis, settings: Settings) -> AsyncGenerator[AsyncClient, None]:
    await _service_manager.initialize(client=redis_client, settings=settings)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await _service_manager.cleanup()
