"""ServiceManager start-up and per-request wiring."""

import logging

import pytest
import redis.asyncio as redis

from linkshortener.config import Settings
from linkshortener.dependencies import RequestContext, _service_manager
from linkshortener.link_service import LinkService


@pytest.mark.asyncio
async def test_initialize_logs_environment(
    redis_client: redis.Redis, settings: Settings, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.INFO, logger="linkshortener")
    await _service_manager.initialize(client=redis_client, settings=settings)
    try:
        assert "environment=test" in caplog.text
        assert "watch_backend=pubsub" in caplog.text
    finally:
        await _service_manager.cleanup()


@pytest.mark.asyncio
async def test_link_service_from_request_context(redis_client: redis.Redis, settings: Settings) -> None:
    await _service_manager.initialize(client=redis_client, settings=settings)
    try:
        ctx = RequestContext(service_manager=_service_manager, client_ip="10.0.0.1")
        service = LinkService.from_context(ctx)

        assert service.settings is settings
        record = await service.create_link("https://a.com")
        assert await _service_manager.store.get(record.short_code) == record
    finally:
        await _service_manager.cleanup()
