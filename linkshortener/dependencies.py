"""Dependency injection with a singleton service manager.

This module provides a centralized way to inject the Redis-backed core
components into API endpoints, using a singleton pattern for shared resources
to minimize per-request overhead. The store, recorder and notifier are built
once at startup; only the RequestContext is created per request.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request

from linkshortener.analytics import AnalyticsRecorder
from linkshortener.config import Settings, get_settings
from linkshortener.link_service import LinkService
from linkshortener.notifier import ChangeNotifier
from linkshortener.store import LinkStore

__all__ = [
    "RequestContext",
    "ServiceManager",
    "get_link_service",
    "get_request_context",
    "get_service_manager",
]


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton service manager for shared resources.

    Owns the one Redis client of the process and the core components built
    on top of it.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self, client: redis.Redis | None = None, settings: Settings | None = None) -> None:
        """Initialize shared resources once at startup.

        Args:
            client: Pre-built Redis client (tests pass an in-process fake).
            settings: Settings override; defaults to get_settings().
        """
        if self._initialized:
            return
        self.settings = settings or get_settings()
        self.logger = self._setup_logger()
        self.cache = client if client is not None else await self._setup_redis()
        self.store = LinkStore(
            self.cache,
            multi_tenant=self.settings.MULTI_TENANT,
            scan_batch_size=self.settings.SCAN_BATCH_SIZE,
        )
        self.recorder = AnalyticsRecorder(
            self.store,
            max_attempts=self.settings.CLICK_MAX_ATTEMPTS,
            base_delay_seconds=self.settings.CLICK_RETRY_BASE_DELAY_SECONDS,
            max_delay_seconds=self.settings.CLICK_RETRY_MAX_DELAY_SECONDS,
        )
        self.notifier = ChangeNotifier(
            self.store,
            backend=self.settings.WATCH_BACKEND,
            poll_interval_seconds=self.settings.WATCH_POLL_INTERVAL_SECONDS,
        )
        self._initialized = True
        self.logger.info(
            f"{self.settings.APP_NAME} started (environment={self.settings.APP_ENV}, "
            f"watch_backend={self.settings.WATCH_BACKEND}, multi_tenant={self.settings.MULTI_TENANT})"
        )

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("linkshortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    async def _setup_redis(self) -> redis.Redis:
        """Setup Redis client once."""
        return redis.from_url(self.settings.REDIS_URL, encoding="utf-8", decode_responses=True)

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        if hasattr(self, "notifier"):
            await self.notifier.close_all()
        if hasattr(self, "cache"):
            await self.cache.aclose()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request context with tracking and shared resource access.

    Attributes:
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def cache(self) -> redis.Redis:
        return self.service_manager.cache

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger with request context attached to every record."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    client_ip = request.client.host if request.client else None
    return RequestContext(
        service_manager=manager,
        user_agent=request.headers.get("user-agent"),
        client_ip=client_ip,
    )


def get_link_service(ctx: RequestContext = Depends(get_request_context)) -> LinkService:
    return LinkService.from_context(ctx)
