"""Link Shortener Service Layer - Core Business Logic

This module composes the core components (code generator, store, analytics
recorder, change notifier) into the operations the HTTP layer calls, with
logging and Prometheus metrics around each of them.

Architecture Overview
=====================
::
    ┌──────────────────────────────────────────────────────────────┐
    │                       LinkService                            │
    │  ┌────────────────┐ ┌────────────────┐ ┌──────────────────┐  │
    │  │ CodeGenerator  │ │AnalyticsRecorder│ │ ChangeNotifier   │  │
    │  │ • hash + b64   │ │ • CAS retry    │ │ • pub/sub / poll │  │
    │  └────────────────┘ └───────┬────────┘ └────────┬─────────┘  │
    │                             ▼                   ▼            │
    │                    ┌──────────────────────────────────┐      │
    │                    │            LinkStore             │      │
    │                    │ WATCH / MULTI / EXEC on Redis    │      │
    │                    └──────────────────────────────────┘      │
    └──────────────────────────────────────────────────────────────┘

Request Flow Diagrams
=====================

Link Creation Flow
------------------
::
    ┌─────────────┐
    │ POST /api/  │
    │ links       │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Generate    │◄──────────────┐
    │ short code  │               │ ConflictError
    └──────┬──────┘               │ (attempts left)
           ▼                      │
    ┌─────────────┐               │
    │ store.create│───────────────┘
    └──────┬──────┘
           ▼
       LinkRecord

Redirect Flow
-------------
::
    ┌─────────────┐     ┌─────────────┐     ┌─────────────┐
    │ GET /{code} │────►│ store.get   │────►│ record_click│──► long_url
    └─────────────┘     └─────────────┘     └─────────────┘
                          missing ──► NotFoundError

Usage Examples
==============

```python
@router.post("/api/links")
async def create_link(payload: LinkCreate, service: LinkService = Depends(get_link_service)):
    record = await service.create_link(payload.url, payload.owner_id)
    return LinkResponse.from_record(record, service.settings.BASE_URL)
```
"""

import logging
import time
from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge, Histogram

from linkshortener.analytics import AnalyticsRecorder
from linkshortener.codegen import generate_short_code
from linkshortener.config import Settings
from linkshortener.enums import RequestStatus
from linkshortener.exceptions import (
    ConflictError,
    InvalidInputError,
    LinkShortenerError,
    NoOpError,
    NotFoundError,
)
from linkshortener.notifier import ChangeNotifier, LinkWatch
from linkshortener.schemas import ClickEvent, ClickMetadata, LinkRecord
from linkshortener.store import LinkStore

if TYPE_CHECKING:
    from linkshortener.dependencies import RequestContext

__all__ = ["LinkService"]


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

LINK_CREATION_REQUESTS_TOTAL = Counter(
    "link_shortener_creation_requests_total",
    "Total link creation requests",
    ["status"],
)
LINK_CREATION_DURATION = Histogram(
    "link_shortener_creation_duration_seconds",
    "Time taken to create short links",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)
SHORT_CODE_COLLISIONS_TOTAL = Counter(
    "link_shortener_short_code_collisions_total",
    "Generated short codes that already existed",
)
REDIRECT_REQUESTS_TOTAL = Counter(
    "link_shortener_redirect_requests_total",
    "Total redirect requests",
    ["status"],
)
REDIRECT_DURATION = Histogram(
    "link_shortener_redirect_duration_seconds",
    "Time taken to resolve a redirect including click recording",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)
UPDATE_REQUESTS_TOTAL = Counter(
    "link_shortener_update_requests_total",
    "Total link update requests",
    ["status"],
)
ACTIVE_WATCHES = Gauge(
    "link_shortener_active_watches",
    "Live-view subscriptions currently open",
)


def _status_for(exc: Exception) -> RequestStatus:
    if isinstance(exc, InvalidInputError):
        return RequestStatus.VALIDATION_ERROR
    if isinstance(exc, NotFoundError):
        return RequestStatus.NOT_FOUND
    if isinstance(exc, ConflictError):
        return RequestStatus.CONFLICT
    if isinstance(exc, NoOpError):
        return RequestStatus.NO_OP
    return RequestStatus.ERROR


# ============================================================================
# CORE SERVICE CLASS
# ============================================================================


class LinkService:
    """Operations exposed to the routing layer.

    Example:
        >>> service = LinkService.from_context(ctx)
        >>> record = await service.create_link("https://example.com")
        >>> url = await service.resolve_redirect(record.short_code, ClickMetadata())
    """

    def __init__(
        self,
        store: LinkStore,
        recorder: AnalyticsRecorder,
        notifier: ChangeNotifier,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter,
    ):
        self._store = store
        self._recorder = recorder
        self._notifier = notifier
        self._settings = settings
        self._logger = logger

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "LinkService":
        """Build the service from a RequestContext, sharing the manager's components."""
        manager = ctx.service_manager
        return cls(manager.store, manager.recorder, manager.notifier, ctx.settings, ctx.logger)

    @property
    def settings(self) -> Settings:
        return self._settings

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def create_link(self, long_url: str, owner_id: str | None = None) -> LinkRecord:
        """Create a link under a freshly generated code.

        A generated code that already exists is regenerated, up to
        CREATE_MAX_ATTEMPTS times; the generator itself never checks the store.

        Raises:
            InvalidInputError: long_url is not a valid absolute URL.
            ConflictError: every generated code collided.
        """
        start_time = time.perf_counter()
        self._logger.info(f"Creating short link for: {long_url}")

        try:
            record = await self._create_with_retry(long_url, owner_id)
        except LinkShortenerError as exc:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=_status_for(exc)).inc()
            self._logger.warning(f"Link creation failed: {exc}")
            raise
        finally:
            LINK_CREATION_DURATION.observe(time.perf_counter() - start_time)

        LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Link created: {record.short_code} -> {record.long_url}")
        return record

    async def get_link(self, short_code: str) -> LinkRecord:
        record = await self._store.get(short_code)
        if record is None:
            raise NotFoundError(short_code)
        return record

    async def resolve_redirect(self, short_code: str, metadata: ClickMetadata | None = None) -> str:
        """Return the target URL of short_code after counting the click.

        Raises:
            NotFoundError: unknown short code.
            ConflictError: the click could not be committed within the retry budget.
        """
        start_time = time.perf_counter()
        try:
            record = await self.get_link(short_code)
            event = await self._recorder.record_click(short_code, metadata)
        except LinkShortenerError as exc:
            REDIRECT_REQUESTS_TOTAL.labels(status=_status_for(exc)).inc()
            self._logger.warning(f"Redirect failed for {short_code}: {exc}")
            raise
        finally:
            REDIRECT_DURATION.observe(time.perf_counter() - start_time)

        REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.debug(f"Click #{event.sequence_number} recorded for {short_code}")
        return record.long_url

    async def list_links(self, owner_id: str | None = None) -> list[LinkRecord]:
        if owner_id is None:
            return await self._store.list_all()
        return await self._store.list_by_owner(owner_id)

    async def update_link(self, short_code: str, new_long_url: str) -> LinkRecord:
        try:
            record = await self._store.update_long_url(short_code, new_long_url)
        except LinkShortenerError as exc:
            UPDATE_REQUESTS_TOTAL.labels(status=_status_for(exc)).inc()
            self._logger.warning(f"Update of {short_code} rejected: {exc}")
            raise

        UPDATE_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Link {short_code} now points to {new_long_url}")
        return record

    async def list_clicks(self, short_code: str) -> list[ClickEvent]:
        return await self._store.list_click_events(short_code)

    async def watch_link(self, short_code: str) -> LinkWatch:
        """Open a live view of an existing link.

        Raises:
            NotFoundError: unknown short code.
            WatchClosedError: the subscription could not be established.
        """
        await self.get_link(short_code)
        watch = await self._notifier.watch(short_code)
        ACTIVE_WATCHES.set(self._notifier.active_watches)
        return watch

    def watch_released(self) -> None:
        ACTIVE_WATCHES.set(self._notifier.active_watches)

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    async def _create_with_retry(self, long_url: str, owner_id: str | None) -> LinkRecord:
        attempts = self._settings.CREATE_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            short_code = generate_short_code(long_url)
            try:
                return await self._store.create(long_url, short_code, owner_id)
            except ConflictError:
                SHORT_CODE_COLLISIONS_TOTAL.inc()
                self._logger.warning(f"Short code collision on {short_code} (attempt {attempt}/{attempts})")
                if attempt == attempts:
                    raise

        raise AssertionError("unreachable")
