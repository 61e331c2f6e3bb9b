"""Redis-backed storage for link records and click events.

LinkStore exclusively owns all persisted state. Every multi-key write runs in
a single MULTI/EXEC transaction guarded by WATCH on the link key, so a
concurrent change between read and commit aborts the whole write
(check-and-set). Aborted writes surface as ConflictError; retry policy belongs
to the caller.

Key Layout
==========
::
    shortlinks:{code}            STRING  JSON LinkRecord
    analytics:{code}:{seq}       STRING  JSON ClickEvent (seq = resulting click_count)
    owners:{owner_id}            SET     short codes (multi-tenant only)
    changes:shortlinks:{code}    PUBSUB  one message per committed mutation

Flow Diagram — increment_click()
================================
::
    ┌─────────────┐
    │ WATCH link  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ GET link    │──── missing ───► NotFoundError
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ new = n + 1 │
    └──────┬──────┘
           ▼
    ┌─────────────────────────┐
    │ MULTI                   │
    │  SET analytics:{c}:{new}│
    │  SET shortlinks:{c}     │
    │  PUBLISH changes:...    │
    │ EXEC                    │──── WatchError ───► ConflictError
    └──────┬──────────────────┘
           ▼
       ClickEvent

How to Use
===========
**Step 1 — Build the store**::
    client = redis.from_url(url, encoding="utf-8", decode_responses=True)
    store = LinkStore(client, multi_tenant=True)

**Step 2 — Create and read**::
    record = await store.create("https://example.com", code, owner_id="alice")
    record = await store.get(code)

**Step 3 — Count a click (single attempt)**::
    event = await store.increment_click(code, ClickMetadata(user_agent="curl"))

Key Behaviours
===============
- The client must be created with decode_responses=True.
- Publishing inside the transaction keeps notifications in commit order.
- listing is a SCAN + MGET; records missing between the two reads are skipped.
- No operation here retries except update_long_url, which re-reads on a lost
  race with a click so the click count it preserves is current.
"""

import json
import logging
from collections.abc import Iterable

import redis.asyncio as redis
from redis.exceptions import WatchError

from linkshortener.codegen import validate_long_url
from linkshortener.exceptions import ConflictError, InvalidInputError, NoOpError, NotFoundError
from linkshortener.schemas import ClickEvent, ClickMetadata, LinkRecord, utc_now

__all__ = ["LinkStore"]

logger = logging.getLogger(__name__)

LINK_PREFIX = "shortlinks"
CLICK_PREFIX = "analytics"
OWNER_PREFIX = "owners"
CHANGE_PREFIX = "changes"


def _key(*parts: object) -> str:
    return ":".join(str(part) for part in parts)


def _chunks(items: list[str], size: int) -> Iterable[list[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class LinkStore:
    """Link and click-event persistence with check-and-set mutation."""

    def __init__(
        self,
        client: redis.Redis,
        *,
        multi_tenant: bool = False,
        scan_batch_size: int = 100,
        max_update_attempts: int = 3,
    ):
        assert scan_batch_size > 0, f"scan_batch_size must be positive, got {scan_batch_size!r}"
        assert max_update_attempts > 0, f"max_update_attempts must be positive, got {max_update_attempts!r}"
        self._redis = client
        self._multi_tenant = multi_tenant
        self._scan_batch_size = scan_batch_size
        self._max_update_attempts = max_update_attempts

    @property
    def client(self) -> redis.Redis:
        return self._redis

    @property
    def multi_tenant(self) -> bool:
        return self._multi_tenant

    # ========================================================================
    # KEY SCHEMA
    # ========================================================================

    @staticmethod
    def link_key(short_code: str) -> str:
        return _key(LINK_PREFIX, short_code)

    @staticmethod
    def click_key(short_code: str, sequence_number: int) -> str:
        return _key(CLICK_PREFIX, short_code, sequence_number)

    @staticmethod
    def owner_key(owner_id: str) -> str:
        return _key(OWNER_PREFIX, owner_id)

    @staticmethod
    def change_channel(short_code: str) -> str:
        return _key(CHANGE_PREFIX, LINK_PREFIX, short_code)

    # ========================================================================
    # WRITES
    # ========================================================================

    async def create(self, long_url: str, short_code: str, owner_id: str | None = None) -> LinkRecord:
        """Persist a new link with click_count 0.

        The owner index entry, when tenancy is enabled, is written in the same
        transaction as the record.

        Raises:
            ConflictError: short_code already exists (or was created concurrently).
            InvalidInputError: invalid URL, or owner_id given while tenancy is disabled.
        """
        validate_long_url(long_url)
        if owner_id is not None and not self._multi_tenant:
            raise InvalidInputError("Owner index is disabled", value=owner_id)

        key = self.link_key(short_code)
        record = LinkRecord(
            short_code=short_code,
            long_url=long_url,
            created_at=utc_now(),
            owner_id=owner_id,
        )

        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                if await pipe.exists(key):
                    raise ConflictError(short_code, "short code already exists")
                pipe.multi()
                pipe.set(key, record.model_dump_json())
                if owner_id is not None:
                    pipe.sadd(self.owner_key(owner_id), short_code)
                pipe.publish(self.change_channel(short_code), self._change_message("created", record))
                await pipe.execute()
            except WatchError as exc:
                raise ConflictError(short_code, "short code created concurrently") from exc

        logger.debug("Stored link %s -> %s", short_code, long_url)
        return record

    async def update_long_url(self, short_code: str, new_long_url: str) -> LinkRecord:
        """Point an existing link at a new URL, keeping created_at and click_count.

        Raises:
            NotFoundError: unknown short code.
            NoOpError: new_long_url equals the current URL.
            InvalidInputError: new_long_url is not a valid absolute URL.
            ConflictError: every attempt lost the race against a concurrent click.
        """
        key = self.link_key(short_code)

        for attempt in range(1, self._max_update_attempts + 1):
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        raise NotFoundError(short_code)
                    current = LinkRecord.model_validate_json(raw)
                    if current.long_url == new_long_url:
                        raise NoOpError(short_code)
                    validate_long_url(new_long_url)

                    updated = current.model_copy(update={"long_url": new_long_url})
                    pipe.multi()
                    pipe.set(key, updated.model_dump_json())
                    pipe.publish(self.change_channel(short_code), self._change_message("updated", updated))
                    await pipe.execute()
                    return updated
                except WatchError:
                    logger.info("Update of %s raced a concurrent write (attempt %d)", short_code, attempt)

        raise ConflictError(short_code, "link changed during update")

    async def increment_click(self, short_code: str, metadata: ClickMetadata | None = None) -> ClickEvent:
        """Append one ClickEvent and bump click_count in one guarded transaction.

        Single attempt; see AnalyticsRecorder for the retry loop.

        Raises:
            NotFoundError: the link does not exist at read time.
            ConflictError: the link changed between read and commit.
        """
        metadata = metadata or ClickMetadata()
        key = self.link_key(short_code)

        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if raw is None:
                    raise NotFoundError(short_code)
                current = LinkRecord.model_validate_json(raw)

                new_count = current.click_count + 1
                event = ClickEvent(
                    short_code=short_code,
                    sequence_number=new_count,
                    occurred_at=utc_now(),
                    **metadata.model_dump(),
                )
                updated = current.model_copy(
                    update={"click_count": new_count, "last_click_event_id": event.event_id}
                )

                pipe.multi()
                pipe.set(self.click_key(short_code, new_count), event.model_dump_json())
                pipe.set(key, updated.model_dump_json())
                pipe.publish(self.change_channel(short_code), self._change_message("clicked", updated))
                await pipe.execute()
            except WatchError as exc:
                raise ConflictError(short_code, "click count advanced concurrently") from exc

        return event

    # ========================================================================
    # READS
    # ========================================================================

    async def get(self, short_code: str) -> LinkRecord | None:
        raw = await self._redis.get(self.link_key(short_code))
        if raw is None:
            return None
        return LinkRecord.model_validate_json(raw)

    async def list_all(self) -> list[LinkRecord]:
        """Every stored link, unordered. Full prefix scan; meant for small admin views."""
        keys = [
            key
            async for key in self._redis.scan_iter(match=f"{LINK_PREFIX}:*", count=self._scan_batch_size)
        ]
        return await self._fetch_links(keys)

    async def list_by_owner(self, owner_id: str) -> list[LinkRecord]:
        """Links indexed under owner_id.

        Codes that are indexed but not yet readable (read skew) are skipped.
        """
        if not self._multi_tenant:
            raise InvalidInputError("Owner index is disabled", value=owner_id)

        codes = await self._redis.smembers(self.owner_key(owner_id))
        keys = [self.link_key(code) for code in sorted(codes)]
        return await self._fetch_links(keys)

    async def get_click_event(self, short_code: str, sequence_number: int) -> ClickEvent | None:
        raw = await self._redis.get(self.click_key(short_code, sequence_number))
        if raw is None:
            return None
        return ClickEvent.model_validate_json(raw)

    async def list_click_events(self, short_code: str) -> list[ClickEvent]:
        """Click events of a link ordered by sequence number."""
        record = await self.get(short_code)
        if record is None:
            raise NotFoundError(short_code)

        keys = [self.click_key(short_code, seq) for seq in range(1, record.click_count + 1)]
        events: list[ClickEvent] = []
        for chunk in _chunks(keys, self._scan_batch_size):
            for raw in await self._redis.mget(chunk):
                if raw is not None:
                    events.append(ClickEvent.model_validate_json(raw))
        return events

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _fetch_links(self, keys: list[str]) -> list[LinkRecord]:
        records: list[LinkRecord] = []
        for chunk in _chunks(keys, self._scan_batch_size):
            for raw in await self._redis.mget(chunk):
                if raw is None:
                    continue
                records.append(LinkRecord.model_validate_json(raw))
        return records

    @staticmethod
    def _change_message(kind: str, record: LinkRecord) -> str:
        return json.dumps({"kind": kind, "click_count": record.click_count})
