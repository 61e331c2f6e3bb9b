"""Live change notifications for a single link.

A LinkWatch subscribes to the mutations of one link key and yields the
link's latest state after each of them. Mutations that land between two
deliveries are coalesced into one event; the notifier promises "latest state,
in commit order", not one event per click.

State Diagram — LinkWatch
=========================
::
                 watch()
                    │
                    ▼
    ┌──────────────────────────────┐
    │            OPEN              │◄──────────┐
    │ wait ≤ poll interval for a   │           │
    │ change, re-check cancel flag │           │
    └──────┬──────────────┬────────┘           │
   change  │              │ aclose() /         │
           ▼              │ channel failure    │
    ┌─────────────┐       │                    │
    │ DELIVERING  │       │                    │
    │ re-read link│───────┼────── yield ───────┘
    │ + last click│       │
    └─────────────┘       ▼
                   ┌─────────────┐
                   │   CLOSED    │  pub/sub connection released
                   └─────────────┘

Backends
========
- ``pubsub``: the store publishes on ``changes:shortlinks:{code}`` inside the
  same transaction as each write, so messages arrive in commit order.
- ``poll``: re-reads the record every poll interval and emits when it differs
  from the last state seen. Bounded latency, no server support needed.

How to Use
===========
**Step 1 — Subscribe**::
    notifier = ChangeNotifier(store)
    async with await notifier.watch(code) as watch:
        async for change in watch:
            send(change.to_stream_payload())

**Step 2 — Cancel from the consumer**::
    await watch.aclose()

Key Behaviours
===============
- No event is emitted for the subscription itself.
- The wait loop wakes at least every poll interval to observe cancellation.
- A Redis failure ends iteration with WatchClosedError; resubscribe if desired.
"""

import asyncio
import logging

from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from linkshortener.enums import WatchBackend, WatchState
from linkshortener.exceptions import WatchClosedError
from linkshortener.schemas import ChangeEvent, LinkRecord
from linkshortener.store import LinkStore

__all__ = ["ChangeNotifier", "LinkWatch"]

logger = logging.getLogger(__name__)


class LinkWatch:
    """Cancellable async iterator of ChangeEvent for one short code."""

    def __init__(
        self,
        notifier: "ChangeNotifier",
        store: LinkStore,
        short_code: str,
        backend: WatchBackend,
        poll_interval_seconds: float,
    ):
        self.short_code = short_code
        self.state = WatchState.OPEN
        self._notifier = notifier
        self._store = store
        self._backend = backend
        self._poll_interval = poll_interval_seconds
        self._closed = False
        self._pubsub: PubSub | None = None
        self._last_seen: LinkRecord | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    async def _open(self) -> None:
        try:
            if self._backend is WatchBackend.PUBSUB:
                self._pubsub = self._store.client.pubsub(ignore_subscribe_messages=True)
                await self._pubsub.subscribe(self._store.change_channel(self.short_code))
            else:
                self._last_seen = await self._store.get(self.short_code)
        except RedisError as exc:
            await self.aclose()
            raise WatchClosedError(self.short_code, str(exc)) from exc

    def __aiter__(self) -> "LinkWatch":
        return self

    async def __anext__(self) -> ChangeEvent:
        while not self._closed:
            try:
                changed = await self._wait_for_change()
                if not changed or self._closed:
                    continue

                self.state = WatchState.DELIVERING
                change = await self._read_change()
            except RedisError as exc:
                logger.warning("Watch on %s failed: %s", self.short_code, exc)
                await self.aclose()
                raise WatchClosedError(self.short_code, str(exc)) from exc

            if self._closed:
                break
            self.state = WatchState.OPEN
            if change is not None:
                return change

        raise StopAsyncIteration

    async def __aenter__(self) -> "LinkWatch":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop delivery and release the underlying channel. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self.state = WatchState.CLOSED

        pubsub, self._pubsub = self._pubsub, None
        if pubsub is not None:
            try:
                await pubsub.unsubscribe()
            except RedisError as exc:
                logger.warning("Unsubscribe for %s failed: %s", self.short_code, exc)
            finally:
                await pubsub.aclose()

        self._notifier._release(self)
        logger.info("Watch on %s closed", self.short_code)

    async def _wait_for_change(self) -> bool:
        if self._backend is WatchBackend.PUBSUB:
            assert self._pubsub is not None, "pubsub must be subscribed while open"
            message = await self._pubsub.get_message(
                ignore_subscribe_messages=True, timeout=self._poll_interval
            )
            if message is None:
                return False
            # Coalesce everything already queued into this delivery.
            while await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=0.0) is not None:
                pass
            return True

        await asyncio.sleep(self._poll_interval)
        current = await self._store.get(self.short_code)
        if current is None or current == self._last_seen:
            return False
        return True

    async def _read_change(self) -> ChangeEvent | None:
        link = await self._store.get(self.short_code)
        if link is None:
            return None
        self._last_seen = link

        latest_click = None
        if link.click_count > 0:
            latest_click = await self._store.get_click_event(self.short_code, link.click_count)
        return ChangeEvent(link=link, latest_click=latest_click)


class ChangeNotifier:
    """Factory and registry of LinkWatch subscriptions."""

    def __init__(
        self,
        store: LinkStore,
        *,
        backend: WatchBackend = WatchBackend.PUBSUB,
        poll_interval_seconds: float = 0.5,
    ):
        assert poll_interval_seconds > 0, f"poll_interval_seconds must be positive, got {poll_interval_seconds!r}"
        self._store = store
        self._backend = WatchBackend(backend)
        self._poll_interval = poll_interval_seconds
        self._watches: set[LinkWatch] = set()

    @property
    def active_watches(self) -> int:
        return len(self._watches)

    async def watch(self, short_code: str) -> LinkWatch:
        watch = LinkWatch(self, self._store, short_code, self._backend, self._poll_interval)
        self._watches.add(watch)
        await watch._open()
        logger.info("Watch on %s opened (%s)", short_code, self._backend.value)
        return watch

    async def close_all(self) -> None:
        for watch in list(self._watches):
            await watch.aclose()

    def _release(self, watch: LinkWatch) -> None:
        self._watches.discard(watch)
