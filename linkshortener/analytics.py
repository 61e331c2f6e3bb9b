"""Click recording on top of the store's check-and-set increment.

A click is appended and counted in one transaction. When another redirect of
the same link commits first, the transaction aborts untouched and the whole
read-compute-commit cycle is repeated after a short jittered backoff. After
the configured number of attempts the conflict is surfaced to the caller,
never dropped.
"""

import asyncio
import logging
import random

from prometheus_client import Counter

from linkshortener.exceptions import ConflictError
from linkshortener.schemas import ClickEvent, ClickMetadata
from linkshortener.store import LinkStore

__all__ = ["AnalyticsRecorder"]

logger = logging.getLogger(__name__)

CLICKS_RECORDED_TOTAL = Counter(
    "link_shortener_clicks_recorded_total",
    "Clicks committed to the store",
)
CLICK_CONFLICT_RETRIES_TOTAL = Counter(
    "link_shortener_click_conflict_retries_total",
    "Click commits aborted by a concurrent increment and retried",
)
CLICK_CONFLICTS_EXHAUSTED_TOTAL = Counter(
    "link_shortener_click_conflicts_exhausted_total",
    "Clicks that still conflicted after the last allowed attempt",
)


class AnalyticsRecorder:
    def __init__(
        self,
        store: LinkStore,
        *,
        max_attempts: int = 10,
        base_delay_seconds: float = 0.005,
        max_delay_seconds: float = 0.1,
    ):
        assert max_attempts >= 1, f"max_attempts must be >= 1, got {max_attempts!r}"
        self._store = store
        self._max_attempts = max_attempts
        self._base_delay = base_delay_seconds
        self._max_delay = max_delay_seconds

    async def record_click(self, short_code: str, metadata: ClickMetadata | None = None) -> ClickEvent:
        """Count one click of short_code.

        Raises:
            NotFoundError: the link does not exist (not retried).
            ConflictError: every attempt lost the race to a concurrent click.
        """
        for attempt in range(1, self._max_attempts + 1):
            try:
                event = await self._store.increment_click(short_code, metadata)
            except ConflictError:
                if attempt == self._max_attempts:
                    CLICK_CONFLICTS_EXHAUSTED_TOTAL.inc()
                    logger.error(
                        "Click on %s still conflicting after %d attempts", short_code, self._max_attempts
                    )
                    raise
                CLICK_CONFLICT_RETRIES_TOTAL.inc()
                delay = self._backoff(attempt)
                logger.debug("Click on %s conflicted (attempt %d), retrying in %.3fs", short_code, attempt, delay)
                await asyncio.sleep(delay)
                continue

            CLICKS_RECORDED_TOTAL.inc()
            logger.debug("Recorded click %s", event.event_id)
            return event

        raise AssertionError("unreachable")

    def _backoff(self, attempt: int) -> float:
        ceiling = min(self._max_delay, self._base_delay * (2 ** (attempt - 1)))
        return random.uniform(0, ceiling)
