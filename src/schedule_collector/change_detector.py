"""
Change detection / cache gate.

Decides whether a freshly fetched snapshot should be delivered, and records
what was delivered once the collector accepts it. Two policies:

    ContentDiffPolicy  - deliver when the snapshot differs from the last one delivered
    TtlPolicy          - deliver when the last delivery is older than an interval

Both skip empty snapshots and never let an empty snapshot touch the cache.
DayCache optionally keeps each calendar day's upstream result so a cached
day is not fetched again until its entry expires.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import date
from enum import Enum
from typing import Any

from config.config import ChangeDetectionConfig
from schedule_collector.store import PersistentStore

logger = logging.getLogger(__name__)

# Persisted keys
LAST_FETCH_TIME_KEY = "lastFetchTime"
LAST_DATA_KEY = "lastData"
CACHED_SCHEDULE_KEY = "cachedSchedule"
DAY_CACHE_PREFIX = "day_"


class Decision(Enum):
    DELIVER = "deliver"
    SKIP_UNCHANGED = "skip_unchanged"
    SKIP_CACHED = "skip_cached"
    SKIP_EMPTY = "skip_empty"


class ChangePolicy(ABC):
    """Shared commit/empty handling; subclasses decide on non-empty snapshots."""

    snapshot_key: str = LAST_DATA_KEY

    def __init__(
        self,
        store: PersistentStore,
        cache_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.cache_ttl_seconds = cache_ttl_seconds
        self._clock = clock

    def decide(self, snapshot: list[Any]) -> Decision:
        if not snapshot:
            return Decision.SKIP_EMPTY
        return self._decide(snapshot)

    @abstractmethod
    def _decide(self, snapshot: list[Any]) -> Decision: ...

    def commit(self, snapshot: list[Any]) -> None:
        """
        Record snapshot as last delivered. Empty snapshots are ignored.

        The time is written first; if the snapshot write then fails, the
        previous time is restored so both keys keep describing one delivery.
        """
        if not snapshot:
            return

        previous_time = self.store.get(LAST_FETCH_TIME_KEY)
        self.store.set(LAST_FETCH_TIME_KEY, self._clock())
        try:
            self.store.set(self.snapshot_key, snapshot, ttl=self.cache_ttl_seconds)
        except OSError:
            if previous_time is None:
                self.store.delete(LAST_FETCH_TIME_KEY)
            else:
                self.store.set(LAST_FETCH_TIME_KEY, previous_time)
            raise

    def last_delivered(self) -> list[Any] | None:
        return self.store.get(self.snapshot_key)

    def last_delivery_time(self) -> float | None:
        value = self.store.get(LAST_FETCH_TIME_KEY)
        return float(value) if value is not None else None


class ContentDiffPolicy(ChangePolicy):
    """Deliver only when the content changed (structural equality)."""

    snapshot_key = LAST_DATA_KEY

    def _decide(self, snapshot: list[Any]) -> Decision:
        previous = self.last_delivered()
        if previous is None or previous != snapshot:
            return Decision.DELIVER
        return Decision.SKIP_UNCHANGED


class TtlPolicy(ChangePolicy):
    """Deliver unconditionally once the last delivery is older than interval_seconds."""

    snapshot_key = CACHED_SCHEDULE_KEY

    def __init__(
        self,
        store: PersistentStore,
        interval_seconds: float,
        cache_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(store, cache_ttl_seconds, clock)
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")
        self.interval_seconds = interval_seconds

    def _decide(self, snapshot: list[Any]) -> Decision:
        last_time = self.last_delivery_time()
        if last_time is None or self.last_delivered() is None:
            return Decision.DELIVER
        if self._clock() - last_time >= self.interval_seconds:
            return Decision.DELIVER
        return Decision.SKIP_CACHED


class DayCache:
    """
    Upstream results cached per calendar day (UTC).

    A day served from here costs no upstream request. Only non-empty days
    are stored, so a day that had no events yet is asked for again.
    """

    def __init__(self, store: PersistentStore, ttl_seconds: float):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be > 0, got {ttl_seconds}")
        self.store = store
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key_for(day: date) -> str:
        return f"{DAY_CACHE_PREFIX}{day.isoformat()}"

    def get(self, day: date) -> list[Any] | None:
        events = self.store.get(self.key_for(day))
        return events if isinstance(events, list) and events else None

    def put(self, day: date, events: list[Any]) -> bool:
        """Cache events for day. Returns False (and stores nothing) when empty."""
        if not events:
            return False
        self.store.set(self.key_for(day), events, ttl=self.ttl_seconds)
        return True


def make_day_cache(config: ChangeDetectionConfig, store: PersistentStore) -> DayCache | None:
    """DayCache when change_detection.day_cache_ttl_seconds is set, else None."""
    if config.day_cache_ttl_seconds is None:
        return None
    return DayCache(store, config.day_cache_ttl_seconds)


def make_policy(
    config: ChangeDetectionConfig,
    store: PersistentStore,
    clock: Callable[[], float] = time.time,
) -> ChangePolicy:
    """Build the policy named by change_detection.policy."""
    if config.policy == "content_diff":
        return ContentDiffPolicy(store, cache_ttl_seconds=config.cache_ttl_seconds, clock=clock)
    if config.policy == "ttl":
        return TtlPolicy(
            store,
            interval_seconds=config.ttl_interval_seconds,
            cache_ttl_seconds=config.cache_ttl_seconds,
            clock=clock,
        )
    raise ValueError(f"Unknown change detection policy: {config.policy!r}")
