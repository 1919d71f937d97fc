"""Tests for the change detection policies and the per-day cache."""

from datetime import date

import pytest

from config.config import ChangeDetectionConfig
from schedule_collector.change_detector import (
    CACHED_SCHEDULE_KEY,
    LAST_DATA_KEY,
    LAST_FETCH_TIME_KEY,
    ContentDiffPolicy,
    DayCache,
    Decision,
    TtlPolicy,
    make_day_cache,
    make_policy,
)
from schedule_collector.store import MemoryStore

SNAPSHOT = [{"id": 1, "title": "A v B"}, {"id": 2, "title": "C v D"}]


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


class FailingSnapshotStore(MemoryStore):
    """Refuses to write the snapshot key, as a full disk would."""

    def set(self, key, value, ttl=None):
        if key == LAST_DATA_KEY:
            raise OSError("No space left on device")
        super().set(key, value, ttl=ttl)


class TestContentDiffPolicy:

    def test_first_snapshot_delivered(self, store, clock):
        assert ContentDiffPolicy(store, clock=clock).decide(SNAPSHOT) == Decision.DELIVER

    def test_empty_snapshot_skipped(self, store, clock):
        assert ContentDiffPolicy(store, clock=clock).decide([]) == Decision.SKIP_EMPTY

    def test_identical_snapshot_skipped(self, store, clock):
        policy = ContentDiffPolicy(store, clock=clock)
        policy.commit(SNAPSHOT)
        assert policy.decide(SNAPSHOT) == Decision.SKIP_UNCHANGED

    def test_structural_equality_not_identity(self, store, clock):
        policy = ContentDiffPolicy(store, clock=clock)
        policy.commit(SNAPSHOT)
        copy = [dict(item) for item in SNAPSHOT]
        assert policy.decide(copy) == Decision.SKIP_UNCHANGED

    def test_changed_snapshot_delivered(self, store, clock):
        policy = ContentDiffPolicy(store, clock=clock)
        policy.commit(SNAPSHOT)
        assert policy.decide(SNAPSHOT + [{"id": 3}]) == Decision.DELIVER

    def test_order_matters(self, store, clock):
        policy = ContentDiffPolicy(store, clock=clock)
        policy.commit(SNAPSHOT)
        assert policy.decide(list(reversed(SNAPSHOT))) == Decision.DELIVER

    def test_commit_records_data_and_time(self, store, clock):
        ContentDiffPolicy(store, clock=clock).commit(SNAPSHOT)
        assert store.get(LAST_DATA_KEY) == SNAPSHOT
        assert store.get(LAST_FETCH_TIME_KEY) == clock()

    def test_empty_commit_ignored(self, store, clock):
        policy = ContentDiffPolicy(store, clock=clock)
        policy.commit(SNAPSHOT)
        policy.commit([])
        assert policy.last_delivered() == SNAPSHOT

    def test_decide_does_not_write(self, store, clock):
        ContentDiffPolicy(store, clock=clock).decide(SNAPSHOT)
        assert store.get(LAST_DATA_KEY) is None
        assert store.get(LAST_FETCH_TIME_KEY) is None

    def test_cached_snapshot_expires(self, store, clock):
        policy = ContentDiffPolicy(store, cache_ttl_seconds=100, clock=clock)
        policy.commit(SNAPSHOT)
        clock.advance(101)
        assert policy.decide(SNAPSHOT) == Decision.DELIVER

    def test_failed_snapshot_write_restores_time(self, clock):
        store = FailingSnapshotStore(clock=clock)
        policy = ContentDiffPolicy(store, clock=clock)
        store.set(LAST_FETCH_TIME_KEY, 1.0)

        with pytest.raises(OSError):
            policy.commit(SNAPSHOT)

        assert store.get(LAST_FETCH_TIME_KEY) == 1.0
        assert store.get(LAST_DATA_KEY) is None

    def test_failed_first_commit_leaves_no_time(self, clock):
        store = FailingSnapshotStore(clock=clock)
        with pytest.raises(OSError):
            ContentDiffPolicy(store, clock=clock).commit(SNAPSHOT)
        assert store.get(LAST_FETCH_TIME_KEY) is None


class TestTtlPolicy:

    def test_first_snapshot_delivered(self, store, clock):
        assert TtlPolicy(store, interval_seconds=3600, clock=clock).decide(SNAPSHOT) == Decision.DELIVER

    def test_empty_snapshot_skipped(self, store, clock):
        assert TtlPolicy(store, interval_seconds=3600, clock=clock).decide([]) == Decision.SKIP_EMPTY

    def test_within_interval_skipped_even_if_changed(self, store, clock):
        policy = TtlPolicy(store, interval_seconds=3600, clock=clock)
        policy.commit(SNAPSHOT)
        clock.advance(3599)
        assert policy.decide([{"id": 99}]) == Decision.SKIP_CACHED

    def test_after_interval_delivered_even_if_unchanged(self, store, clock):
        policy = TtlPolicy(store, interval_seconds=3600, clock=clock)
        policy.commit(SNAPSHOT)
        clock.advance(3600)
        assert policy.decide(SNAPSHOT) == Decision.DELIVER

    def test_commit_uses_cached_schedule_key(self, store, clock):
        TtlPolicy(store, interval_seconds=60, clock=clock).commit(SNAPSHOT)
        assert store.get(CACHED_SCHEDULE_KEY) == SNAPSHOT
        assert store.get(LAST_DATA_KEY) is None

    def test_expired_cache_forces_delivery(self, store, clock):
        policy = TtlPolicy(store, interval_seconds=3600, cache_ttl_seconds=10, clock=clock)
        policy.commit(SNAPSHOT)
        clock.advance(11)
        assert policy.decide(SNAPSHOT) == Decision.DELIVER

    def test_rejects_non_positive_interval(self, store):
        with pytest.raises(ValueError):
            TtlPolicy(store, interval_seconds=0)


class TestMakePolicy:

    def test_content_diff(self, store):
        policy = make_policy(ChangeDetectionConfig(policy="content_diff", cache_ttl_seconds=5), store)
        assert isinstance(policy, ContentDiffPolicy)
        assert policy.cache_ttl_seconds == 5

    def test_ttl(self, store):
        policy = make_policy(ChangeDetectionConfig(policy="ttl", ttl_interval_seconds=120), store)
        assert isinstance(policy, TtlPolicy)
        assert policy.interval_seconds == 120

    def test_unknown(self, store):
        with pytest.raises(ValueError, match="Unknown change detection policy"):
            make_policy(ChangeDetectionConfig(policy="always"), store)


class TestDayCache:

    def test_key_is_iso_date(self):
        assert DayCache.key_for(date(2026, 3, 4)) == "day_2026-03-04"

    def test_hit(self, store):
        cache = DayCache(store, ttl_seconds=60)
        assert cache.put(date(2026, 3, 4), SNAPSHOT) is True
        assert cache.get(date(2026, 3, 4)) == SNAPSHOT
        assert cache.get(date(2026, 3, 5)) is None

    def test_empty_day_not_stored(self, store):
        cache = DayCache(store, ttl_seconds=60)
        assert cache.put(date(2026, 3, 4), []) is False
        assert store.get(DayCache.key_for(date(2026, 3, 4))) is None

    def test_entry_expires(self, store, clock):
        cache = DayCache(store, ttl_seconds=60)
        cache.put(date(2026, 3, 4), SNAPSHOT)
        clock.advance(60)
        assert cache.get(date(2026, 3, 4)) is None

    def test_rejects_non_positive_ttl(self, store):
        with pytest.raises(ValueError):
            DayCache(store, ttl_seconds=0)


class TestMakeDayCache:

    def test_disabled_by_default(self, store):
        assert make_day_cache(ChangeDetectionConfig(), store) is None

    def test_enabled_with_ttl(self, store):
        cache = make_day_cache(ChangeDetectionConfig(day_cache_ttl_seconds=7200), store)
        assert isinstance(cache, DayCache)
        assert cache.ttl_seconds == 7200
        assert cache.store is store
