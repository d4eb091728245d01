"""Unit tests for calview.cache module."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from calview.cache import CacheStore
from calview.models import CacheEntry, CacheKey, CalendarEvent

pytestmark = [pytest.mark.unit, pytest.mark.fast]


def make_event(event_id: str, calendar_id: str = "team") -> CalendarEvent:
    start = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)
    return CalendarEvent(
        id=event_id,
        title=f"Event {event_id}",
        start_time=start,
        end_time=start + timedelta(hours=1),
        calendar_id=calendar_id,
    )


KEY = CacheKey(feed_url="https://example.com/team.ics", calendar_id="team")
OTHER_KEY = CacheKey(feed_url="https://example.com/home.ics", calendar_id="home")


class TestCacheStore:
    """Tests for CacheStore hit/miss rules."""

    @pytest.fixture
    def store(self, clock) -> CacheStore:
        return CacheStore(ttl_seconds=30, time_provider=clock)

    def test_get_when_empty_then_miss(self, store: CacheStore) -> None:
        assert store.get(KEY, 1) is None

    def test_get_after_put_returns_same_sequence(self, store: CacheStore) -> None:
        events = [make_event("a"), make_event("b")]
        entry = store.put(KEY, events, 1)

        first = store.get(KEY, 1)
        second = store.get(KEY, 1)

        assert first is entry.events
        assert second is first
        assert list(first) == events

    def test_get_when_window_differs_then_miss_but_entry_kept(self, store: CacheStore) -> None:
        store.put(KEY, [make_event("a")], 1)

        assert store.get(KEY, 3) is None
        assert KEY in store
        assert store.get(KEY, 1) is not None

    def test_get_when_force_refresh_then_miss(self, store: CacheStore) -> None:
        store.put(KEY, [make_event("a")], 1)
        assert store.get(KEY, 1, force_refresh=True) is None

    def test_get_when_expired_then_miss(self, store: CacheStore, clock) -> None:
        store.put(KEY, [make_event("a")], 1)

        clock.advance(seconds=29)
        assert store.get(KEY, 1) is not None

        clock.advance(seconds=1)
        assert store.get(KEY, 1) is None
        # Expiry is lazy; the data is still available for fallback
        assert store.peek(KEY) is not None

    def test_put_replaces_existing_entry(self, store: CacheStore, clock) -> None:
        store.put(KEY, [make_event("a")], 1)
        clock.advance(seconds=10)
        entry = store.put(KEY, [make_event("b"), make_event("c")], 3)

        assert len(store) == 1
        assert entry.event_count == 2
        assert entry.date_range_months == 3
        assert entry.timestamp == clock.now

    def test_keys_with_same_url_and_different_calendar_are_separate(self, store: CacheStore) -> None:
        shared = CacheKey(feed_url=KEY.feed_url, calendar_id="other")
        store.put(KEY, [make_event("a")], 1)
        store.put(shared, [make_event("b", "other")], 1)

        assert len(store) == 2
        assert store.get(KEY, 1)[0].id == "a"
        assert store.get(shared, 1)[0].id == "b"

    def test_invalidate_removes_entry(self, store: CacheStore) -> None:
        store.put(KEY, [make_event("a")], 1)
        store.invalidate(KEY)
        store.invalidate(KEY)

        assert KEY not in store
        assert store.get(KEY, 1) is None

    def test_invalidate_calendar_removes_all_keys_for_id(self, store: CacheStore) -> None:
        store.put(KEY, [make_event("a")], 1)
        store.put(CacheKey(feed_url="https://mirror.example.com/team.ics", calendar_id="team"), [], 1)
        store.put(OTHER_KEY, [make_event("b", "home")], 1)

        assert store.invalidate_calendar("team") == 2
        assert len(store) == 1
        assert OTHER_KEY in store

    def test_invalidate_all_clears_store(self, store: CacheStore) -> None:
        store.put(KEY, [make_event("a")], 1)
        store.put(OTHER_KEY, [make_event("b", "home")], 1)

        store.invalidate_all()

        assert len(store) == 0

    def test_restore_only_when_key_empty(self, store: CacheStore) -> None:
        previous = store.put(KEY, [make_event("old")], 1)
        store.invalidate(KEY)

        assert store.restore(KEY, previous) is True
        assert store.peek(KEY) is previous

        store.put(KEY, [make_event("new")], 1)
        assert store.restore(KEY, previous) is False
        assert store.peek(KEY).events[0].id == "new"

    def test_diagnostics_reports_each_entry(self, store: CacheStore, clock) -> None:
        store.put(KEY, [make_event("a"), make_event("b")], 1)
        clock.advance(seconds=45)
        store.put(OTHER_KEY, [make_event("c", "home")], 3)

        diagnostics = {d.calendar_id: d for d in store.diagnostics()}

        assert diagnostics["team"].event_count == 2
        assert diagnostics["team"].age_seconds == 45
        assert diagnostics["team"].is_fresh is False
        assert diagnostics["home"].event_count == 1
        assert diagnostics["home"].date_range_months == 3
        assert diagnostics["home"].is_fresh is True
        assert diagnostics["home"].feed_url == OTHER_KEY.feed_url

    def test_init_rejects_invalid_bounds(self) -> None:
        with pytest.raises(ValueError):
            CacheStore(ttl_seconds=-1)
        with pytest.raises(ValueError):
            CacheStore(max_entries=0)


class TestCacheStoreEviction:
    """Tests for the optional LRU bound."""

    def test_unbounded_by_default(self, clock) -> None:
        store = CacheStore(time_provider=clock)
        for i in range(50):
            store.put(CacheKey(f"https://example.com/{i}.ics", str(i)), [], 1)
        assert len(store) == 50

    def test_evicts_least_recently_used(self, clock) -> None:
        store = CacheStore(max_entries=2, time_provider=clock)
        third = CacheKey("https://example.com/third.ics", "third")

        store.put(KEY, [], 1)
        store.put(OTHER_KEY, [], 1)
        store.get(KEY, 1)
        store.put(third, [], 1)

        assert KEY in store
        assert third in store
        assert OTHER_KEY not in store


class TestCacheEntry:
    """Tests for the CacheEntry model."""

    def test_event_count_defaults_to_length(self) -> None:
        entry = CacheEntry(events=(make_event("a"), make_event("b")), date_range_months=1)
        assert entry.event_count == 2

    def test_entry_is_immutable(self) -> None:
        entry = CacheEntry(events=(make_event("a"),), date_range_months=1)
        with pytest.raises(Exception):
            entry.date_range_months = 3  # type: ignore[misc]


def test_concurrent_puts_keep_store_consistent(clock) -> None:
    """Parallel writers never corrupt the underlying map."""
    store = CacheStore(time_provider=clock)

    def writer(n: int) -> None:
        for i in range(100):
            store.put(CacheKey(f"https://example.com/{n}-{i}.ics", f"{n}-{i}"), [], 1)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(store) == 400
    assert len(store.diagnostics()) == 400
