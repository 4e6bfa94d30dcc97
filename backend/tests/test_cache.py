"""
Tests for the TTL cache and single-flight helper.
"""
import threading
from datetime import timedelta

import pytest

from credentialing.services.verification.cache import InMemoryTTLCache, SingleFlight


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, delta: timedelta):
        self.now += delta.total_seconds()


class TestInMemoryTTLCache:

    def test_get_before_expiry(self):
        clock = FakeClock()
        cache = InMemoryTTLCache(clock=clock)
        cache.set("k", "v", timedelta(seconds=60))

        clock.advance(timedelta(seconds=59))

        assert cache.get("k") == "v"

    def test_expired_entry_is_dropped(self):
        clock = FakeClock()
        cache = InMemoryTTLCache(clock=clock)
        cache.set("k", "v", timedelta(days=30))

        clock.advance(timedelta(days=30))

        assert cache.get("k") is None
        assert len(cache) == 0

    def test_missing_key(self):
        assert InMemoryTTLCache().get("nope") is None

    def test_set_overwrites_and_resets_ttl(self):
        clock = FakeClock()
        cache = InMemoryTTLCache(clock=clock)
        cache.set("k", 1, timedelta(seconds=10))
        clock.advance(timedelta(seconds=8))
        cache.set("k", 2, timedelta(seconds=10))
        clock.advance(timedelta(seconds=8))

        assert cache.get("k") == 2

    def test_delete_and_clear(self):
        cache = InMemoryTTLCache()
        cache.set("a", 1, timedelta(minutes=1))
        cache.set("b", 2, timedelta(minutes=1))

        cache.delete("a")
        cache.delete("missing")
        assert cache.get("a") is None
        assert len(cache) == 1

        cache.clear()
        assert len(cache) == 0

    def test_expired_entries_for_other_keys_are_evicted_on_write(self):
        clock = FakeClock()
        cache = InMemoryTTLCache(clock=clock)
        for n in range(5000):
            cache.set(f"credit_analysis:{n:014d}", n, timedelta(seconds=1))

        clock.advance(timedelta(seconds=10000))
        cache.set("fresh", "v", timedelta(seconds=60))

        assert len(cache) == 1
        assert cache.get("fresh") == "v"

    def test_max_entries_bounds_the_cache(self):
        cache = InMemoryTTLCache(max_entries=2)
        cache.set("a", 1, timedelta(days=30))
        cache.set("b", 2, timedelta(days=1))
        cache.get("a")

        cache.set("c", 3, timedelta(days=7))

        assert cache.get("a") == 1
        assert cache.get("b") is None
        assert cache.get("c") == 3

    def test_entries_keep_their_own_ttl(self):
        clock = FakeClock()
        cache = InMemoryTTLCache(clock=clock)
        cache.set("legal", "L", timedelta(days=7))
        cache.set("restrictions", "R", timedelta(days=1))

        clock.advance(timedelta(days=2))

        assert cache.get("legal") == "L"
        assert cache.get("restrictions") is None


class TestSingleFlight:

    def test_sequential_calls_each_run(self):
        flight = SingleFlight()
        calls = []

        flight.do("k", lambda: calls.append(1))
        flight.do("k", lambda: calls.append(2))

        assert calls == [1, 2]

    def test_concurrent_callers_share_result(self):
        flight = SingleFlight()
        release = threading.Event()
        started = threading.Event()
        calls = []

        def slow():
            calls.append(1)
            started.set()
            release.wait(timeout=5)
            return "value"

        results = []
        leader = threading.Thread(target=lambda: results.append(flight.do("k", slow)))
        leader.start()
        started.wait(timeout=5)

        followers = [
            threading.Thread(target=lambda: results.append(flight.do("k", slow)))
            for _ in range(3)
        ]
        for t in followers:
            t.start()
        threading.Event().wait(0.1)
        release.set()
        for t in [leader] + followers:
            t.join(timeout=5)

        assert results == ["value"] * 4
        assert calls == [1]

    def test_error_propagates_and_key_is_released(self):
        flight = SingleFlight()

        def broken():
            raise RuntimeError("upstream down")

        with pytest.raises(RuntimeError):
            flight.do("k", broken)

        assert flight.do("k", lambda: "ok") == "ok"
