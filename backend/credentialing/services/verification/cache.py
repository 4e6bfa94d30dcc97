"""
TTL cache for verification results.

The aggregator depends on the TTLCache protocol only; InMemoryTTLCache is the
single-process implementation on top of cachetools. A multi-instance deployment
plugs in a shared store with the same three methods.

SingleFlight collapses concurrent misses on one key into a single upstream call.
"""
import logging
import threading
import time
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Protocol

from cachetools import TLRUCache

logger = logging.getLogger(__name__)


class TTLCache(Protocol):
    """Key-value store with per-entry expiry."""

    def get(self, key: str) -> Optional[Any]:
        """Value for key, or None when absent or expired"""
        ...

    def set(self, key: str, value: Any, ttl: timedelta) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


def _entry_expiry(key: str, entry: tuple, now: float) -> float:
    # entry is (value, ttl_seconds)
    return now + entry[1]


class InMemoryTTLCache:
    """
    Process-local TTLCache backed by cachetools.TLRUCache.

    Every write purges expired entries; cachetools evicts
    live entries once max_entries is reached.
    """

    def __init__(self, max_entries: int = 10000, clock: Callable[[], float] = time.monotonic):
        self._cache = TLRUCache(maxsize=max_entries, ttu=_entry_expiry, timer=clock)
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            self._cache.expire()
            entry = self._cache.get(key)
            return entry[0] if entry is not None else None

    def set(self, key: str, value: Any, ttl: timedelta) -> None:
        with self._lock:
            self._cache[key] = (value, ttl.total_seconds())

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)


class _Call:
    def __init__(self):
        self.done = threading.Event()
        self.result: Any = None
        self.error: Optional[BaseException] = None


class SingleFlight:
    """
    At most one in-flight call per key within this process.

    Callers arriving while a call for the same key is running wait for it and
    receive its result (or its exception).
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: Dict[str, _Call] = {}

    def do(self, key: str, fn: Callable[[], Any]) -> Any:
        with self._lock:
            call = self._calls.get(key)
            leader = call is None
            if leader:
                call = _Call()
                self._calls[key] = call

        if not leader:
            logger.debug(f"Joining in-flight call for {key}")
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.result

        try:
            call.result = fn()
        except BaseException as e:
            call.error = e
            raise
        finally:
            with self._lock:
                del self._calls[key]
            call.done.set()

        return call.result
