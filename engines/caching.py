"""Last-known-good cache used as the first fallback tier for store reads."""

import copy
import time
from collections import OrderedDict
from threading import Lock
from typing import Any, Callable, Optional, Tuple


class FallbackCache:
    """Thread-safe LRU cache of successful store results with a maximum age.

    Entries are deep-copied on the way in and out so a cached value is never
    mutated by the request that later serves it.
    """

    def __init__(
        self,
        max_size: int = 256,
        max_age_seconds: float = 15 * 60,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._cache: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._max_size = max_size
        self._max_age = max_age_seconds
        self._clock = clock
        self._lock = Lock()

    def add(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``, evicting the least recently used entry."""
        with self._lock:
            self._cache.pop(key, None)
            if len(self._cache) >= self._max_size:
                self._cache.popitem(last=False)
            self._cache[key] = (self._clock(), copy.deepcopy(value))

    def get(self, key: str) -> Optional[Any]:
        """Return a copy of the cached value, or ``None`` if missing or expired."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at > self._max_age:
                del self._cache[key]
                return None
            self._cache.move_to_end(key)
            return copy.deepcopy(value)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
