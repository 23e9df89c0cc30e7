"""
Time-to-live cache with an injected clock.

One instance is created per process and passed to the components that need
it; there is no module-level cache.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional

from .config import CacheSettings

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class _Entry:
    value: Any
    stored_at: float
    ttl: float


class TTLCache:
    """
    In-memory key/value store whose entries expire ``ttl`` seconds after ``set``.

    Expired entries are dropped lazily on ``get``/``has`` and in bulk by
    ``evict()``. Safe to share between runner threads.

    Example:
        >>> now = [0.0]
        >>> cache = TTLCache(ttl_seconds=10, clock=lambda: now[0])
        >>> cache.set("k", 1)
        >>> now[0] = 11.0
        >>> cache.get("k") is None
        True
    """

    def __init__(
            self,
            ttl_seconds: float = CacheSettings.DEFAULT_TTL_SECONDS,
            clock: Callable[[], float] = time.monotonic
    ):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, _Entry] = {}
        self._lock = threading.Lock()

    def _expired(self, entry: _Entry, now: float) -> bool:
        return now - entry.stored_at > entry.ttl

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            self._entries[key] = _Entry(value, self._clock(), ttl if ttl is not None else self.ttl_seconds)

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if self._expired(entry, self._clock()):
                del self._entries[key]
                return default
            return entry.value

    def has(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def delete(self, key: Hashable) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def evict(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if self._expired(e, now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("evicted %d expired cache entries", len(expired))
        return len(expired)

    def keys(self) -> List[Hashable]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        keys = self.keys()
        return {"size": len(keys), "entries": [str(k) for k in keys]}
