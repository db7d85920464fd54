import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0

_MISSING = object()


@dataclass
class CacheEntry:
    value: Any
    timestamp: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.timestamp <= self.ttl


class TTLCache:
    """Time-bounded key/value cache in front of the stores.

    Never the system of record: a miss is always answered by re-reading the
    store. A key is present only while ``now - timestamp <= ttl``; a read past
    that evicts it.

    Values set with ``retain=True`` are also remembered as last-known-good so
    a caller that opts into degraded reads can use ``get_stale`` while the
    store is down. Invalidation removes both copies.
    """

    def __init__(self, default_ttl: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = float(default_ttl)
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._last_known: Dict[str, Any] = {}

    def __len__(self):
        return len(self._entries)

    def set(self, key: str, value, ttl: Optional[float] = None, retain: bool = False):
        self._entries[key] = CacheEntry(
            value=value,
            timestamp=self._clock(),
            ttl=self.default_ttl if ttl is None else float(ttl),
        )
        if retain:
            self._last_known[key] = value

    def get(self, key: str, default=None):
        entry = self._entries.get(key)
        if entry is None:
            return default
        if not entry.is_fresh(self._clock()):
            self._entries.pop(key, None)
            return default
        return entry.value

    def has(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def get_stale(self, key: str, default=None):
        """Last value stored for ``key`` with retain=True, ignoring TTL."""
        entry = self._entries.get(key)
        if entry is not None:
            return entry.value
        return self._last_known.get(key, default)

    def invalidate(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        self._last_known.pop(key, None)
        return removed

    def invalidate_prefix(self, prefix: str) -> int:
        keys = [k for k in list(self._entries) if k.startswith(prefix)]
        for k in keys:
            self._entries.pop(k, None)
        for k in [k for k in list(self._last_known) if k.startswith(prefix)]:
            self._last_known.pop(k, None)
        if keys:
            logger.debug(f"Invalidated {len(keys)} cache entries with prefix {prefix!r}")
        return len(keys)

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in list(self._entries.items()) if not e.is_fresh(now)]
        for k in expired:
            self._entries.pop(k, None)
        return len(expired)

    def clear(self):
        self._entries.clear()
        self._last_known.clear()


class cache_keys:
    """Cache key builders, ``<domain>:<discriminant...>``."""

    SECTION_PREFIX = "section:"
    TEACHER_SECTIONS_PREFIX = "sections:teacher:"
    GRADES_PREFIX = "grades:"

    @staticmethod
    def section(section_id) -> str:
        return f"section:{section_id}"

    @staticmethod
    def teacher_sections(teacher_id) -> str:
        return f"sections:teacher:{teacher_id}"

    @staticmethod
    def user_grades(user_id, include_hidden: bool) -> str:
        return f"grades:{user_id}:hidden={1 if include_hidden else 0}"

    @staticmethod
    def user_grades_prefix(user_id) -> str:
        return f"grades:{user_id}:"

    @staticmethod
    def section_connections(section_id) -> str:
        return f"connections:section:{section_id}"

    @staticmethod
    def user_connections(user_id) -> str:
        return f"connections:user:{user_id}"
