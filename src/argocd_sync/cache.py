# ABOUTME: Keyed in-memory cache with per-entry expiry
# ABOUTME: Shared by the detector and repository; one instance per engine session

"""In-memory TTL cache with lazy eviction and prefix invalidation."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A stored value with the time it was stored and its lifetime in seconds."""

    data: T
    stored_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.stored_at <= self.ttl


class TTLCache:
    """Keyed store where every entry expires after its own TTL.

    Entries are immutable snapshots and a write replaces the whole entry, so
    concurrent writers to the same key resolve as last-write-wins.

    Args:
        clock: Monotonic time source in seconds. Tests inject a fake clock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}

    def set(self, key: str, data: Any, ttl: float) -> None:
        self._entries[key] = CacheEntry(data=data, stored_at=self._clock(), ttl=ttl)

    def get(self, key: str) -> Any | None:
        """Return the stored value, or None on a miss.

        A stale entry counts as a miss and is evicted on the spot.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_valid(self._clock()):
            del self._entries[key]
            logger.debug("Cache entry expired", key=key)
            return None
        return entry.data

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def invalidate(self, key: str) -> bool:
        """Drop one key. Returns True if something was removed."""
        return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with prefix. Returns the number removed."""
        keys = [k for k in self._entries if k.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        if keys:
            logger.debug("Cache prefix invalidated", prefix=prefix, removed=len(keys))
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
