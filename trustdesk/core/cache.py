"""Explicitly constructed in-memory cache with a time-to-live."""

import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from trustdesk.utils.logging import get_logger

LOGGER = get_logger(__name__)


class TTLCache:
    """Key/value cache whose entries expire ``ttl`` seconds after being set.

    Instances are passed to the components that need them; nothing in the
    package keeps a module-level cache.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        """Initialize the cache.

        Args:
            ttl: Entry lifetime in seconds
            clock: Monotonic time source, injectable for tests
        """
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, or None if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl:
            del self._entries[key]
            LOGGER.debug(f"Cache entry expired: {key}")
            return None
        return value

    def set(self, key: Hashable, value: Any) -> None:
        self._entries[key] = (self._clock(), value)

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()
        LOGGER.info("Cache cleared")

    def age(self, key: Hashable) -> Optional[float]:
        """Seconds since the entry was stored, or None if absent."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        return self._clock() - entry[0]

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
