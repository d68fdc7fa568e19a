"""TTL cache for expensive aggregate world queries.

One instance is created at startup and injected into the services that
need it, so two worlds (or two test cases) never share entries.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Generic, Hashable, Optional, TypeVar

log = logging.getLogger(__name__)

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Key/value cache whose entries expire ``ttl`` seconds after being stored.

    Args:
        ttl: Lifetime of an entry in seconds.
        clock: Time source, ``time.monotonic`` unless a test injects one.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] | None = None) -> None:
        self._ttl = ttl
        self._clock = clock or time.monotonic
        self._entries: dict[Hashable, tuple[float, V]] = {}

    def get(self, key: Hashable) -> Optional[V]:
        """Return a live entry or ``None`` (expired entries are dropped)."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at >= self._ttl:
            del self._entries[key]
            return None
        return value

    def put(self, key: Hashable, value: V) -> None:
        self._entries[key] = (self._clock(), value)

    async def get_or_load(self, key: Hashable, loader: Callable[[], Awaitable[V]]) -> V:
        """Return the cached value, awaiting ``loader`` on a miss."""
        value = self.get(key)
        if value is not None:
            return value
        log.debug("cache miss for %r", key)
        value = await loader()
        self.put(key, value)
        return value

    def invalidate(self, key: Hashable | None = None) -> None:
        """Drop one key, or every entry when ``key`` is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __contains__(self, key: Any) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
