"""Short-TTL read-through cache for task list queries.

Injected into the engine rather than held at module level, so each engine
(and each test) gets its own and a TTL of 0 turns it off. Latency only:
every successful write clears it. Callers get their own copy of a cached
value.
"""

import copy
import time
from typing import Any, Awaitable, Callable, Hashable, Optional

from taskdesk.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


class ListCache:
    """In-memory TTL cache keyed by (actor, query parameters)."""

    def __init__(self, ttl_seconds: float = 60.0, max_entries: int = 512,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._store: dict[Hashable, tuple[float, Any]] = {}

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def get(self, key: Hashable) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._store[key]
            return None
        return value

    def set(self, key: Hashable, value: Any) -> None:
        if not self.enabled:
            return
        if len(self._store) >= self.max_entries:
            self._evict()
        self._store[key] = (self._clock() + self.ttl_seconds, value)

    def _evict(self) -> None:
        now = self._clock()
        for key in [k for k, (exp, _) in self._store.items() if exp <= now]:
            del self._store[key]
        # still full: drop the entry closest to expiry
        if len(self._store) >= self.max_entries:
            oldest = min(self._store, key=lambda k: self._store[k][0])
            del self._store[oldest]

    def clear(self) -> None:
        if self._store:
            logger.debug("Task list cache cleared", entries=len(self._store))
        self._store.clear()

    async def get_or_load(self, key: Hashable, loader: Callable[[], Awaitable[Any]]) -> Any:
        if self.enabled:
            cached = self.get(key)
            if cached is not None:
                logger.debug("Task list cache hit")
                return copy.deepcopy(cached)
        value = await loader()
        if self.enabled:
            self.set(key, copy.deepcopy(value))
        return value

    def __len__(self) -> int:
        return len(self._store)
