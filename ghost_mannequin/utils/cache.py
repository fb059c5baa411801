"""In-memory analysis cache keyed by image content hash."""

import logging
import time
from typing import Any, Callable

logger = logging.getLogger(__name__)


class AnalysisCache:
    """Bounded TTL cache for analysis results.

    Keys are ``(kind, content_hash)``. Reads never block; writes only insert
    when the key is absent (or expired), so two sessions analysing the same
    image concurrently both keep the first stored result. Oldest entries are
    evicted once ``max_entries`` is reached.
    """

    def __init__(
        self,
        max_entries: int = 256,
        ttl_seconds: float = 24 * 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str], tuple[float, Any]] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _live(self, kind: str, key: str) -> Any | None:
        entry = self._entries.get((kind, key))
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            self._entries.pop((kind, key), None)
            return None
        return value

    def get(self, kind: str, key: str) -> Any | None:
        value = self._live(kind, key)
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
        return value

    def put_if_absent(self, kind: str, key: str, value: Any) -> Any:
        """Store ``value`` unless a live entry exists; return the stored value."""
        existing = self._live(kind, key)
        if existing is not None:
            return existing

        while len(self._entries) >= self.max_entries > 0:
            oldest = next(iter(self._entries))
            self._entries.pop(oldest, None)
            logger.debug("Evicted cache entry %s", oldest[0])

        if self.max_entries > 0:
            self._entries[(kind, key)] = (self._clock() + self.ttl_seconds, value)
        return value

    def clear(self) -> None:
        self._entries.clear()
