from __future__ import annotations

import time
from typing import Callable, Hashable, List

from cachetools import TTLCache

from .config import TAGALL_LIMIT_PER_HOUR, logger


class RateLimiter:
    """Fixed-window hit counters with explicit expiry.

    A window opens on the first hit for a key and lasts ``window_secs``.
    Counters live in memory only and are lost on restart.
    """

    def __init__(self, limit: int = TAGALL_LIMIT_PER_HOUR, window_secs: float = 3600,
                 maxsize: int = 4096, timer: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window_secs = window_secs
        # Mutated in place: re-assigning a key would restart its window
        self._hits: TTLCache = TTLCache(maxsize=maxsize, ttl=window_secs, timer=timer)

    def hit(self, key: Hashable) -> bool:
        """Count a hit; False when the key is over its limit for this window."""
        if self.limit <= 0:
            return True
        counter: List[int] | None = self._hits.get(key)
        if counter is None:
            self._hits[key] = [1]
            return True
        if counter[0] >= self.limit:
            logger.info(f"Rate limit reached for {key!r} ({self.limit}/{self.window_secs:.0f}s)")
            return False
        counter[0] += 1
        return True

    def remaining(self, key: Hashable) -> int:
        if self.limit <= 0:
            return -1
        counter = self._hits.get(key)
        return self.limit - (counter[0] if counter else 0)

    def reset(self, key: Hashable) -> None:
        self._hits.pop(key, None)
