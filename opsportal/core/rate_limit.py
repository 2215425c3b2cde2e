"""
Keyed request budgets

The session synchronizer receives a limiter instead of owning one, so the
in-memory implementation can be replaced with a shared store when the API
runs on more than one process.
"""

import asyncio
import math
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Deque, Dict, Sequence, Tuple

import structlog

from opsportal.core.errors import RateLimited

logger = structlog.get_logger(__name__)

Budget = Tuple[str, int]


class RateLimiter(ABC):
    """Budget of `limit` hits per key inside a rolling window"""

    @abstractmethod
    async def hit_all(self, budgets: Sequence[Budget]) -> None:
        """
        Record one request against every (key, limit) pair

        Either all keys are charged or, if any of them is over budget,
        none is and RateLimited is raised.
        """

    async def hit(self, key: str, limit: int) -> None:
        await self.hit_all([(key, limit)])


class SlidingWindowRateLimiter(RateLimiter):
    """
    In-process sliding window limiter.

    Tracks request timestamps per key and rejects once `limit` requests fall
    inside the last `window_seconds`. Rejected requests are not recorded.
    Keys with no hits inside the window are dropped, at the latest one
    window after they went quiet.
    """

    def __init__(self, window_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._hits)

    def _live_hits(self, key: str, now: float) -> Deque[float]:
        hits = self._hits.get(key)
        if hits is None:
            return deque()
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if not hits:
            del self._hits[key]
        return hits

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self.window_seconds:
            return
        cutoff = now - self.window_seconds
        stale = [key for key, hits in self._hits.items() if hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]
        self._last_sweep = now
        if stale:
            logger.debug("Rate limit keys dropped", count=len(stale), tracked=len(self._hits))

    async def hit_all(self, budgets: Sequence[Budget]) -> None:
        async with self._lock:
            now = self._clock()
            self._sweep(now)

            for key, limit in budgets:
                hits = self._live_hits(key, now)
                if len(hits) >= limit:
                    oldest = hits[0] if hits else now
                    retry_after = max(1, math.ceil(oldest + self.window_seconds - now))
                    logger.warning("Rate limit exceeded", key_kind=key.split(":", 1)[0], retry_after=retry_after)
                    raise RateLimited(retry_after=retry_after)

            for key, _ in budgets:
                self._hits.setdefault(key, deque()).append(now)

    def remaining(self, key: str, limit: int) -> int:
        """Requests still allowed for key in the current window"""
        hits = self._live_hits(key, self._clock())
        return max(0, limit - len(hits))

    def reset(self) -> None:
        self._hits.clear()
