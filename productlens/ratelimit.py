from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Callable, Deque

from .errors import RateLimitExceeded

logger = logging.getLogger(__name__)


class LLMRateLimiter:
    """
    Process-wide budget for language-model calls.

    Sliding window of call timestamps; ``try_acquire`` never waits, it
    reports whether a call may be made right now and records it if so.
    """

    def __init__(
        self,
        requests_per_window: int = 10,
        window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = requests_per_window
        self.window = window
        self._clock = clock
        self._timestamps: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _cleanup(self, now: float) -> None:
        cutoff = now - self.window
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    async def try_acquire(self) -> bool:
        async with self._lock:
            now = self._clock()
            self._cleanup(now)
            if len(self._timestamps) >= self.limit:
                logger.warning(
                    "LLM budget exhausted (%d calls in %.0fs); skipping call", len(self._timestamps), self.window
                )
                return False
            self._timestamps.append(now)
            return True

    async def acquire(self) -> None:
        if not await self.try_acquire():
            raise RateLimitExceeded(f"more than {self.limit} LLM calls in {self.window:.0f}s")

    def remaining(self) -> int:
        self._cleanup(self._clock())
        return max(0, self.limit - len(self._timestamps))
