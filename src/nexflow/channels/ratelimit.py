"""Token bucket used to pace outbound API calls."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable


class RateLimiter:
    """Bucket of ``max_tokens`` that refills to full once per ``refill_interval`` seconds.

    Refill is computed lazily on each acquire from elapsed monotonic time.
    """

    def __init__(
        self,
        max_tokens: int = 30,
        refill_interval: float = 1.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_tokens = max_tokens
        self._refill_interval = refill_interval
        self._clock = clock
        self._tokens = max_tokens
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    @property
    def tokens(self) -> int:
        return self._tokens

    async def acquire(self) -> None:
        """Take one token, waiting for the next refill if the bucket is empty."""
        while True:
            async with self._lock:
                self._refill()
                if self._tokens > 0:
                    self._tokens -= 1
                    return
                wait = self._refill_interval - (self._clock() - self._last_refill)
            await asyncio.sleep(max(wait, 0.001))

    def _refill(self) -> None:
        now = self._clock()
        if now - self._last_refill >= self._refill_interval:
            self._tokens = self._max_tokens
            self._last_refill = now
