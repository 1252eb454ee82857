"""Request spacing for rate-limited API hosts."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict

import httpx

logger = logging.getLogger(__name__)


class RateLimiter:
    """Keeps requests to one host at least ``1 / rate`` seconds apart.

    A rate of zero or less turns throttling off.
    """

    def __init__(self, *, rate: float = 1.5) -> None:
        self.interval = 1.0 / rate if rate > 0 else 0.0
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._next_slot: dict[str, float] = {}

    async def acquire(self, url: str | httpx.URL) -> None:
        if not self.interval:
            return
        host = httpx.URL(url).host
        async with self._locks[host]:
            delay = self._next_slot.get(host, 0.0) - time.monotonic()
            if delay > 0:
                logger.debug("Throttling %s for %.2fs", host, delay)
                await asyncio.sleep(delay)
            self._next_slot[host] = time.monotonic() + self.interval
