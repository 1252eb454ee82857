"""ETH/USD price lookups."""

from __future__ import annotations

import asyncio
import logging
import time

import httpx

from enswatch.utils.retry import RetryState, backoff_delay, is_retryable

logger = logging.getLogger(__name__)

ALCHEMY_PRICE_ENDPOINT = "https://api.g.alchemy.com/prices/v1/{api_key}/tokens/by-symbol"
CACHE_TTL_SECONDS = 30 * 60


class EthPriceClient:
    def __init__(
        self,
        api_key: str | None,
        *,
        session: httpx.AsyncClient | None = None,
        enabled: bool = True,
        ttl: float = CACHE_TTL_SECONDS,
        max_retries: int = 2,
        backoff_base: float = 1.0,
    ) -> None:
        self.api_key = api_key
        self.enabled = enabled
        self.session = session or httpx.AsyncClient(timeout=10.0)
        self.ttl = ttl
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._cached: tuple[float, float] | None = None

    async def close(self) -> None:
        await self.session.aclose()

    async def eth_usd(self) -> float | None:
        """Current ETH price in USD, or None when unavailable."""
        if self._cached and time.monotonic() - self._cached[0] < self.ttl:
            return self._cached[1]
        if not self.enabled or not self.api_key:
            return None
        url = ALCHEMY_PRICE_ENDPOINT.format(api_key=self.api_key)
        try:
            price = _parse_usd(await self._get(url))
        except (httpx.HTTPError, AttributeError, IndexError, KeyError, TypeError, ValueError) as exc:
            logger.warning("ETH price lookup failed: %s", exc)
            return None
        self._cached = (time.monotonic(), price)
        return price

    async def _get(self, url: str) -> dict:
        state = RetryState()
        while True:
            try:
                response = await self.session.get(url, params={"symbols": "ETH"})
                response.raise_for_status()
                return response.json()
            except httpx.HTTPError as exc:
                if not is_retryable(exc) or state.exhausted(self.max_retries):
                    raise
                delay = backoff_delay(state.attempt, base=self.backoff_base)
                logger.debug("ETH price request failed, retrying in %.1fs: %s", delay, exc)
                state = state.advance()
                await asyncio.sleep(delay)


def _parse_usd(payload: dict) -> float:
    entry = payload["data"][0]
    if entry.get("symbol") != "ETH":
        raise ValueError("ETH price missing from response")
    for price in entry.get("prices", []):
        if price.get("currency") == "usd":
            return float(price["value"])
    raise ValueError("USD price missing for ETH")
