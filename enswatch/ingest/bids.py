"""Marketplace bid polling.

The listing endpoint only exposes offset pagination over active bids sorted
newest first. Consecutive pages are requested with a small overlap so a bid
inserted at the head of the list between two requests shifts items into the
overlap instead of past it; the overlap duplicates are dropped by id.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from enswatch.db.records import RecordStore
from enswatch.ingest import load_contracts
from enswatch.ingest.metadata import MetadataChain
from enswatch.ingest.models import Bid, BidPage, IngestStats, StopReason, SyncResult
from enswatch.ingest.prices import EthPriceClient
from enswatch.utils.dates import iso_to_unix, ms_to_iso, now_ms, utc_now_iso
from enswatch.utils.retry import RetryState, backoff_delay, is_retryable
from enswatch.utils.settings import DEFAULT_MAGIC_EDEN_URL
from enswatch.utils.units import usd_value

logger = logging.getLogger(__name__)

MAX_PAGE_LIMIT = 100
DEFAULT_PAGE_LIMIT = 50
MIN_PAGE_LIMIT = 10
PAGE_OVERLAP = 5
MAX_PAGES = 20
MAX_STALE_PAGES = 3

LOOKBACK_MS = 60 * 60 * 1000
MAX_BID_AGE_MS = 24 * 60 * 60 * 1000
ETH_SYMBOLS = {"ETH", "WETH"}
STABLECOIN_SYMBOLS = {"USDC", "USDT"}
STABLECOIN_MIN = Decimal(100)
DEFAULT_MIN = Decimal("0.4")
BID_SOURCE = "magic_eden"

_sync_locks: dict[str, asyncio.Lock] = {}


def sync_lock(source: str = BID_SOURCE) -> asyncio.Lock:
    """Lock shared by every ingestor in this process that polls ``source``."""
    if source not in _sync_locks:
        _sync_locks[source] = asyncio.Lock()
    return _sync_locks[source]


def transform_bid(record: Mapping[str, Any]) -> Bid:
    """Map one listing record (``{"bid": {...}}`` or the bare bid) to a Bid."""
    raw = record.get("bid", record)
    price = raw["priceV2"]
    amount = price["amount"]
    currency = price["currency"]
    fees = raw.get("maxFees") or {}
    criteria = raw.get("criteria") or {}
    asset_id = criteria.get("assetId") or ""
    token_id = None
    if criteria.get("type", "ASSET") != "COLLECTION" and ":" in asset_id:
        token_id = asset_id.split(":", 1)[1] or None
    valid_from = iso_to_unix(raw["expiry"]["validFrom"])
    valid_until = iso_to_unix(raw["expiry"]["validUntil"])
    if valid_from > valid_until:
        raise ValueError(f"bid {raw['id']} has validFrom after validUntil")
    source = raw.get("source") or ""
    fiat_usd = (amount.get("fiat") or {}).get("usd")
    return Bid(
        bid_id=raw["id"],
        contract_address=(raw.get("contract") or "").lower(),
        token_id=token_id,
        maker_address=(raw.get("maker") or "").lower(),
        taker_address=None,
        status=raw.get("status", "active"),
        price_raw=str(amount["raw"]),
        price_decimal=str(amount["native"]),
        price_usd=str(fiat_usd) if fiat_usd is not None else None,
        currency_contract=(currency.get("contract") or "").lower(),
        currency_symbol=currency.get("symbol") or "ETH",
        source_domain=f"{source.lower()}.io" if source else None,
        source_name=source or None,
        marketplace_fee=sum(
            int(fees.get(key) or 0)
            for key in ("royaltyBp", "makerMarketplaceBp", "takerMarketplaceBp", "lpFeeBp")
        ),
        created_at_api=raw["createdAt"],
        updated_at_api=raw.get("updatedAt") or raw["createdAt"],
        valid_from=valid_from,
        valid_until=valid_until,
        processed_at=utc_now_iso(),
    )


class MagicEdenBidsClient:
    """Fetches single pages of active bids for the monitored collections."""

    def __init__(
        self,
        contracts: Sequence[str] | None = None,
        *,
        base_url: str = DEFAULT_MAGIC_EDEN_URL,
        api_key: str | None = None,
        session: httpx.AsyncClient | None = None,
        enabled: bool = True,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        backoff_cap: float = 5.0,
    ) -> None:
        if contracts is None:
            contracts = [c.address.lower() for c in load_contracts() if c.role in {"registrar", "wrapper"}]
        self.contracts = list(contracts)
        self.url = f"{base_url.rstrip('/')}/bids"
        self.api_key = api_key
        self.enabled = enabled
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.session = session or httpx.AsyncClient(timeout=30.0)

    async def close(self) -> None:
        await self.session.aclose()

    async def fetch_page(self, offset: int = 0, limit: int = DEFAULT_PAGE_LIMIT) -> BidPage:
        """Return one page; a request that cannot be completed yields a failed page, never an error."""
        if not self.enabled:
            logger.info("Magic Eden disabled, returning empty bids page")
            return BidPage.empty(limit)
        state = RetryState(limit=min(limit, MAX_PAGE_LIMIT), min_limit=MIN_PAGE_LIMIT)
        while True:
            try:
                response = await self.session.get(
                    self.url, params=self._params(offset, state.limit), headers=self._headers()
                )
                response.raise_for_status()
                payload = response.json()
            except (httpx.TransportError, httpx.HTTPStatusError) as exc:
                if not is_retryable(exc):
                    logger.error("Bids request at offset %s rejected: %s", offset, exc)
                    return BidPage.failure(state.limit)
                if state.exhausted(self.max_retries):
                    logger.error(
                        "Bids request at offset %s failed after %s attempts: %s",
                        offset, state.attempt + 1, exc,
                    )
                    return BidPage.failure(state.limit)
                delay = backoff_delay(state.attempt, base=self.backoff_base, cap=self.backoff_cap)
                next_state = state.advance(timed_out=isinstance(exc, httpx.TimeoutException))
                if next_state.limit != state.limit:
                    logger.warning("Timeout, reducing page size from %s to %s", state.limit, next_state.limit)
                logger.warning(
                    "Bids request failed (attempt %s/%s), retrying in %.1fs: %s",
                    state.attempt + 1, self.max_retries + 1, delay, exc,
                )
                state = next_state
                await asyncio.sleep(delay)
                continue
            except ValueError:
                logger.error("Bids response at offset %s is not JSON", offset)
                return BidPage.failure(state.limit)
            return self._parse_page(payload, offset, state.limit)

    def _params(self, offset: int, limit: int) -> list[tuple[str, str]]:
        params = [("collectionIds[]", f"ethereum:{contract}") for contract in self.contracts]
        params += [
            ("sortBy", "createdAt"),
            ("sortDir", "desc"),
            ("limit", str(limit)),
            ("offset", str(offset)),
        ]
        return params

    def _headers(self) -> dict[str, str]:
        if self.api_key:
            return {"Authorization": f"Bearer {self.api_key}"}
        return {}

    def _parse_page(self, payload: Any, offset: int, limit: int) -> BidPage:
        records = (payload.get("data") or []) if isinstance(payload, dict) else None
        if not isinstance(records, list):
            logger.error("Bids response at offset %s has no record list", offset)
            return BidPage.failure(limit)
        bids: list[Bid] = []
        for record in records:
            raw = record.get("bid", record) if isinstance(record, dict) else None
            if not isinstance(raw, dict):
                logger.warning("Skipping non-object bid record at offset %s", offset)
                continue
            if raw.get("status") != "active":
                continue
            try:
                bids.append(transform_bid(record))
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed bid record %s: %s", raw.get("id"), exc)
        next_offset = offset + limit - PAGE_OVERLAP if len(records) >= limit else None
        logger.info("Retrieved %s bids at offset %s (%s active)", len(records), offset, len(bids))
        return BidPage(bids=bids, next_offset=next_offset, limit=limit)


class BidSyncController:
    """Walks bid pages newest first until the boundary timestamp is reached."""

    def __init__(
        self,
        fetcher: MagicEdenBidsClient,
        *,
        page_limit: int = DEFAULT_PAGE_LIMIT,
        max_pages: int = MAX_PAGES,
        max_stale_pages: int = MAX_STALE_PAGES,
        page_delay: float = 1.0,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.fetcher = fetcher
        self.page_limit = page_limit
        self.max_pages = max_pages
        self.max_stale_pages = max_stale_pages
        self.page_delay = page_delay
        self._clock = clock

    async def collect_since(self, boundary_ms: int) -> SyncResult:
        seen: set[str] = set()
        kept: list[Bid] = []
        newest_seen: int | None = None
        offset = 0
        pages = 0
        stale_pages = 0
        while True:
            page = await self.fetcher.fetch_page(offset, self.page_limit)
            pages += 1
            if page.failed:
                logger.warning("Page at offset %s could not be fetched, stopping pagination", offset)
                reason = StopReason.FETCH_FAILED
                break
            if not page.bids:
                reason = StopReason.EMPTY_PAGE
                break

            now = self._clock()
            fresh = duplicates = too_old = expiring = 0
            oldest: int | None = None
            for bid in page.bids:
                created = bid.created_at_ms()
                oldest = created if oldest is None else min(oldest, created)
                if bid.bid_id in seen:
                    duplicates += 1
                    continue
                seen.add(bid.bid_id)
                # watermark candidate covers filtered bids too
                if newest_seen is None or created > newest_seen:
                    newest_seen = created
                if created <= boundary_ms:
                    too_old += 1
                    continue
                if not bid.is_postable(now):
                    expiring += 1
                    continue
                kept.append(bid)
                fresh += 1
            logger.debug(
                "Page %s (offset %s): %s bids, %s new, %s duplicates, %s too old, %s expiring",
                pages, offset, len(page.bids), fresh, duplicates, too_old, expiring,
            )

            if fresh == 0:
                stale_pages += 1
                if stale_pages >= self.max_stale_pages:
                    logger.info("Stopping after %s consecutive pages with no new bids", stale_pages)
                    reason = StopReason.STALE_PAGES
                    break
            else:
                stale_pages = 0
            if oldest is not None and oldest <= boundary_ms:
                reason = StopReason.BOUNDARY
                break
            if page.next_offset is None:
                reason = StopReason.END_OF_DATA
                break
            if pages >= self.max_pages:
                logger.warning("Hit max pages limit (%s), stopping pagination", self.max_pages)
                reason = StopReason.PAGE_CEILING
                break
            offset = page.next_offset
            await asyncio.sleep(self.page_delay)

        logger.info("Paginated %s pages, kept %s of %s bids (%s)", pages, len(kept), len(seen), reason.value)
        return SyncResult(
            bids=kept,
            newest_seen_ms=newest_seen,
            pages=pages,
            observed=len(seen),
            stop_reason=reason,
        )


class BidIngestor:
    def __init__(
        self,
        engine: Engine,
        controller: BidSyncController,
        chain: MetadataChain,
        *,
        prices: EthPriceClient | None = None,
        min_eth: float = float(DEFAULT_MIN),
        clock: Callable[[], int] = now_ms,
        lock: asyncio.Lock | None = None,
    ) -> None:
        self.store = RecordStore(engine)
        self.controller = controller
        self.chain = chain
        self.prices = prices
        self.min_eth = Decimal(str(min_eth))
        self._clock = clock
        self._lock = lock if lock is not None else sync_lock()

    async def process_new_bids(self) -> IngestStats:
        stats = IngestStats()
        if self._lock.locked():
            logger.warning("Bid sync already running, skipping this trigger")
            return stats
        async with self._lock:
            await self._sync(stats)
        return stats

    async def _sync(self, stats: IngestStats) -> None:
        loop = asyncio.get_running_loop()
        previous = await loop.run_in_executor(None, self.store.get_watermark)
        now = self._clock()
        boundary = max(now if previous is None else previous, now - LOOKBACK_MS)
        logger.info("Syncing bids newer than %s", ms_to_iso(boundary))

        result = await self.controller.collect_since(boundary)
        for bid in sorted(result.bids, key=lambda b: b.created_at_ms()):
            stats.processed += 1
            try:
                await self._process_bid(bid, stats, now)
            except (SQLAlchemyError, httpx.HTTPError) as exc:
                stats.errors += 1
                logger.error("Failed to process bid %s: %s", bid.bid_id, exc)

        if result.newest_seen_ms is None:
            logger.info("No bids observed, watermark unchanged")
        elif result.stop_reason is StopReason.FETCH_FAILED:
            logger.warning("Bid listing fetch failed mid-run, leaving watermark for the next run to re-scan")
        elif stats.errors:
            logger.warning("%s bids failed, leaving watermark for the next run to re-scan", stats.errors)
        else:
            watermark = max(result.newest_seen_ms, previous or 0)
            await loop.run_in_executor(None, self.store.set_watermark, watermark)
            logger.info("Watermark advanced to %s", ms_to_iso(watermark))
        logger.info(
            "Bids sync complete: %s new, %s duplicates, %s filtered, %s errors",
            stats.stored, stats.duplicates, stats.skipped, stats.errors,
        )

    async def _process_bid(self, bid: Bid, stats: IngestStats, now: int) -> None:
        loop = asyncio.get_running_loop()
        if await loop.run_in_executor(None, self.store.bid_exists, bid.bid_id):
            logger.debug("Bid %s already processed, skipping", bid.bid_id)
            stats.duplicates += 1
            return
        reason = self.rejection_reason(bid, now)
        if reason:
            logger.debug("Bid %s filtered out: %s", bid.bid_id, reason)
            stats.skipped += 1
            return
        if bid.token_id and not (bid.ens_name and bid.nft_image):
            metadata = await self.chain.lookup(bid.token_id, bid.contract_address)
            if metadata:
                bid.ens_name = bid.ens_name or metadata.name
                bid.nft_image = bid.nft_image or metadata.image
                bid.nft_description = metadata.description
        if not bid.price_usd and bid.currency_symbol in ETH_SYMBOLS and self.prices:
            bid.price_usd = usd_value(bid.price_decimal, await self.prices.eth_usd())
        outcome = await loop.run_in_executor(None, self.store.insert_bid, bid)
        stats.record(outcome)
        logger.info("Bid %s %s: %s %s", bid.bid_id, outcome.value, bid.price_decimal, bid.currency_symbol)

    def rejection_reason(self, bid: Bid, now: int) -> str | None:
        if bid.status != "active":
            return f"status {bid.status}"
        if not bid.token_id:
            return "no token id"
        if now - bid.created_at_ms() > MAX_BID_AGE_MS:
            return "older than 24h"
        try:
            price = Decimal(bid.price_decimal)
        except InvalidOperation:
            return f"unparseable price {bid.price_decimal!r}"
        if bid.currency_symbol in ETH_SYMBOLS:
            minimum = self.min_eth
        elif bid.currency_symbol in STABLECOIN_SYMBOLS:
            minimum = STABLECOIN_MIN
        else:
            minimum = DEFAULT_MIN
        if price < minimum:
            return f"{price} {bid.currency_symbol} below {minimum}"
        return None
