"""Sales ingestion from Seaport settlement webhooks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

import httpx
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from enswatch.db.records import RecordStore
from enswatch.ingest import contract_address
from enswatch.ingest.metadata import MetadataChain
from enswatch.ingest.models import IngestStats, Sale
from enswatch.ingest.prices import EthPriceClient
from enswatch.ingest.webhooks import SettlementBatch
from enswatch.utils.dates import utc_now_iso
from enswatch.utils.units import format_eth, parse_int, usd_value, wei_to_eth

logger = logging.getLogger(__name__)

NATIVE_ITEM_TYPE = 0
MIN_PRICE_ETH = Decimal("0.01")


class SaleSkipped(ValueError):
    """Settlement that is not a storable name sale."""


def _is_payment(item: Mapping[str, Any], weth: str) -> bool:
    return item.get("itemType") == NATIVE_ITEM_TYPE or (item.get("token") or "").lower() == weth


def _items(order: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    items = order.get(key) or []
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, Mapping)]


def extract_sale(
    order: Mapping[str, Any],
    *,
    asset_contracts: Iterable[str] | None = None,
    weth: str | None = None,
) -> Sale:
    """Build an unenriched Sale from one settlement record.

    Raises SaleSkipped with the reason when the order is not an ETH or WETH
    sale of a monitored name, or is below the minimum price.
    """
    if asset_contracts is None:
        asset_contracts = (contract_address("registrar"), contract_address("wrapper"))
    assets = {address.lower() for address in asset_contracts}
    weth = (weth or contract_address("currency")).lower()
    offer = _items(order, "offer")
    consideration = _items(order, "consideration")

    asset = next(
        (item for item in [*offer, *consideration] if (item.get("token") or "").lower() in assets),
        None,
    )
    if asset is None:
        raise SaleSkipped("not a monitored name token")

    paid_in_consideration = [item for item in consideration if _is_payment(item, weth)]
    paid_in_offer = [item for item in offer if _is_payment(item, weth)]
    payments = paid_in_consideration + paid_in_offer
    if not payments:
        raise SaleSkipped("no ETH/WETH payments found")

    total_wei = sum(parse_int(item.get("amount")) for item in payments)
    price = wei_to_eth(total_wei)
    if price < MIN_PRICE_ETH:
        raise SaleSkipped(f"price {price} ETH below {MIN_PRICE_ETH} ETH minimum")

    # the seller receives the largest payment; fees go to the smaller ones
    recipients = paid_in_consideration or paid_in_offer
    main_payment = max(recipients, key=lambda item: parse_int(item.get("amount")))
    seller = (main_payment.get("recipient") or order.get("offerer") or "").lower()
    buyer = (order.get("recipient") or "").lower()
    if buyer and buyer == seller:
        logger.warning("Buyer and seller are both %s in %s", buyer, order.get("txHash"))

    return Sale(
        transaction_hash=order["txHash"],
        log_index=parse_int(order.get("logIndex")),
        contract_address=(asset.get("token") or "").lower(),
        token_id=str(parse_int(asset.get("identifier"))),
        buyer_address=buyer,
        seller_address=seller,
        price_eth=format_eth(total_wei),
        block_number=parse_int(order.get("blockNumber")),
        block_timestamp=utc_now_iso(),
        processed_at=utc_now_iso(),
    )


class SalesIngestor:
    def __init__(
        self,
        engine: Engine,
        chain: MetadataChain,
        *,
        prices: EthPriceClient | None = None,
    ) -> None:
        self.store = RecordStore(engine)
        self.chain = chain
        self.prices = prices

    async def ingest(self, batch: SettlementBatch) -> IngestStats:
        stats = IngestStats()
        logger.info("Processing %s settlement records", len(batch.records))
        for order in batch.records:
            stats.processed += 1
            try:
                await self._process_order(order, stats)
            except (AttributeError, KeyError, TypeError, ValueError, SQLAlchemyError, httpx.HTTPError) as exc:
                stats.errors += 1
                logger.error("Error processing order %s: %s", order.get("orderHash"), exc)
        logger.info(
            "Sales processing complete: %s stored, %s duplicates, %s skipped, %s dropped, %s errors",
            stats.stored, stats.duplicates, stats.skipped, stats.dropped, stats.errors,
        )
        return stats

    async def _process_order(self, order: Mapping[str, Any], stats: IngestStats) -> None:
        try:
            sale = extract_sale(order)
        except SaleSkipped as exc:
            stats.skipped += 1
            logger.info("Skipped order %s: %s", order.get("orderHash"), exc)
            return

        loop = asyncio.get_running_loop()
        if await loop.run_in_executor(None, self.store.sale_exists, sale.transaction_hash, sale.log_index):
            stats.duplicates += 1
            logger.info("Sale %s:%s already processed", sale.transaction_hash, sale.log_index)
            return

        metadata = await self.chain.lookup(sale.token_id, sale.contract_address)
        if metadata is None:
            stats.dropped += 1
            logger.error("No name found for token %s, dropping sale %s", sale.token_id, sale.transaction_hash)
            return
        sale.nft_name = metadata.name
        sale.nft_image = metadata.image
        sale.collection_name = metadata.collection or "ENS"
        if self.prices:
            sale.price_usd = usd_value(sale.price_eth, await self.prices.eth_usd())

        outcome = await loop.run_in_executor(None, self.store.insert_sale, sale)
        stats.record(outcome)
        logger.info("Sale %s %s: %s ETH", sale.nft_name, outcome.value, sale.price_eth)
