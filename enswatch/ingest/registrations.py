"""Name registration ingestion from raw controller logs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

import httpx
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from enswatch.db.records import RecordStore
from enswatch.ingest import contract_address
from enswatch.ingest.abi import AbiLayout, UNKNOWN_NAME, controller_layouts, decode_registration_data
from enswatch.ingest.metadata import MetadataChain
from enswatch.ingest.models import IngestStats, Registration
from enswatch.ingest.prices import EthPriceClient
from enswatch.ingest.webhooks import RawLogBatch
from enswatch.utils.dates import unix_to_iso, utc_now_iso
from enswatch.utils.units import format_eth, parse_int, usd_value

logger = logging.getLogger(__name__)

ADDRESS_HEX = 40


def topic_to_address(topic: str) -> str:
    """Strip the 12 bytes of left padding from an indexed address topic."""
    return "0x" + topic[-ADDRESS_HEX:].lower()


def extract_registration(
    log: Mapping[str, Any],
    block: Mapping[str, Any] | None = None,
    layouts: Mapping[str, AbiLayout] | None = None,
) -> Registration:
    """Build an unenriched Registration from a raw log.

    Raises ValueError when the log lacks the indexed label and owner topics.
    """
    block = block or {}
    topics = log.get("topics") or []
    if len(topics) < 3:
        raise ValueError(f"expected 3 topics, got {len(topics)}")
    contract = (log.get("address") or log.get("contract") or "").lower()
    fields = decode_registration_data(log.get("data") or "", contract, layouts)
    cost_wei = parse_int(fields.cost)
    block_timestamp = log.get("blockTimestamp") or block.get("timestamp")
    return Registration(
        transaction_hash=log.get("transactionHash") or log.get("txHash") or "",
        contract_address=contract,
        token_id=str(int(topics[1], 16)),
        ens_name=fields.name,
        full_name=f"{fields.name}.eth",
        owner_address=topic_to_address(topics[2]),
        cost_wei=str(cost_wei),
        cost_eth=format_eth(cost_wei, places=6),
        block_number=parse_int(log.get("blockNumber") or block.get("number")),
        block_timestamp=unix_to_iso(parse_int(block_timestamp)) if block_timestamp else utc_now_iso(),
        processed_at=utc_now_iso(),
        expires_at=unix_to_iso(fields.expires) if fields.expires else None,
    )


class RegistrationIngestor:
    def __init__(
        self,
        engine: Engine,
        chain: MetadataChain,
        *,
        prices: EthPriceClient | None = None,
        layouts: Mapping[str, AbiLayout] | None = None,
    ) -> None:
        self.store = RecordStore(engine)
        self.chain = chain
        self.prices = prices
        self.layouts = controller_layouts() if layouts is None else layouts
        self.registrar = contract_address("registrar")

    async def ingest(self, batch: RawLogBatch) -> IngestStats:
        stats = IngestStats()
        logger.info("Processing %s registration logs", len(batch.records))
        for log in batch.records:
            stats.processed += 1
            try:
                await self._process_log(log, batch.block, stats)
            except (KeyError, TypeError, ValueError, SQLAlchemyError, httpx.HTTPError) as exc:
                stats.errors += 1
                logger.error("Error processing registration log %s: %s", log.get("transactionHash"), exc)
        logger.info(
            "Registrations complete: %s stored, %s duplicates, %s errors",
            stats.stored, stats.duplicates, stats.errors,
        )
        return stats

    async def _process_log(self, log: Mapping[str, Any], block: Mapping[str, Any], stats: IngestStats) -> None:
        registration = extract_registration(log, block, self.layouts)
        loop = asyncio.get_running_loop()
        if await loop.run_in_executor(None, self.store.registration_exists, registration.token_id):
            stats.duplicates += 1
            logger.info("Registration %s already processed, skipping", registration.full_name)
            return

        if registration.ens_name == UNKNOWN_NAME:
            logger.warning("Undecodable registration in %s, storing for audit", registration.transaction_hash)
        metadata = await self.chain.lookup(registration.token_id, self.registrar)
        if metadata:
            registration.full_name = metadata.name or registration.full_name
            registration.image = metadata.image
            registration.description = metadata.description
        else:
            logger.warning("No metadata for %s, using placeholder name", registration.full_name)
        if self.prices:
            registration.cost_usd = usd_value(registration.cost_eth, await self.prices.eth_usd())

        outcome = await loop.run_in_executor(None, self.store.insert_registration, registration)
        stats.record(outcome)
        logger.info(
            "Registration %s %s: %s ETH by %s",
            registration.full_name, outcome.value, registration.cost_eth, registration.owner_address,
        )
