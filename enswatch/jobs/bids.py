"""Scheduled bid polling job."""

from __future__ import annotations

import asyncio
import logging

import httpx
from dotenv import load_dotenv

from enswatch.db.session import create_engine_from_env
from enswatch.ingest.bids import BID_SOURCE, BidIngestor, BidSyncController, MagicEdenBidsClient, sync_lock
from enswatch.ingest.metadata import MetadataChain
from enswatch.ingest.models import IngestStats
from enswatch.ingest.prices import EthPriceClient
from enswatch.utils.settings import Settings, configure_logging

logger = logging.getLogger(__name__)


async def run_bid_sync(settings: Settings | None = None) -> IngestStats:
    load_dotenv()
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    engine = create_engine_from_env()

    async with httpx.AsyncClient(timeout=30.0) as session:
        fetcher = MagicEdenBidsClient(
            base_url=settings.magic_eden_base_url,
            api_key=settings.magic_eden_api_key,
            session=session,
            enabled=settings.toggles.magic_eden,
        )
        prices = None
        if settings.alchemy_api_key:
            prices = EthPriceClient(settings.alchemy_api_key, session=session, enabled=settings.toggles.alchemy)
        ingestor = BidIngestor(
            engine,
            BidSyncController(fetcher),
            MetadataChain.from_settings(settings, session),
            prices=prices,
            min_eth=settings.bids_min_eth,
            lock=sync_lock(BID_SOURCE),
        )
        stats = await ingestor.process_new_bids()
    logger.info("Bid sync finished: %s", stats.as_dict())
    return stats


if __name__ == "__main__":
    asyncio.run(run_bid_sync())
