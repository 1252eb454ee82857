import asyncio

import httpx
import pytest
import respx

from enswatch.db.records import RecordStore
from enswatch.ingest.bids import BID_SOURCE, sync_lock
from enswatch.jobs import bids as bids_job
from enswatch.utils.settings import ApiToggles, Settings
from payloads import BIDS_URL, MINUTE_MS, NOW_MS, bid_record, page_response


@pytest.mark.asyncio
async def test_run_bid_sync_records_watermark(monkeypatch, engine):
    monkeypatch.setattr(bids_job, "create_engine_from_env", lambda: engine)
    settings = Settings(toggles=ApiToggles(opensea=False, ens_metadata=False, alchemy=False))
    records = [bid_record(i, NOW_MS - (i + 1) * MINUTE_MS) for i in range(3)]
    async with respx.mock(assert_all_called=True) as router:
        route = router.get(BIDS_URL).mock(return_value=httpx.Response(200, json=page_response(records)))
        stats = await bids_job.run_bid_sync(settings)
    assert route.call_count == 1
    # these bids predate the first run's boundary, so only the watermark moves
    assert stats.processed == 0
    assert RecordStore(engine).get_watermark() == NOW_MS - MINUTE_MS


@pytest.mark.asyncio
async def test_disabled_source_leaves_watermark_unset(monkeypatch, engine):
    monkeypatch.setattr(bids_job, "create_engine_from_env", lambda: engine)
    settings = Settings(toggles=ApiToggles(magic_eden=False))
    async with respx.mock(assert_all_called=False):
        stats = await bids_job.run_bid_sync(settings)
    assert stats.processed == 0
    assert RecordStore(engine).get_watermark() is None


@pytest.mark.asyncio
async def test_overlapping_runs_poll_the_source_once(monkeypatch, engine):
    monkeypatch.setattr(bids_job, "create_engine_from_env", lambda: engine)
    settings = Settings(toggles=ApiToggles(opensea=False, ens_metadata=False, alchemy=False))
    records = [bid_record(i, NOW_MS - (i + 1) * MINUTE_MS) for i in range(3)]
    async with respx.mock(assert_all_called=True) as router:
        route = router.get(BIDS_URL).mock(return_value=httpx.Response(200, json=page_response(records)))
        await asyncio.gather(bids_job.run_bid_sync(settings), bids_job.run_bid_sync(settings))
    assert route.call_count == 1
    assert not sync_lock(BID_SOURCE).locked()
    assert RecordStore(engine).get_watermark() == NOW_MS - MINUTE_MS
