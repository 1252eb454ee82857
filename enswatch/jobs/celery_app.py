"""Celery configuration for scheduled jobs."""

from __future__ import annotations

import os

from celery import Celery
from celery.schedules import crontab

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")

celery_app = Celery("enswatch", broker=broker_url, backend=backend_url, include=["enswatch.jobs.bids"])
celery_app.conf.timezone = "UTC"
celery_app.conf.beat_schedule = {
    "bid-sync": {
        "task": "enswatch.jobs.bids.run_bid_sync",
        "schedule": crontab(minute=f"*/{int(os.environ.get('BID_SYNC_MINUTES', '2'))}"),
    },
}


@celery_app.task(name="enswatch.jobs.bids.run_bid_sync")
def run_bid_sync_task():  # pragma: no cover - executed by worker
    import asyncio

    from enswatch.jobs.bids import run_bid_sync

    asyncio.run(run_bid_sync())
