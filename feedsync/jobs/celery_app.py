"""Celery configuration for the scheduled catalog sync."""

from __future__ import annotations

import os

from celery import Celery
from celery.schedules import crontab

from feedsync.utils.dates import timezone_name

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")

celery_app = Celery("feedsync", broker=broker_url, backend=backend_url, include=["feedsync.jobs.sync"])
celery_app.conf.timezone = timezone_name()
celery_app.conf.beat_schedule = {
    "catalog-sync": {
        "task": "feedsync.jobs.sync.run_sync",
        "schedule": crontab(hour=os.environ.get("SYNC_HOUR", "*/6"), minute=os.environ.get("SYNC_MINUTE", "15")),
    },
}


@celery_app.task(name="feedsync.jobs.sync.run_sync")
def run_sync_task() -> int:  # pragma: no cover - executed by worker
    import asyncio

    from feedsync.jobs.sync import run_sync

    results = asyncio.run(run_sync())
    return len(results)
