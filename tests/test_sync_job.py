import csv
import dataclasses
import logging
from datetime import date

import httpx
import pytest

from feedsync.config import ConfigError, load_settings
from feedsync.ingest.feed import FeedError, FeedReader
from feedsync.jobs import sync
from feedsync.logic.reconcile import SyncResult
from feedsync.logic.report import CSV_COLUMNS, write_sync_report
from feedsync.utils.dates import DEFAULT_TZ, format_date, timezone_name, today_in_tz

from conftest import load_fixture

REQUIRED_ENV = {
    "SHOP_DOMAIN": "test-shop",
    "SHOPIFY_ACCESS_TOKEN": "shpat_test",
    "FEED_URL": "https://feed.example.com/products.xml",
}


def fixture_reader():
    def serve(request):
        return httpx.Response(200, content=load_fixture("feed/products.xml"))

    return FeedReader(session=httpx.AsyncClient(transport=httpx.MockTransport(serve)))


def test_load_settings_defaults_and_flags():
    settings = load_settings({**REQUIRED_ENV, "CLEANUP_IMAGES": "yes", "BATCH_SIZE": "0", "LOOKUP_STRATEGY": "SKU"})
    assert settings.cleanup_images
    assert not settings.publish
    assert settings.batch_size == 1
    assert settings.lookup_strategy == "sku"
    assert settings.api_version == "2024-07"
    assert settings.report_dir is None


@pytest.mark.parametrize(
    "env",
    [
        {"SHOP_DOMAIN": "test-shop"},
        {**REQUIRED_ENV, "LOOKUP_STRATEGY": "barcode"},
        {**REQUIRED_ENV, "BATCH_SIZE": "many"},
    ],
)
def test_load_settings_rejects_bad_config(env):
    with pytest.raises(ConfigError):
        load_settings(env)


def test_write_sync_report(tmp_path):
    results = [
        SyncResult(family_key="ACME|MN002", title="Loafer", action="created", product_id=7, status="active"),
        SyncResult(family_key="ACME|RN210", title="Sneaker", action="failed", failures=["a", "b"]),
    ]
    path = write_sync_report(results, tmp_path / "reports", as_of=date(2026, 3, 1))

    assert path.name == "sync-2026-03-01.csv"
    with path.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.DictReader(handle))
    assert list(rows[0]) == CSV_COLUMNS
    assert rows[0]["product_id"] == "7"
    assert rows[1]["failures"] == "a | b"


@pytest.mark.parametrize("value, expected", [("", DEFAULT_TZ), ("Not/AZone", DEFAULT_TZ), ("UTC", "UTC")])
def test_timezone_name(monkeypatch, value, expected):
    monkeypatch.setenv("TIMEZONE", value)
    assert timezone_name() == expected


def test_today_in_tz_is_a_plain_date():
    today = today_in_tz("UTC")
    assert isinstance(today, date)
    assert format_date(date(2026, 3, 1)) == "2026-03-01"


@pytest.mark.asyncio
async def test_run_sync_end_to_end(shop_client, fake_shop, settings, tmp_path):
    run_settings = dataclasses.replace(settings, report_dir=str(tmp_path))

    results = await sync.run_sync(run_settings, reader=fixture_reader(), client=shop_client)

    assert [r.action for r in results] == ["created", "created"]
    assert len(fake_shop.products) == 2
    reports = list(tmp_path.glob("sync-*.csv"))
    assert len(reports) == 1
    with reports[0].open(newline="", encoding="utf-8") as handle:
        assert [row["family_key"] for row in csv.DictReader(handle)] == ["ACME|MN002", "ACME|RN210"]


@pytest.mark.asyncio
async def test_run_sync_isolates_product_failures(shop_client, fake_shop, settings):
    fake_shop.fail_paths[r"^/products\.json$"] = 500

    results = await sync.run_sync(settings, reader=fixture_reader(), client=shop_client)

    assert [r.action for r in results] == ["failed", "failed"]
    assert all(r.failures for r in results)
    assert fake_shop.products == {}


@pytest.mark.asyncio
async def test_run_sync_pauses_between_batches(shop_client, settings, caplog):
    batched = dataclasses.replace(settings, batch_size=1, batch_pause=0)

    with caplog.at_level(logging.DEBUG, logger="feedsync.jobs.sync"):
        await sync.run_sync(batched, reader=fixture_reader(), client=shop_client)

    pauses = [record for record in caplog.records if record.getMessage().startswith("Batch of 1 done")]
    # no pause after the final product
    assert len(pauses) == 1


def test_main_exits_on_missing_config(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for key in REQUIRED_ENV:
        monkeypatch.delenv(key, raising=False)

    with pytest.raises(SystemExit) as excinfo:
        sync.main()
    assert excinfo.value.code == 1


def test_main_exits_when_feed_is_unavailable(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for key, value in REQUIRED_ENV.items():
        monkeypatch.setenv(key, value)

    async def broken_run(settings):
        raise FeedError("HTTP 503")

    monkeypatch.setattr(sync, "run_sync", broken_run)
    with pytest.raises(SystemExit) as excinfo:
        sync.main()
    assert excinfo.value.code == 1


def test_beat_schedule_targets_sync_task():
    from feedsync.jobs.celery_app import celery_app, run_sync_task

    entry = celery_app.conf.beat_schedule["catalog-sync"]
    assert entry["task"] == run_sync_task.name == "feedsync.jobs.sync.run_sync"
