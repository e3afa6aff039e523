"""Catalog sync job orchestration."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from feedsync.config import ConfigError, Settings, load_settings
from feedsync.ingest import load_vocabulary
from feedsync.ingest.feed import FeedError, FeedReader
from feedsync.logic.grouping import group_items
from feedsync.logic.reconcile import REMOTE_ERRORS, Reconciler, SyncContext, SyncResult
from feedsync.logic.report import write_sync_report
from feedsync.shopify.client import ShopifyAdminClient
from feedsync.utils.rate_limit import RateLimiter
from feedsync.utils.text import clip

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_client(settings: Settings) -> ShopifyAdminClient:
    return ShopifyAdminClient(
        settings.shop_domain,
        settings.access_token,
        api_version=settings.api_version,
        rate_limiter=RateLimiter(rate=settings.requests_per_second),
        max_attempts=settings.max_attempts,
    )


async def run_sync(
    settings: Settings | None = None,
    *,
    reader: FeedReader | None = None,
    client: ShopifyAdminClient | None = None,
) -> list[SyncResult]:
    if settings is None:
        load_dotenv()
        settings = load_settings()
    vocab = load_vocabulary()
    reader = reader or FeedReader()
    client = client or build_client(settings)

    results: list[SyncResult] = []
    try:
        items = await reader.read(settings.feed_url)
        products = group_items(
            items,
            vocab,
            include_finish=settings.finish_in_family_key,
            default_vendor=settings.default_vendor,
        )
        reconciler = Reconciler(SyncContext(client, settings, vocab))
        for position, product in enumerate(products, start=1):
            try:
                results.append(await reconciler.reconcile(product))
            except REMOTE_ERRORS as exc:
                message = clip(str(exc), 200)
                logger.warning("Skipping %s: %s", product.title, message)
                results.append(
                    SyncResult(family_key=product.family_key, title=product.title, action="failed", failures=[message])
                )
            if position % settings.batch_size == 0 and position < len(products):
                logger.debug("Batch of %s done, pausing %.1fs", settings.batch_size, settings.batch_pause)
                await asyncio.sleep(settings.batch_pause)
    finally:
        await reader.close()
        await client.close()

    synced = sum(1 for result in results if result.action in {"created", "updated"})
    logger.info("Processed %s/%s products", synced, len(results))
    if settings.report_dir:
        path = write_sync_report(results, Path(settings.report_dir))
        logger.info("Report written to %s", path)
    return results


def main() -> None:
    load_dotenv()
    try:
        settings = load_settings()
    except ConfigError as exc:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logger.error("%s", exc)
        sys.exit(1)
    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO, format=LOG_FORMAT)
    try:
        asyncio.run(run_sync(settings))
    except FeedError as exc:
        logger.error("Feed unavailable, nothing synced: %s", exc)
        sys.exit(1)
    except Exception:
        logger.exception("Sync aborted")
        sys.exit(1)


if __name__ == "__main__":
    main()
