"""CSV report of a sync run."""

from __future__ import annotations

import csv
from datetime import date
from pathlib import Path
from typing import Iterable

from feedsync.logic.reconcile import SyncResult
from feedsync.utils.dates import format_date, today_in_tz

CSV_COLUMNS = [
    "date",
    "family_key",
    "title",
    "action",
    "product_id",
    "variants_created",
    "variants_updated",
    "images_uploaded",
    "images_deleted",
    "status",
    "failures",
]


def write_sync_report(results: Iterable[SyncResult], output_dir: Path, *, as_of: date | None = None) -> Path:
    run_date = as_of or today_in_tz()
    output_dir.mkdir(parents=True, exist_ok=True)
    file_path = output_dir / f"sync-{format_date(run_date)}.csv"
    with file_path.open("w", newline="", encoding="utf-8") as csvfile:
        writer = csv.DictWriter(csvfile, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        writer.writerows(_rows(results, run_date))
    return file_path


def _rows(results: Iterable[SyncResult], run_date: date) -> Iterable[dict[str, object]]:
    for result in results:
        yield {
            "date": format_date(run_date),
            "family_key": result.family_key,
            "title": result.title,
            "action": result.action,
            "product_id": result.product_id,
            "variants_created": result.variants_created,
            "variants_updated": result.variants_updated,
            "images_uploaded": result.images_uploaded,
            "images_deleted": result.images_deleted,
            "status": result.status,
            "failures": " | ".join(result.failures),
        }
