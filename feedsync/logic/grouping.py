"""Merge feed items into logical products keyed by family."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Sequence

from feedsync.ingest.models import ColorBucket, FeedItem, FeedVariant, LogicalProduct, Vocabulary
from feedsync.logic.normalize import ItemTraits, describe_item, tag_safe
from feedsync.utils.text import fold

logger = logging.getLogger(__name__)

SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
QUANTITY_CAP = 1000


def image_signature(url: str) -> str:
    return SCHEME_RE.sub("", (url or "").strip()).lower()


def variant_rank(variant: FeedVariant) -> tuple[bool, bool, int]:
    """Completeness score: barcode, then a real price, then stock."""
    return (bool(variant.barcode), variant.price > 0, min(max(variant.quantity, 0), QUANTITY_CAP))


def _variant_key(variant: FeedVariant) -> tuple[str, str]:
    return fold(variant.color), fold(variant.size)


def merge_variant(bucket: ColorBucket, variant: FeedVariant) -> None:
    key = _variant_key(variant)
    for index, existing in enumerate(bucket.variants):
        if _variant_key(existing) == key:
            if variant_rank(variant) >= variant_rank(existing):
                bucket.variants[index] = variant
            return
    bucket.variants.append(variant)


def merge_images(bucket: ColorBucket, urls: Iterable[str]) -> None:
    known = {image_signature(url) for url in bucket.images}
    for url in urls:
        signature = image_signature(url)
        if signature and signature not in known:
            known.add(signature)
            bucket.images.append(url)


def _bucket(product: LogicalProduct, color: str) -> ColorBucket:
    key = fold(color)
    bucket = product.buckets.get(key)
    if bucket is None:
        bucket = product.buckets[key] = ColorBucket(label=color)
    return bucket


def _new_product(item: FeedItem, traits: ItemTraits, default_vendor: str) -> LogicalProduct:
    code = traits.model_code
    tags = [
        f"brand:{tag_safe(item.brand)}" if item.brand else "",
        f"mpn:{tag_safe(code)}" if code else "",
        f"family:{traits.family_key}",
        "from:xml",
    ]
    tags.append(traits.product_type)
    return LogicalProduct(
        family_key=traits.family_key,
        title=traits.title,
        vendor=item.brand or default_vendor,
        product_type=traits.product_type,
        description=item.description,
        model_code=code,
        series=traits.series,
        finish=traits.finish.value if traits.finish else None,
        tags=[tag for tag in tags if tag],
    )


def group_items(
    items: Sequence[FeedItem],
    vocab: Vocabulary,
    *,
    include_finish: bool = False,
    default_vendor: str = "SoleDerva",
) -> list[LogicalProduct]:
    products: dict[str, LogicalProduct] = {}
    for item in items:
        traits = describe_item(item, vocab, include_finish=include_finish)
        product = products.get(traits.family_key)
        if product is None:
            product = products[traits.family_key] = _new_product(item, traits, default_vendor)
        else:
            product.description = product.description or item.description
            product.finish = product.finish or (traits.finish.value if traits.finish else None)

        item_color = traits.color.value if traits.color else ""
        touched: list[ColorBucket] = []
        for variant in item.variants:
            variant.color = variant.color or item_color
            bucket = _bucket(product, variant.color)
            merge_variant(bucket, variant)
            if not any(seen is bucket for seen in touched):
                touched.append(bucket)
        if not touched:
            touched.append(_bucket(product, item_color))
        for bucket in touched:
            merge_images(bucket, item.images)

    grouped = list(products.values())
    logger.info("Grouped %s feed items into %s products", len(items), len(grouped))
    return grouped
