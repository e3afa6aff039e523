"""Converge the remote catalog onto grouped feed products.

One ``Reconciler.reconcile`` call walks a logical product through lookup,
shell create/update, variant sync, image sync and status finalization. Every
write is derived from a diff against the remote state read at the start, so a
second run over an unchanged feed issues no creates.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

import httpx

from feedsync.config import Settings
from feedsync.ingest.models import FeedVariant, LogicalProduct, Vocabulary
from feedsync.logic.grouping import image_signature
from feedsync.shopify.client import ShopifyAdminClient, ShopifyError
from feedsync.utils.retry import RetryExhausted
from feedsync.utils.text import clip, fold

logger = logging.getLogger(__name__)

REMOTE_ERRORS = (ShopifyError, RetryExhausted, httpx.HTTPError)
ALT_SIGNATURE_RE = re.compile(r"sig:(.+?)\s*$")
INDEX_FIELDS = "id,title,tags,variants"


@dataclass(slots=True)
class SyncResult:
    family_key: str
    title: str
    action: str = "skipped"
    product_id: int | None = None
    variants_created: int = 0
    variants_updated: int = 0
    images_uploaded: int = 0
    images_deleted: int = 0
    status: str | None = None
    failures: list[str] = field(default_factory=list)


def split_tags(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        raw = value
    else:
        raw = str(value or "").split(",")
    tags: list[str] = []
    for tag in raw:
        tag = str(tag).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def join_tags(tags: Iterable[str]) -> str:
    return ", ".join(tags)


def family_tag(family_key: str) -> str:
    return f"family:{family_key}"


def format_price(value: Any) -> str:
    try:
        return f"{float(value or 0):.2f}"
    except (TypeError, ValueError):
        return "0.00"


def remote_signature(image: dict[str, Any]) -> str | None:
    match = ALT_SIGNATURE_RE.search(image.get("alt") or "")
    return match.group(1) if match else None


def option_names(product: LogicalProduct, vocab: Vocabulary, *, with_finish: bool = False) -> list[str]:
    names = [vocab.color_option]
    if product.has_sizes():
        names.append(vocab.size_option)
    if with_finish and product.finish:
        names.append(vocab.finish_option)
    return names


def option_values(
    product: LogicalProduct, variant: FeedVariant, vocab: Vocabulary, *, with_finish: bool = False
) -> dict[str, str]:
    values = [variant.color or vocab.fallback_option_value]
    if product.has_sizes():
        values.append(variant.size or vocab.fallback_option_value)
    if with_finish and product.finish:
        values.append(product.finish)
    return {f"option{position}": value for position, value in enumerate(values, start=1)}


def variant_payload(
    product: LogicalProduct, variant: FeedVariant, vocab: Vocabulary, *, with_finish: bool = False
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        **option_values(product, variant, vocab, with_finish=with_finish),
        "price": format_price(variant.price),
        "inventory_management": "shopify",
    }
    if variant.sku:
        payload["sku"] = variant.sku
    if variant.barcode:
        payload["barcode"] = variant.barcode
    return payload


def match_by_options(remote_variants: Iterable[dict[str, Any]], desired: dict[str, Any]) -> dict[str, Any] | None:
    keys = [key for key in ("option1", "option2", "option3") if key in desired]
    for remote in remote_variants:
        if all(fold(str(remote.get(key) or "")) == fold(desired[key]) for key in keys):
            return remote
    return None


def match_variant(
    remote_variants: list[dict[str, Any]], variant: FeedVariant, desired: dict[str, Any]
) -> dict[str, Any] | None:
    """Barcode first, then SKU, then the option values."""
    if variant.barcode:
        for remote in remote_variants:
            if str(remote.get("barcode") or "").strip() == variant.barcode:
                return remote
    if variant.sku:
        for remote in remote_variants:
            if str(remote.get("sku") or "").strip() == variant.sku:
                return remote
    return match_by_options(remote_variants, desired)


def variant_patch(remote: dict[str, Any], desired: dict[str, Any]) -> dict[str, Any]:
    """Only the fields whose remote value differs from the feed."""
    patch: dict[str, Any] = {}
    if format_price(remote.get("price")) != desired["price"]:
        patch["price"] = desired["price"]
    for key in ("option1", "option2", "option3"):
        if key in desired and str(remote.get(key) or "") != desired[key]:
            patch[key] = desired[key]
    return patch


def shell_changes(
    product: LogicalProduct, remote: dict[str, Any], names: list[str]
) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    wanted = {
        "title": product.title,
        "body_html": product.description,
        "vendor": product.vendor,
        "product_type": product.product_type,
    }
    for key, value in wanted.items():
        if str(remote.get(key) or "").strip() != (value or "").strip():
            changes[key] = value
    remote_tags = split_tags(remote.get("tags"))
    merged = remote_tags + [tag for tag in product.tags if tag not in remote_tags]
    if len(merged) != len(remote_tags):
        changes["tags"] = join_tags(merged)
    remote_options = list(remote.get("options") or [])
    current = [str(option.get("name") or "") for option in remote_options]
    if len(current) >= len(names) and current[: len(names)] != names:
        changes["options"] = [
            {"id": option.get("id"), "name": names[index] if index < len(names) else current[index]}
            for index, option in enumerate(remote_options)
        ]
    return changes


class ProductIndex:
    """Remote products fetched once per run, used to resolve family keys."""

    def __init__(self, client: ShopifyAdminClient) -> None:
        self._client = client
        self._products: list[dict[str, Any]] | None = None

    async def load(self) -> list[dict[str, Any]]:
        if self._products is None:
            self._products = [product async for product in self._client.iter_products(fields=INDEX_FIELDS)]
            logger.info("Indexed %s remote products", len(self._products))
        return self._products

    def add(self, product: dict[str, Any]) -> None:
        if self._products is not None:
            self._products.append(product)

    async def find(self, product: LogicalProduct, strategy: str = "tag") -> dict[str, Any] | None:
        remote_products = await self.load()
        if strategy == "title":
            for remote in remote_products:
                if str(remote.get("title") or "").strip() == product.title:
                    return remote
            return None
        if strategy == "sku":
            skus = {variant.sku for variant in product.variants() if variant.sku}
            for remote in remote_products:
                if any(str(variant.get("sku") or "").strip() in skus for variant in remote.get("variants") or []):
                    return remote
            return None
        tag = family_tag(product.family_key)
        for remote in remote_products:
            if tag in split_tags(remote.get("tags")):
                return remote
        return None


class SyncContext:
    """Run-scoped state shared by every reconciliation."""

    def __init__(self, client: ShopifyAdminClient, settings: Settings, vocab: Vocabulary) -> None:
        self.client = client
        self.settings = settings
        self.vocab = vocab
        self.index = ProductIndex(client)
        self._location_id: int | None = None
        self.single_location = True

    async def location_id(self) -> int | None:
        if self._location_id is None:
            locations = await self.client.list_locations()
            active = [loc for loc in locations if loc.get("active", True)]
            if active:
                self._location_id = active[0].get("id")
                self.single_location = len(active) == 1
            else:
                logger.warning("No active location found; inventory will not be set")
        return self._location_id


class Reconciler:
    def __init__(self, context: SyncContext) -> None:
        self.context = context
        self.client = context.client
        self.settings = context.settings
        self.vocab = context.vocab

    @property
    def with_finish(self) -> bool:
        return self.settings.finish_option

    async def reconcile(self, product: LogicalProduct) -> SyncResult:
        result = SyncResult(family_key=product.family_key, title=product.title)
        variants = product.variants()
        existing = await self.context.index.find(product, self.settings.lookup_strategy)
        if existing is None:
            if not variants:
                logger.warning("Skipping %s: no variants in feed", product.title)
                return result
            remote = await self._create(product)
            result.action = "created"
        else:
            remote = await self.client.get_product(existing["id"])
            remote = await self._update_shell(product, remote)
            result.action = "updated"
        result.product_id = remote.get("id")

        await self._reconcile_variants(product, remote, result)
        await self._reconcile_images(product, remote, result)
        await self._finalize_status(product, remote, result)

        logger.info(
            "%s %s (%s variants, %s new, %s patched)",
            "Created" if result.action == "created" else "Updated",
            product.title,
            len(variants),
            result.variants_created,
            result.variants_updated,
        )
        return result

    # -- shell -----------------------------------------------------------------------

    async def _create(self, product: LogicalProduct) -> dict[str, Any]:
        seed = product.variants()[0]
        payload = {
            "title": product.title,
            "body_html": product.description,
            "vendor": product.vendor,
            "product_type": product.product_type,
            "tags": join_tags(product.tags),
            "status": "draft",
            "options": [{"name": name} for name in option_names(product, self.vocab, with_finish=self.with_finish)],
            "variants": [variant_payload(product, seed, self.vocab, with_finish=self.with_finish)],
        }
        remote = await self.client.create_product(payload)
        self.context.index.add(remote)
        return remote

    async def _update_shell(self, product: LogicalProduct, remote: dict[str, Any]) -> dict[str, Any]:
        names = option_names(product, self.vocab, with_finish=self.with_finish)
        changes = shell_changes(product, remote, names)
        if not changes:
            return remote
        logger.debug("Updating %s fields on %s", sorted(changes), remote.get("id"))
        updated = await self.client.update_product(remote["id"], changes)
        return updated or {**remote, **changes}

    # -- variants --------------------------------------------------------------------

    async def _reconcile_variants(self, product: LogicalProduct, remote: dict[str, Any], result: SyncResult) -> None:
        remote_variants = list(remote.get("variants") or [])
        remote["variants"] = remote_variants
        for variant in product.variants():
            try:
                await self._sync_variant(product, remote, variant, result)
            except REMOTE_ERRORS as exc:
                self._fail(result, f"variant {variant.sku or variant.color + '/' + variant.size}", exc)

    async def _sync_variant(
        self, product: LogicalProduct, remote: dict[str, Any], variant: FeedVariant, result: SyncResult
    ) -> None:
        remote_variants: list[dict[str, Any]] = remote["variants"]
        desired = variant_payload(product, variant, self.vocab, with_finish=self.with_finish)
        match = match_variant(remote_variants, variant, desired)
        if match is None:
            outcome = await self.client.create_variant(remote["id"], desired)
            if not outcome.already_exists and outcome.variant:
                remote_variants.append(outcome.variant)
                result.variants_created += 1
                await self._set_inventory(outcome.variant, variant.quantity)
                return
            fresh = await self.client.get_product(remote["id"])
            remote_variants[:] = list(fresh.get("variants") or [])
            match = match_by_options(remote_variants, desired)
            if match is None:
                raise ShopifyError(409, "POST", f"/products/{remote['id']}/variants.json", "variant reported as existing but not found")
            logger.info("Adopted existing variant %s on %s", match.get("id"), product.title)

        patch = variant_patch(match, desired)
        if patch:
            await self.client.update_variant(match["id"], patch)
            match.update(patch)
            result.variants_updated += 1
        await self._set_inventory(match, variant.quantity)

    async def _set_inventory(self, remote_variant: dict[str, Any], quantity: int) -> None:
        item_id = remote_variant.get("inventory_item_id")
        if not item_id:
            return
        location_id = await self.context.location_id()
        if not location_id:
            return
        # inventory_quantity sums every location, so it only mirrors ours on a single-location shop
        if self.context.single_location and remote_variant.get("inventory_quantity") == quantity:
            return
        await self.client.set_inventory_level(item_id, location_id, quantity)
        remote_variant["inventory_quantity"] = quantity

    # -- images ----------------------------------------------------------------------

    def _image_alt(self, product: LogicalProduct, signature: str) -> str:
        return f"{clip(product.title, 120)} | sig:{signature}"

    async def _reconcile_images(self, product: LogicalProduct, remote: dict[str, Any], result: SyncResult) -> None:
        images = list(remote.get("images") or [])
        remote["images"] = images
        by_signature: dict[str, dict[str, Any]] = {}
        for image in images:
            signature = remote_signature(image)
            if signature:
                by_signature.setdefault(signature, image)

        for url in product.images():
            signature = image_signature(url)
            if signature in by_signature:
                continue
            try:
                image = await self.client.create_image(remote["id"], url, alt=self._image_alt(product, signature))
            except REMOTE_ERRORS as exc:
                self._fail(result, f"image {url}", exc)
                continue
            images.append(image)
            by_signature[signature] = image
            result.images_uploaded += 1

        if self.settings.cleanup_images:
            wanted = {image_signature(url) for url in product.images()}
            for signature, image in list(by_signature.items()):
                if signature in wanted:
                    continue
                try:
                    await self.client.delete_image(remote["id"], image["id"])
                except REMOTE_ERRORS as exc:
                    self._fail(result, f"image delete {image.get('id')}", exc)
                    continue
                images.remove(image)
                del by_signature[signature]
                result.images_deleted += 1

        await self._link_variant_images(product, remote, by_signature, result)

    async def _link_variant_images(
        self,
        product: LogicalProduct,
        remote: dict[str, Any],
        by_signature: dict[str, dict[str, Any]],
        result: SyncResult,
    ) -> None:
        for bucket in product.buckets.values():
            if not bucket.images:
                continue
            primary = by_signature.get(image_signature(bucket.images[0]))
            if not primary or not primary.get("id"):
                continue
            color = fold(bucket.label or self.vocab.fallback_option_value)
            for remote_variant in remote.get("variants") or []:
                if fold(str(remote_variant.get("option1") or "")) != color:
                    continue
                if remote_variant.get("image_id") == primary["id"]:
                    continue
                try:
                    await self.client.update_variant(remote_variant["id"], {"image_id": primary["id"]})
                except REMOTE_ERRORS as exc:
                    self._fail(result, f"image link {remote_variant.get('id')}", exc)
                    continue
                remote_variant["image_id"] = primary["id"]

    # -- status ----------------------------------------------------------------------

    async def _finalize_status(self, product: LogicalProduct, remote: dict[str, Any], result: SyncResult) -> None:
        sellable = product.is_sellable()
        status = "active" if sellable else "draft"
        add_tag, drop_tag = (
            (self.vocab.open_tag, self.vocab.closed_tag) if sellable else (self.vocab.closed_tag, self.vocab.open_tag)
        )
        tags = split_tags(remote.get("tags"))
        wanted = [tag for tag in tags if tag != drop_tag]
        if add_tag not in wanted:
            wanted.append(add_tag)

        changes: dict[str, Any] = {}
        if remote.get("status") != status:
            changes["status"] = status
        if set(wanted) != set(tags):
            changes["tags"] = join_tags(wanted)
        result.status = status
        if changes:
            try:
                await self.client.update_product(remote["id"], changes)
            except REMOTE_ERRORS as exc:
                self._fail(result, "status", exc)
                return
            remote.update(changes)

        if sellable and self.settings.publish and not remote.get("published_at"):
            await self._publish(remote, result)

    async def _publish(self, remote: dict[str, Any], result: SyncResult) -> None:
        try:
            await self.client.publish_product(remote["id"])
            return
        except ShopifyError as exc:
            if not exc.unauthorized:
                self._fail(result, "publish", exc)
                return
            logger.info("Publication API not authorized for %s, setting published flag", remote["id"])
        except (RetryExhausted, httpx.HTTPError) as exc:
            self._fail(result, "publish", exc)
            return
        try:
            await self.client.update_product(remote["id"], {"published": True, "published_scope": "web"})
        except REMOTE_ERRORS as exc:
            self._fail(result, "publish", exc)

    def _fail(self, result: SyncResult, what: str, exc: BaseException) -> None:
        message = clip(str(exc), 200)
        result.failures.append(f"{what}: {message}")
        logger.warning("%s failed for %s: %s", what, result.title, message)
