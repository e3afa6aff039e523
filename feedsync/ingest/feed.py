"""XML product feed reader."""

from __future__ import annotations

import logging
import math
import re
import xml.etree.ElementTree as ET
from typing import Any

import httpx

from feedsync.ingest.models import FeedItem, FeedVariant
from feedsync.utils.text import fold

logger = logging.getLogger(__name__)

CDATA_RE = re.compile(r"^<!\[CDATA\[(.*)\]\]>$", re.DOTALL)
HTTP_URL_RE = re.compile(r"^https?://", re.IGNORECASE)
IMAGE_FIELDS = ("Image1", "Image2", "Image3", "Image4", "Image5")
SPEC_ROLES = {
    "RENK": "color",
    "COLOR": "color",
    "COLOUR": "color",
    "BEDEN": "size",
    "SIZE": "size",
    "NUMARA": "size",
}


class FeedError(RuntimeError):
    """The feed could not be downloaded or parsed."""


def text_of(node: ET.Element | str | None) -> str:
    """Return the trimmed text of a node, unwrapping CDATA when present."""
    if node is None:
        return ""
    if isinstance(node, ET.Element):
        value = "".join(node.itertext())
    else:
        value = str(node)
    value = value.strip()
    match = CDATA_RE.match(value)
    if match:
        value = match.group(1).strip()
    return value


def child_text(node: ET.Element, tag: str) -> str:
    return text_of(node.find(tag))


def children(node: ET.Element | None, tag: str) -> list[ET.Element]:
    if node is None:
        return []
    return node.findall(tag)


def to_number(value: Any) -> float:
    """Coerce feed numbers such as ``"12,50"`` or ``"1.299,90"``; bad input is 0."""
    if value is None:
        return 0
    if isinstance(value, (int, float)):
        return value
    raw = text_of(value).replace(" ", "")
    if not raw:
        return 0
    if "," in raw and "." in raw:
        if raw.rfind(",") > raw.rfind("."):
            raw = raw.replace(".", "").replace(",", ".")
        else:
            raw = raw.replace(",", "")
    else:
        raw = raw.replace(",", ".")
    try:
        number = float(raw)
    except ValueError:
        return 0
    if not math.isfinite(number):
        return 0
    return number


def unique(values: list[str]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


class FeedReader:
    def __init__(self, *, session: httpx.AsyncClient | None = None) -> None:
        self._session = session or httpx.AsyncClient(timeout=60.0, follow_redirects=True)

    async def close(self) -> None:
        await self._session.aclose()

    async def read(self, url: str) -> list[FeedItem]:
        payload = await self.fetch(url)
        items = self.parse(payload)
        logger.info("Parsed %s feed items from %s", len(items), url)
        return items

    async def fetch(self, url: str) -> bytes:
        try:
            response = await self._session.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise FeedError(f"Could not fetch feed {url}: {exc}") from exc
        return response.content

    def parse(self, payload: bytes | str) -> list[FeedItem]:
        try:
            root = ET.fromstring(payload)
        except ET.ParseError as exc:
            raise FeedError(f"Feed is not valid XML: {exc}") from exc
        products = [root] if root.tag == "Product" else children(root, "Product")
        return [self._parse_product(node) for node in products]

    def _parse_product(self, node: ET.Element) -> FeedItem:
        price = to_number(child_text(node, "Price"))
        images = [child_text(node, tag) for tag in IMAGE_FIELDS]
        variants = [
            self._parse_variant(variant, price)
            for container in children(node, "variants")
            for variant in children(container, "variant")
        ]
        return FeedItem(
            name=child_text(node, "Name"),
            brand=child_text(node, "Brand"),
            mpn=child_text(node, "Mpn"),
            product_code=child_text(node, "ProductCode"),
            main_category=child_text(node, "mainCategory"),
            category=child_text(node, "category"),
            description=child_text(node, "Description"),
            price=price,
            tax=to_number(child_text(node, "Tax")),
            images=[url for url in unique(images) if HTTP_URL_RE.match(url)],
            variants=variants,
        )

    def _parse_variant(self, node: ET.Element, parent_price: float) -> FeedVariant:
        specs: dict[str, str] = {}
        for spec in children(node, "spec"):
            role = SPEC_ROLES.get(fold(spec.get("name", "").strip()))
            if role and role not in specs:
                specs[role] = text_of(spec)
        price = to_number(child_text(node, "price"))
        return FeedVariant(
            color=specs.get("color", ""),
            size=specs.get("size", ""),
            sku=child_text(node, "productCode"),
            barcode=child_text(node, "barcode"),
            quantity=max(int(to_number(child_text(node, "quantity"))), 0),
            price=price if price > 0 else parent_price,
        )
