"""Shopify Admin API client."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx

from feedsync.utils.rate_limit import RateLimiter
from feedsync.utils.retry import retry_async
from feedsync.utils.text import clip

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-07"
ALREADY_EXISTS_RE = re.compile(r"already exists", re.IGNORECASE)
PAGE_SIZE = 250

PUBLICATIONS_QUERY = """
query {
  publications(first: 20) {
    nodes { id name }
  }
}
"""

PUBLISH_MUTATION = """
mutation publish($id: ID!, $input: [PublicationInput!]!) {
  publishablePublish(id: $id, input: $input) {
    userErrors { field message }
  }
}
"""


class ShopifyError(RuntimeError):
    def __init__(self, status: int, method: str, path: str, body: str = "") -> None:
        self.status = status
        self.method = method
        self.path = path
        self.body = body
        super().__init__(f"Shopify {method} {path} -> {status}: {clip(body)}")

    @property
    def unauthorized(self) -> bool:
        return self.status in {401, 403}


@dataclass(slots=True)
class VariantCreateOutcome:
    variant: dict[str, Any] | None
    already_exists: bool = False


def shop_host(shop_domain: str) -> str:
    host = re.sub(r"^https?://", "", shop_domain.strip()).rstrip("/")
    if "." not in host:
        host = f"{host}.myshopify.com"
    return host


class ShopifyAdminClient:
    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        *,
        api_version: str = DEFAULT_API_VERSION,
        session: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
        max_attempts: int = 5,
        base_delay: float = 1.0,
    ) -> None:
        self.base_url = f"https://{shop_host(shop_domain)}/admin/api/{api_version}"
        self._headers = {"X-Shopify-Access-Token": access_token, "Content-Type": "application/json"}
        self._session = session or httpx.AsyncClient(timeout=30.0)
        self._rate_limiter = rate_limiter or RateLimiter(rate=2.0)
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._online_store_publication: str | None = None

    async def close(self) -> None:
        await self._session.aclose()

    # -- locations and inventory -------------------------------------------------

    async def list_locations(self) -> list[dict[str, Any]]:
        data = await self._json("GET", "/locations.json")
        return data.get("locations", [])

    async def set_inventory_level(self, inventory_item_id: int, location_id: int, available: int) -> None:
        await self._json(
            "POST",
            "/inventory_levels/set.json",
            body={"location_id": location_id, "inventory_item_id": inventory_item_id, "available": int(available)},
        )

    # -- products ------------------------------------------------------------------

    async def iter_products(self, *, fields: str | None = None) -> AsyncIterator[dict[str, Any]]:
        params: dict[str, Any] | None = {"limit": PAGE_SIZE}
        if fields:
            params["fields"] = fields
        url = f"{self.base_url}/products.json"
        while url:
            response = await self._request("GET", url, params=params)
            for product in response.json().get("products", []):
                yield product
            url = response.links.get("next", {}).get("url")
            params = None

    async def get_product(self, product_id: int) -> dict[str, Any]:
        data = await self._json("GET", f"/products/{product_id}.json")
        return data.get("product") or {}

    async def create_product(self, product: dict[str, Any]) -> dict[str, Any]:
        data = await self._json("POST", "/products.json", body={"product": product})
        return data.get("product") or {}

    async def update_product(self, product_id: int, fields: dict[str, Any]) -> dict[str, Any]:
        payload = {"id": product_id, **fields}
        data = await self._json("PUT", f"/products/{product_id}.json", body={"product": payload})
        return data.get("product") or {}

    # -- variants ------------------------------------------------------------------

    async def create_variant(self, product_id: int, variant: dict[str, Any]) -> VariantCreateOutcome:
        path = f"/products/{product_id}/variants.json"
        response = await self._request("POST", self._url(path), json={"variant": variant})
        if response.status_code == 422 and ALREADY_EXISTS_RE.search(response.text):
            return VariantCreateOutcome(variant=None, already_exists=True)
        self._raise_for_status(response, "POST", path)
        return VariantCreateOutcome(variant=response.json().get("variant"))

    async def update_variant(self, variant_id: int, patch: dict[str, Any]) -> dict[str, Any]:
        payload = {"id": variant_id, **patch}
        data = await self._json("PUT", f"/variants/{variant_id}.json", body={"variant": payload})
        return data.get("variant") or {}

    # -- images --------------------------------------------------------------------

    async def create_image(self, product_id: int, src: str, *, alt: str | None = None) -> dict[str, Any]:
        image: dict[str, Any] = {"src": src}
        if alt:
            image["alt"] = alt
        data = await self._json("POST", f"/products/{product_id}/images.json", body={"image": image})
        return data.get("image") or {}

    async def delete_image(self, product_id: int, image_id: int) -> None:
        await self._json("DELETE", f"/products/{product_id}/images/{image_id}.json")

    # -- publication ---------------------------------------------------------------

    async def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"query": query}
        if variables:
            body["variables"] = variables
        data = await self._json("POST", "/graphql.json", body=body)
        errors = data.get("errors") or []
        if errors:
            denied = any((err.get("extensions") or {}).get("code") == "ACCESS_DENIED" for err in errors)
            raise ShopifyError(403 if denied else 400, "POST", "/graphql.json", str(errors))
        return data.get("data") or {}

    async def publish_product(self, product_id: int) -> None:
        publication_id = await self._online_store_publication_id()
        if not publication_id:
            raise ShopifyError(404, "POST", "/graphql.json", "Online Store publication not found")
        data = await self.graphql(
            PUBLISH_MUTATION,
            {"id": f"gid://shopify/Product/{product_id}", "input": [{"publicationId": publication_id}]},
        )
        user_errors = (data.get("publishablePublish") or {}).get("userErrors") or []
        if user_errors:
            raise ShopifyError(422, "POST", "/graphql.json", str(user_errors))

    async def _online_store_publication_id(self) -> str | None:
        if self._online_store_publication is None:
            data = await self.graphql(PUBLICATIONS_QUERY)
            nodes = (data.get("publications") or {}).get("nodes") or []
            for node in nodes:
                if (node.get("name") or "").lower() == "online store":
                    self._online_store_publication = node.get("id")
                    break
        return self._online_store_publication

    # -- transport -----------------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def _json(self, method: str, path: str, *, body: dict[str, Any] | None = None) -> dict[str, Any]:
        response = await self._request(method, self._url(path), json=body)
        self._raise_for_status(response, method, path)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    def _raise_for_status(self, response: httpx.Response, method: str, path: str) -> None:
        if response.is_success:
            return
        raise ShopifyError(response.status_code, method, path, response.text)

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        await self._rate_limiter.wait()
        logger.debug("%s %s", method, url)
        return await self._session.request(method, url, headers=self._headers, **kwargs)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        sender = retry_async(self._send, attempts=self._max_attempts, base_delay=self._base_delay)
        kwargs: dict[str, Any] = {}
        if params:
            kwargs["params"] = params
        if json is not None:
            kwargs["json"] = json
        return await sender(method, url, **kwargs)
