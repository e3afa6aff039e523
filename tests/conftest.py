import json
import re
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
import respx

from feedsync.config import Settings
from feedsync.ingest import load_vocabulary
from feedsync.shopify.client import ShopifyAdminClient
from feedsync.utils.rate_limit import RateLimiter

FIXTURES = Path(__file__).parent / "fixtures"
SHOP_HOST = "test-shop.myshopify.com"
API_PREFIX = "/admin/api/2024-07"


def load_fixture(path: str) -> bytes:
    return (FIXTURES / path).read_bytes()


class FakeShopify:
    """In-memory stand-in for the Admin REST endpoints the sync touches."""

    def __init__(self) -> None:
        self.products: dict[int, dict] = {}
        self.inventory: dict[int, int] = {}
        self.requests: list[tuple[str, str, dict | None]] = []
        self.creates = {"product": 0, "variant": 0, "image": 0}
        self.fail_paths: dict[str, int] = {}
        self.publish_denied = False
        self.locations = [{"id": 77, "name": "Depo", "active": True}]
        self._next_id = 1000

    def next_id(self) -> int:
        self._next_id += 1
        return self._next_id

    # -- helpers used by tests -------------------------------------------------

    def calls(self, method: str, pattern: str) -> list[dict | None]:
        return [body for m, path, body in self.requests if m == method and re.search(pattern, path)]

    def all_variants(self) -> list[dict]:
        return [variant for product in self.products.values() for variant in product["variants"]]

    def all_images(self) -> list[dict]:
        return [image for product in self.products.values() for image in product["images"]]

    def add_product(self, **fields) -> dict:
        product = {
            "id": self.next_id(),
            "title": "",
            "body_html": "",
            "vendor": "",
            "product_type": "",
            "tags": "",
            "status": "draft",
            "published_at": None,
            "options": [],
            "variants": [],
            "images": [],
        }
        product.update(fields)
        variants = product["variants"]
        product["variants"] = []
        for variant in variants:
            self._add_variant(product, variant)
        product["options"] = [
            {"id": self.next_id(), "name": option.get("name"), "position": index}
            for index, option in enumerate(product["options"], start=1)
        ]
        self.products[product["id"]] = product
        return product

    def add_image(self, product: dict, src: str, alt: str | None = None) -> dict:
        image = {"id": self.next_id(), "product_id": product["id"], "src": src, "alt": alt}
        product["images"].append(image)
        return image

    def _add_variant(self, product: dict, data: dict) -> dict:
        variant = {
            "id": self.next_id(),
            "product_id": product["id"],
            "option1": None,
            "option2": None,
            "option3": None,
            "price": "0.00",
            "sku": "",
            "barcode": "",
            "image_id": None,
            "inventory_item_id": self.next_id(),
            "inventory_quantity": 0,
        }
        variant.update({key: value for key, value in data.items() if key != "inventory_management"})
        variant["price"] = f"{float(variant['price']):.2f}"
        product["variants"].append(variant)
        return variant

    # -- request dispatch --------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path[len(API_PREFIX):]
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, body))
        for pattern, status in list(self.fail_paths.items()):
            if re.search(pattern, path):
                return httpx.Response(status, json={"errors": "boom"})
        routes = [
            ("GET", r"^/locations\.json$", self._locations),
            ("GET", r"^/products\.json$", self._list_products),
            ("POST", r"^/products\.json$", self._create_product),
            ("GET", r"^/products/(\d+)\.json$", self._get_product),
            ("PUT", r"^/products/(\d+)\.json$", self._update_product),
            ("POST", r"^/products/(\d+)/variants\.json$", self._create_variant),
            ("PUT", r"^/variants/(\d+)\.json$", self._update_variant),
            ("POST", r"^/products/(\d+)/images\.json$", self._create_image),
            ("DELETE", r"^/products/(\d+)/images/(\d+)\.json$", self._delete_image),
            ("POST", r"^/inventory_levels/set\.json$", self._set_inventory),
            ("POST", r"^/graphql\.json$", self._graphql),
        ]
        for method, pattern, handler in routes:
            match = re.match(pattern, path)
            if method == request.method and match:
                return handler(body, *[int(group) for group in match.groups()])
        return httpx.Response(404, json={"errors": "Not Found"})

    def _locations(self, body):
        return httpx.Response(200, json={"locations": self.locations})

    def _list_products(self, body):
        return httpx.Response(200, json={"products": list(self.products.values())})

    def _get_product(self, body, product_id):
        product = self.products.get(product_id)
        if product is None:
            return httpx.Response(404, json={"errors": "Not Found"})
        return httpx.Response(200, json={"product": product})

    def _create_product(self, body):
        self.creates["product"] += 1
        product = self.add_product(**body["product"])
        return httpx.Response(201, json={"product": product})

    def _update_product(self, body, product_id):
        product = self.products[product_id]
        fields = dict(body["product"])
        fields.pop("id", None)
        options = fields.pop("options", None)
        if options:
            for current, wanted in zip(product["options"], options):
                current["name"] = wanted["name"]
        if fields.pop("published", None):
            product["published_at"] = "2026-01-01T00:00:00Z"
        fields.pop("published_scope", None)
        product.update(fields)
        return httpx.Response(200, json={"product": product})

    def _create_variant(self, body, product_id):
        product = self.products[product_id]
        data = body["variant"]
        for variant in product["variants"]:
            if all(variant.get(key) == data.get(key) for key in ("option1", "option2", "option3") if key in data):
                return httpx.Response(
                    422, json={"errors": {"base": [f"The variant '{data.get('option1')}' already exists."]}}
                )
        self.creates["variant"] += 1
        variant = self._add_variant(product, data)
        return httpx.Response(201, json={"variant": variant})

    def _update_variant(self, body, variant_id):
        for variant in self.all_variants():
            if variant["id"] == variant_id:
                patch = dict(body["variant"])
                patch.pop("id", None)
                variant.update(patch)
                return httpx.Response(200, json={"variant": variant})
        return httpx.Response(404, json={"errors": "Not Found"})

    def _create_image(self, body, product_id):
        self.creates["image"] += 1
        product = self.products[product_id]
        image_id = self.next_id()
        # Shopify rehosts uploads, so the stored src never equals the feed URL.
        image = self.add_image(product, f"https://cdn.shopify.com/s/files/{image_id}.jpg", body["image"].get("alt"))
        return httpx.Response(200, json={"image": image})

    def _delete_image(self, body, product_id, image_id):
        product = self.products[product_id]
        product["images"] = [image for image in product["images"] if image["id"] != image_id]
        return httpx.Response(200, json={})

    def _set_inventory(self, body):
        self.inventory[body["inventory_item_id"]] = body["available"]
        for variant in self.all_variants():
            if variant["inventory_item_id"] == body["inventory_item_id"]:
                variant["inventory_quantity"] = body["available"]
        return httpx.Response(200, json={"inventory_level": body})

    def _graphql(self, body):
        if self.publish_denied:
            return httpx.Response(
                200, json={"errors": [{"message": "Access denied", "extensions": {"code": "ACCESS_DENIED"}}]}
            )
        if "publications" in body["query"] and "publishablePublish" not in body["query"]:
            return httpx.Response(
                200, json={"data": {"publications": {"nodes": [{"id": "gid://shopify/Publication/1", "name": "Online Store"}]}}}
            )
        product_id = int(body["variables"]["id"].rsplit("/", 1)[-1])
        self.products[product_id]["published_at"] = "2026-01-01T00:00:00Z"
        return httpx.Response(200, json={"data": {"publishablePublish": {"userErrors": []}}})


@pytest.fixture()
def vocab():
    return load_vocabulary()


@pytest.fixture()
def settings():
    return Settings(
        shop_domain="test-shop",
        access_token="shpat_test",
        feed_url="https://feed.example.com/products.xml",
        requests_per_second=0,
        max_attempts=2,
    )


@pytest.fixture()
def fake_shop():
    return FakeShopify()


@pytest_asyncio.fixture()
async def shop_client(fake_shop):
    async with respx.mock(assert_all_called=False) as router:
        router.route(host=SHOP_HOST).mock(side_effect=fake_shop.handle)
        client = ShopifyAdminClient(
            "test-shop",
            "shpat_test",
            rate_limiter=RateLimiter(rate=0),
            max_attempts=2,
            base_delay=0,
        )
        yield client
        await client.close()
