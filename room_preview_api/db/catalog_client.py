"""
Shopify Storefront catalog client.

Resolves product identifiers to ProductRecords and lists the storefront
catalog through the Storefront GraphQL API.
"""

import logging
from typing import Any, Optional

import httpx

from room_preview_api.config import Config
from room_preview_api.errors import CatalogLookupError, UpstreamUnavailable
from room_preview_api.models import DEFAULT_PRODUCT_TYPE, CatalogListItem, ProductRecord

logger = logging.getLogger(__name__)

PRODUCT_QUERY = """
query GetProduct($id: ID!) {
  product(id: $id) {
    id
    title
    handle
    productType
    description
    onlineStoreUrl
    featuredImage { url }
  }
}
"""

PRODUCTS_QUERY = """
query ListProducts($first: Int!) {
  products(first: $first) {
    edges {
      node {
        id
        title
        handle
        images(first: 1) { edges { node { url } } }
      }
    }
  }
}
"""


def product_gid(product_id: str) -> str:
    """Accept a numeric id or a full gid and return the gid."""
    product_id = str(product_id).strip()
    if product_id.startswith("gid://"):
        return product_id
    return f"gid://shopify/Product/{product_id}"


def normalize_image_url(image: Any) -> Optional[str]:
    """Image fields arrive as a string or an object with url/src/originalSrc."""
    if not image:
        return None
    if isinstance(image, str):
        return image
    if isinstance(image, dict):
        return image.get("url") or image.get("src") or image.get("originalSrc")
    return None


class CatalogClient:
    """Storefront GraphQL client."""

    def __init__(self, config: Config, http: Optional[httpx.AsyncClient] = None):
        self.endpoint = config.catalog_endpoint
        self.store_domain = config.SHOPIFY_STORE_DOMAIN
        self.page_size = config.CATALOG_PAGE_SIZE
        headers = {"Content-Type": "application/json"}
        if config.SHOPIFY_STOREFRONT_TOKEN:
            headers["X-Shopify-Storefront-Access-Token"] = config.SHOPIFY_STOREFRONT_TOKEN
        self.http = http or httpx.AsyncClient(timeout=config.HTTP_TIMEOUT)
        self.headers = headers

    async def _query(self, query: str, variables: dict) -> dict:
        try:
            response = await self.http.post(
                self.endpoint,
                headers=self.headers,
                json={"query": query, "variables": variables},
            )
        except httpx.HTTPError as e:
            raise UpstreamUnavailable("catalog", str(e))
        if response.status_code != 200:
            raise UpstreamUnavailable("catalog", f"HTTP {response.status_code}: {response.text[:300]}")
        try:
            payload = response.json()
        except ValueError:
            raise UpstreamUnavailable("catalog", "response is not JSON")
        if payload.get("errors"):
            logger.error(f"Catalog GraphQL errors: {payload['errors']}")
        return payload.get("data") or {}

    def product_url(self, handle: Optional[str]) -> Optional[str]:
        if not handle:
            return None
        return f"https://{self.store_domain}/products/{handle}"

    async def resolve(self, product_id: str) -> ProductRecord:
        """
        Resolve a product id to a ProductRecord.

        Raises:
            CatalogLookupError: If the id does not resolve
            UpstreamUnavailable: If the catalog cannot be reached
        """
        gid = product_gid(product_id)
        logger.info(f"Resolving product {gid}")
        data = await self._query(PRODUCT_QUERY, {"id": gid})
        product = data.get("product")
        if not product:
            raise CatalogLookupError(product_id)

        return ProductRecord(
            id=product.get("id") or gid,
            title=product.get("title") or "",
            handle=product.get("handle"),
            productType=product.get("productType") or DEFAULT_PRODUCT_TYPE,
            description=product.get("description") or "",
            featuredImageUrl=normalize_image_url(product.get("featuredImage")),
            onlineStoreUrl=product.get("onlineStoreUrl") or self.product_url(product.get("handle")),
        )

    async def list_products(self) -> list[CatalogListItem]:
        """First page of the storefront catalog."""
        data = await self._query(PRODUCTS_QUERY, {"first": self.page_size})
        edges = (data.get("products") or {}).get("edges") or []

        items = []
        for edge in edges:
            node = edge.get("node") or {}
            image_edges = (node.get("images") or {}).get("edges") or []
            image = normalize_image_url(image_edges[0].get("node")) if image_edges else None
            items.append(CatalogListItem(
                id=node.get("id", ""),
                title=node.get("title", ""),
                handle=node.get("handle"),
                image=image,
                url=self.product_url(node.get("handle")),
            ))
        logger.info(f"Listed {len(items)} catalog products")
        return items

    async def close(self) -> None:
        await self.http.aclose()
