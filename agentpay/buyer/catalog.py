"""
Buyer-side catalog access
Resolves a product reference to a Product before any purchase request
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Protocol

import httpx
import structlog
from pydantic import ValidationError

from agentpay.errors import TransportError
from agentpay.models import Product

logger = structlog.get_logger()


class CatalogResolver(Protocol):
    async def resolve(self, reference: str) -> Optional[Product]:
        ...


class StaticCatalog:
    """Fixed set of products held in process"""

    def __init__(self, products: Iterable[Product]):
        self._products: Dict[str, Product] = {p.id: p for p in products}

    async def resolve(self, reference: str) -> Optional[Product]:
        return self._products.get(reference)

    async def list_products(self, query: Optional[str] = None) -> List[Product]:
        if not query:
            return list(self._products.values())
        needle = query.lower()
        return [
            p for p in self._products.values()
            if needle in p.name.lower() or needle in p.category.lower()
        ]


class CatalogClient:
    """Merchant catalog over HTTP"""

    def __init__(self, http_client: httpx.AsyncClient, merchant_url: str):
        self.http_client = http_client
        self.merchant_url = merchant_url.rstrip("/")

    async def list_products(
        self,
        query: Optional[str] = None,
        max_price: Optional[Decimal] = None,
    ) -> List[Product]:
        """Discover products; raises TransportError when the merchant is unreachable"""
        params = {}
        if query:
            params["query"] = query
        if max_price is not None:
            params["max_price"] = str(max_price)

        try:
            response = await self.http_client.get(f"{self.merchant_url}/api/products", params=params)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("product_discovery_failed", error=str(e))
            raise TransportError(f"Product discovery failed: {e}") from e

        try:
            products = [Product.model_validate(item) for item in response.json().get("products", [])]
        except (ValueError, AttributeError, TypeError, ValidationError) as e:
            logger.error("product_discovery_unreadable", error=str(e))
            raise TransportError(f"Product discovery returned an unreadable body: {e}") from e
        logger.info("products_discovered", count=len(products))
        return products

    async def resolve(self, reference: str) -> Optional[Product]:
        """None when the merchant does not know the reference"""
        try:
            response = await self.http_client.get(f"{self.merchant_url}/api/products/{reference}")
        except httpx.HTTPError as e:
            logger.error("product_lookup_failed", reference=reference, error=str(e))
            raise TransportError(f"Product lookup failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise TransportError(f"Product lookup failed with status {response.status_code}")

        try:
            data = response.json()
            return Product.model_validate(data["product"])
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            logger.error("product_lookup_unreadable", reference=reference, error=str(e))
            raise TransportError(f"Product lookup returned an unreadable body: {e}") from e
