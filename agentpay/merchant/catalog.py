"""
Merchant product catalog
In-memory store of priced products; prices are USDC decimal strings
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from agentpay.models import Product
from agentpay.payments.models import PriceDescriptor


DEFAULT_PRODUCTS: List[Product] = [
    Product(
        id="tv-oled-55",
        name="Aurora 55\" OLED TV",
        description="4K OLED television with Dolby Vision and a 120Hz panel",
        features=["4K UHD", "Dolby Vision", "120Hz refresh"],
        price="4.99",
        category="tv",
    ),
    Product(
        id="tv-led-43",
        name="Lumen 43\" LED TV",
        description="Compact smart TV for bedrooms and kitchens",
        features=["Full HD", "Built-in streaming apps"],
        price="1.50",
        category="tv",
    ),
    Product(
        id="headphones-anc",
        name="Quiet Pro Headphones",
        description="Over-ear wireless headphones with active noise cancelling",
        features=["ANC", "30h battery", "USB-C"],
        price="2.25",
        category="audio",
    ),
    Product(
        id="speaker-mini",
        name="Pebble Mini Speaker",
        description="Pocket Bluetooth speaker",
        features=["Waterproof", "12h battery"],
        price="0.75",
        category="audio",
    ),
]


class ProductCatalog:
    """Products keyed by id"""

    def __init__(self, products: Optional[Iterable[Product]] = None):
        self._products: Dict[str, Product] = {}
        for product in DEFAULT_PRODUCTS if products is None else products:
            self.add(product)

    def add(self, product: Product) -> None:
        self._products[product.id] = product

    def get(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    def price_of(self, product_id: str) -> Optional[PriceDescriptor]:
        product = self.get(product_id)
        return product.price_descriptor() if product else None

    def search(
        self,
        query: Optional[str] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
    ) -> List[Product]:
        """Case-insensitive match on name, description and category, then price bounds"""
        results = []
        needle = query.lower() if query else None
        for product in self._products.values():
            if needle and not any(
                needle in text.lower()
                for text in (product.name, product.description, product.category)
            ):
                continue
            price = Decimal(product.price)
            if min_price is not None and price < min_price:
                continue
            if max_price is not None and price > max_price:
                continue
            results.append(product)
        return results

    def __len__(self) -> int:
        return len(self._products)
