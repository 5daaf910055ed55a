from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from agentpay.merchant.catalog import ProductCatalog
from agentpay.merchant.dependencies import get_catalog, logger
from agentpay.merchant.models import ProductResponse, ProductsResponse

router = APIRouter(prefix="/api/products", tags=["Products"])


@router.get("", response_model=ProductsResponse)
async def list_products(
    query: Optional[str] = Query(default=None, description="Search text, e.g. 'tv'"),
    min_price: Optional[Decimal] = Query(default=None, ge=0),
    max_price: Optional[Decimal] = Query(default=None, ge=0),
    catalog: ProductCatalog = Depends(get_catalog),
):
    """List products, optionally filtered by text and USDC price range"""
    if min_price is not None and max_price is not None and max_price < min_price:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="max_price must not be lower than min_price"
        )

    products = catalog.search(query=query, min_price=min_price, max_price=max_price)
    logger.info("products_listed", query=query, count=len(products))

    return ProductsResponse(
        products=products,
        count=len(products),
        message=f"Found {len(products)} products" + (f" for '{query}'" if query else "")
    )


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(product_id: str, catalog: ProductCatalog = Depends(get_catalog)):
    product = catalog.get(product_id)
    if not product:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Product {product_id} not found"
        )
    return ProductResponse(product=product)
