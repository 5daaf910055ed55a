from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from slowapi import Limiter

from agentpay.config import MerchantConfig
from agentpay.errors import SettlementUnavailable
from agentpay.merchant.catalog import ProductCatalog
from agentpay.merchant.dependencies import (
    get_catalog,
    get_config,
    get_engine,
    get_ledger,
    logger,
)
from agentpay.merchant.settlement import SettlementEngine
from agentpay.payments.ledger import Ledger

router = APIRouter(prefix="/api", tags=["Payments"])


def add_purchase_route(app: FastAPI, limiter: Limiter, rate_limit: str) -> None:
    """Register the paid endpoint with the app's own limiter and limit"""
    app.add_api_route(
        "/api/purchase/{product_id}",
        limiter.limit(rate_limit)(purchase_product),
        methods=["POST"],
        tags=["Payments"],
    )


async def purchase_product(
    request: Request,
    product_id: str,
    x_payment: Optional[str] = Header(default=None),
    config: MerchantConfig = Depends(get_config),
    catalog: ProductCatalog = Depends(get_catalog),
    engine: SettlementEngine = Depends(get_engine),
):
    """
    Paid resource. Without an x-payment header the answer is 402 with the
    payment requirements; with one, the proof is settled before release.
    """
    product = catalog.get(product_id)
    if not product:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Product {product_id} not found"
        )

    resource_url = f"{config.base_url}/api/purchase/{product_id}"
    result = await engine.handle(
        price=product.price_descriptor(),
        resource_url=resource_url,
        payment_header=x_payment,
    )

    body = dict(result.body)
    if result.settled:
        body["purchaseDetails"] = {
            "product": product.model_dump(),
            "amount": product.price,
            "currency": "USDC",
            "network": config.network
        }
        logger.info(
            "purchase_completed",
            product_id=product_id,
            amount=product.price,
            payment_reference=result.payment_reference
        )

    return JSONResponse(status_code=result.status_code, content=body, headers=result.headers)


@router.get("/payments/{reference}")
async def lookup_payment(reference: str, ledger: Ledger = Depends(get_ledger)):
    """Resolve a provisional payment reference to its on-chain status"""
    try:
        finalized = await ledger.lookup_finalized_reference(reference)
    except SettlementUnavailable as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

    if finalized.status == "unknown":
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Payment reference {reference} not found"
        )
    return finalized.model_dump(by_alias=True)
