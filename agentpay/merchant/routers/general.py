from datetime import datetime

from fastapi import APIRouter, Depends

from agentpay.config import MerchantConfig
from agentpay.merchant.catalog import ProductCatalog
from agentpay.merchant.dependencies import get_catalog, get_config
from agentpay.merchant.models import X402Manifest

router = APIRouter(tags=["General"])


@router.get("/", tags=["Health"])
async def root():
    """Root endpoint with basic info"""
    return {
        "name": "AgentPay Merchant",
        "version": "0.1.0",
        "status": "operational",
        "x402_manifest": "/x402.json"
    }


@router.get("/x402.json", response_model=X402Manifest, tags=["Payments"])
async def get_x402_manifest(config: MerchantConfig = Depends(get_config)):
    """
    x402 protocol manifest
    Machine-readable specification for payment protocol
    """
    return X402Manifest(
        payment_methods=[f"x402-usdc-{config.network}"],
        supported_networks=[config.network],
        endpoints={
            "products": "/api/products",
            "product": "/api/products/{product_id}",
            "purchase": "/api/purchase/{product_id}",
            "payment_lookup": "/api/payments/{reference}"
        }
    )


@router.get("/health", tags=["Health"])
async def health_check(catalog: ProductCatalog = Depends(get_catalog)):
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "products": len(catalog)
    }
