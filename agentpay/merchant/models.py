"""
Response models for the merchant API
"""

from typing import Dict, List, Optional

from pydantic import BaseModel

from agentpay.models import Product


class X402Manifest(BaseModel):
    """x402 protocol manifest"""
    version: str = "1.0"
    name: str = "AgentPay Merchant"
    description: str = "Products payable per purchase over x402"
    payment_methods: list[str] = ["x402-usdc"]
    supported_networks: list[str] = ["base-sepolia"]
    endpoints: Dict[str, str]

    class Config:
        json_schema_extra = {
            "example": {
                "version": "1.0",
                "name": "AgentPay Merchant",
                "description": "Products payable per purchase over x402",
                "payment_methods": ["x402-usdc"],
                "supported_networks": ["base-sepolia"],
                "endpoints": {
                    "products": "/api/products",
                    "purchase": "/api/purchase/{product_id}"
                }
            }
        }


class ProductsResponse(BaseModel):
    success: bool = True
    products: List[Product]
    count: int
    message: Optional[str] = None


class ProductResponse(BaseModel):
    success: bool = True
    product: Product
