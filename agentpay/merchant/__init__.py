"""
Merchant module for AgentPay
Provides the product catalog, the settlement engine and the FastAPI server
"""

from agentpay.merchant.catalog import ProductCatalog
from agentpay.models import Product
from agentpay.merchant.settlement import SettlementEngine, SettlementResult, SettlementState

__all__ = ["Product", "ProductCatalog", "SettlementEngine", "SettlementResult", "SettlementState"]
