"""
Buyer module for AgentPay
Client-side x402 state machine, purchase orchestration and CLI
"""

from agentpay.buyer.client import AttemptState, PurchaseAttempt, ResourceClient
from agentpay.buyer.fused import FetchWithPaymentClient
from agentpay.buyer.orchestrator import PurchaseOrchestrator, PurchaseOutcome

__all__ = [
    "AttemptState",
    "PurchaseAttempt",
    "ResourceClient",
    "FetchWithPaymentClient",
    "PurchaseOrchestrator",
    "PurchaseOutcome",
]
