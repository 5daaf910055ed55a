"""
AgentPay Payment Module
x402 protocol implementation for USDC micropayments on Base L2
"""

from agentpay.payments.models import (
    PaymentRequirements,
    PaymentRequirementsEnvelope,
    PaymentAuthorization,
    ExactPaymentPayload,
    PaymentProof,
    SettlementResponse,
    PriceDescriptor,
    LedgerVerdict,
    VerdictStatus,
    FinalizedReference,
    to_base_units,
    from_base_units,
    USDC_DECIMALS,
)
from agentpay.payments.preparer import PaymentProofPreparer, PreparedPayment
from agentpay.payments.signing import LocalAccountSigner, RemoteSigner, Signer
from agentpay.payments.ledger import FacilitatorLedger, Ledger, SimulatedLedger

__all__ = [
    "PaymentRequirements",
    "PaymentRequirementsEnvelope",
    "PaymentAuthorization",
    "ExactPaymentPayload",
    "PaymentProof",
    "SettlementResponse",
    "PriceDescriptor",
    "LedgerVerdict",
    "VerdictStatus",
    "FinalizedReference",
    "to_base_units",
    "from_base_units",
    "USDC_DECIMALS",
    "PaymentProofPreparer",
    "PreparedPayment",
    "LocalAccountSigner",
    "RemoteSigner",
    "Signer",
    "FacilitatorLedger",
    "Ledger",
    "SimulatedLedger",
]
