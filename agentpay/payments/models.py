"""
x402-compliant payment models for AgentPay
Wire models use the protocol's camelCase names as aliases
"""

import re
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator

X402_VERSION = 1
PAYMENT_HEADER = "x-payment"
PAYMENT_RESPONSE_HEADER = "x-payment-response"
PAYMENT_REQUIRED_ERROR = "X-PAYMENT header is required"
INSUFFICIENT_FUNDS_ERROR = "insufficient_funds"

# USDC has 6 decimals
USDC_DECIMALS = 6

_UINT_RE = re.compile(r"[0-9]+")


def _check_uint_string(value: str, field_name: str) -> str:
    if not _UINT_RE.fullmatch(value):
        raise ValueError(f"{field_name} must be a non-negative integer string, got {value!r}")
    return value


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PaymentRequirements(_WireModel):
    """One acceptable way to pay for one resource fetch"""
    scheme: str = Field(description="Payment scheme, e.g. 'exact'")
    network: str = Field(description="Chain/network identifier")
    max_amount_required: str = Field(alias="maxAmountRequired", description="Smallest asset units")
    resource: str
    description: str
    mime_type: str = Field(alias="mimeType")
    pay_to: str = Field(alias="payTo")
    max_timeout_seconds: StrictInt = Field(alias="maxTimeoutSeconds", gt=0)
    asset: str
    output_schema: Optional[Dict[str, Any]] = Field(default=None, alias="outputSchema")
    extra: Optional[Dict[str, Any]] = None

    @field_validator("max_amount_required")
    @classmethod
    def validate_amount(cls, v):
        return _check_uint_string(v, "maxAmountRequired")

    @property
    def amount(self) -> int:
        return int(self.max_amount_required)


class PaymentRequirementsEnvelope(_WireModel):
    """x402 Payment Required response body (HTTP 402)"""
    x402_version: int = Field(default=X402_VERSION, alias="x402Version")
    error: str = PAYMENT_REQUIRED_ERROR
    accepts: List[PaymentRequirements]
    funding_required: Optional[bool] = Field(default=None, alias="fundingRequired")

    def selected(self) -> PaymentRequirements:
        """First-offered requirements win; no scheme negotiation"""
        return self.accepts[0]


class PaymentAuthorization(_WireModel):
    """EIP-3009 TransferWithAuthorization message"""
    from_address: str = Field(alias="from")
    to: str
    value: str
    valid_after: str = Field(alias="validAfter")
    valid_before: str = Field(alias="validBefore")
    nonce: str

    @field_validator("value", "valid_after", "valid_before", mode="before")
    @classmethod
    def coerce_uint(cls, v, info):
        if isinstance(v, bool):
            raise ValueError(f"{info.field_name} must be an integer")
        if isinstance(v, int):
            v = str(v)
        if not isinstance(v, str):
            raise ValueError(f"{info.field_name} must be an integer or integer string")
        return _check_uint_string(v, info.field_name)

    @property
    def value_int(self) -> int:
        return int(self.value)

    @property
    def valid_after_ts(self) -> int:
        return int(self.valid_after)

    @property
    def valid_before_ts(self) -> int:
        return int(self.valid_before)


class ExactPaymentPayload(_WireModel):
    """Signature plus the signed authorization"""
    signature: str
    authorization: PaymentAuthorization


class PaymentProof(_WireModel):
    """x402 payment payload submitted by the buyer in the x-payment header"""
    x402_version: int = Field(default=X402_VERSION, alias="x402Version")
    scheme: str
    network: str
    payload: ExactPaymentPayload

    @property
    def authorization(self) -> PaymentAuthorization:
        return self.payload.authorization

    @property
    def payer(self) -> str:
        return self.payload.authorization.from_address

    @property
    def nonce(self) -> str:
        return self.payload.authorization.nonce


class SettlementResponse(_WireModel):
    """Body of the x-payment-response header returned after settlement"""
    success: bool
    transaction: Optional[str] = None
    network: Optional[str] = None
    payer: Optional[str] = None
    error_reason: Optional[str] = Field(default=None, alias="errorReason")


class PriceDescriptor(BaseModel):
    """Price of one resource as supplied by the catalog"""
    resource_id: str
    amount: str = Field(description="Price in smallest asset units")
    description: str
    mime_type: str = "application/json"
    output_schema: Optional[Dict[str, Any]] = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v):
        return _check_uint_string(v, "amount")


class VerdictStatus(str, Enum):
    """Outcome reported by the ledger collaborator"""
    SETTLED = "settled"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    REQUIRES_PAYMENT = "requires_payment"
    REJECTED = "rejected"


class LedgerVerdict(BaseModel):
    """Result of asking the ledger to verify and settle a proof"""
    status: VerdictStatus
    reference: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[str] = None
    payer: Optional[str] = None
    network: Optional[str] = None


class FinalizedReference(BaseModel):
    """Out-of-band resolution of a payment reference"""
    reference: str
    status: str = Field(description="pending, finalized, failed or unknown")
    tx_hash: Optional[str] = Field(default=None, serialization_alias="txHash")


def to_base_units(amount: Union[Decimal, str, int], decimals: int = USDC_DECIMALS) -> int:
    """Convert a human amount (e.g. '4.20' USDC) to integer smallest units"""
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError(f"Amount {amount!r} is not a valid decimal number") from exc

    scaled = value * (Decimal(10) ** decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount} cannot be represented with {decimals} decimals")
    if scaled < 0:
        raise ValueError("Amount must not be negative")
    return int(scaled)


def from_base_units(amount: Union[int, str], decimals: int = USDC_DECIMALS) -> Decimal:
    return Decimal(int(amount)) / Decimal(10 ** decimals)
