"""
Settlement Engine for AgentPay
Server-side x402 state machine: demand payment, verify the proof, settle once
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog

from agentpay.errors import ConfigError, MalformedPaymentHeader, SettlementUnavailable
from agentpay.events import EventBus, PaymentPhase, publish
from agentpay.payments.codec import decode_payment_header, encode_settlement_response
from agentpay.payments.eip3009 import DEFAULT_TOKEN_NAME, DEFAULT_TOKEN_VERSION, is_address
from agentpay.payments.ledger import Ledger
from agentpay.payments.models import (
    INSUFFICIENT_FUNDS_ERROR,
    PAYMENT_REQUIRED_ERROR,
    PAYMENT_RESPONSE_HEADER,
    X402_VERSION,
    LedgerVerdict,
    PaymentProof,
    PaymentRequirements,
    PaymentRequirementsEnvelope,
    PriceDescriptor,
    SettlementResponse,
    VerdictStatus,
)

logger = structlog.get_logger()

REPLAY_REASONS = {"nonce_already_used", "replay"}


class SettlementState(Enum):
    """Lifecycle states for one incoming request"""
    RECEIVED_REQUEST = "received_request"
    NO_PROOF_RESOLVING = "no_proof_resolving"
    PROOF_RESOLVING = "proof_resolving"
    SETTLED = "settled"
    REQUIRES_PAYMENT = "requires_payment"
    REJECTED = "rejected"


@dataclass(frozen=True)
class SettlementResult:
    """HTTP answer produced once per request"""
    state: SettlementState
    status_code: int
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)
    payment_reference: Optional[str] = None

    @property
    def settled(self) -> bool:
        return self.state == SettlementState.SETTLED


@dataclass
class SettlementContext:
    """Data for a single request while it is being resolved"""
    resource_id: str
    resource_url: str
    requirements: PaymentRequirements
    payment_header: Optional[str] = None
    proof: Optional[PaymentProof] = None
    verdict: Optional[LedgerVerdict] = None
    state: SettlementState = SettlementState.RECEIVED_REQUEST
    created_at: datetime = field(default_factory=datetime.utcnow)


class SettlementEngine:
    """
    Decides the response to a request for a priced resource.

    The proof is handed to the ledger unmodified; nonce uniqueness is the
    ledger's responsibility. Expired proofs never reach the ledger.
    """

    def __init__(
        self,
        ledger: Ledger,
        pay_to: str,
        asset: str,
        network: str,
        token_name: str = DEFAULT_TOKEN_NAME,
        token_version: str = DEFAULT_TOKEN_VERSION,
        max_timeout_seconds: int = 300,
        scheme: str = "exact",
        events: Optional[EventBus] = None,
        clock: Callable[[], float] = time.time,
    ):
        if not is_address(pay_to):
            raise ConfigError(f"Merchant payTo address is invalid: {pay_to!r}")
        if not is_address(asset):
            raise ConfigError(f"Asset contract address is invalid: {asset!r}")
        if max_timeout_seconds <= 0:
            raise ConfigError("max_timeout_seconds must be positive")

        self.ledger = ledger
        self.pay_to = pay_to
        self.asset = asset
        self.network = network
        self.token_name = token_name
        self.token_version = token_version
        self.max_timeout_seconds = max_timeout_seconds
        self.scheme = scheme
        self.events = events
        self._clock = clock

    def build_requirements(self, price: PriceDescriptor, resource_url: str) -> PaymentRequirements:
        """Fresh requirements for one resource"""
        return PaymentRequirements(
            scheme=self.scheme,
            network=self.network,
            max_amount_required=price.amount,
            resource=resource_url,
            description=price.description,
            mime_type=price.mime_type,
            pay_to=self.pay_to,
            max_timeout_seconds=self.max_timeout_seconds,
            asset=self.asset,
            output_schema=price.output_schema,
            extra={"name": self.token_name, "version": self.token_version},
        )

    async def handle(
        self,
        price: PriceDescriptor,
        resource_url: str,
        payment_header: Optional[str] = None,
    ) -> SettlementResult:
        """
        Resolve one request.
        Transitions: RECEIVED_REQUEST -> NO_PROOF_RESOLVING | PROOF_RESOLVING
                     -> SETTLED | REQUIRES_PAYMENT | REJECTED
        """
        ctx = SettlementContext(
            resource_id=price.resource_id,
            resource_url=resource_url,
            requirements=self.build_requirements(price, resource_url),
            payment_header=payment_header,
        )

        if not payment_header:
            self._transition_state(ctx, SettlementState.NO_PROOF_RESOLVING)
            return await self._require_payment(ctx, PAYMENT_REQUIRED_ERROR)

        self._transition_state(ctx, SettlementState.PROOF_RESOLVING)
        await publish(self.events, PaymentPhase.SETTLEMENT_STARTED, ctx.resource_id, "merchant")

        try:
            ctx.proof = decode_payment_header(payment_header)
        except MalformedPaymentHeader as e:
            return await self._reject(ctx, 400, e.message, reason="malformed_payment_header")

        if ctx.proof.authorization.valid_before_ts <= int(self._clock()):
            return await self._reject(ctx, 400, "Payment authorization expired", reason="expired")

        try:
            ctx.verdict = await self.ledger.verify_settlement(ctx.proof, ctx.requirements)
        except SettlementUnavailable as e:
            logger.error("settlement_ledger_unavailable", resource_id=ctx.resource_id, error=e.message)
            return await self._reject(ctx, 502, e.message, reason="settlement_unavailable")

        verdict = ctx.verdict
        if verdict.status == VerdictStatus.SETTLED:
            if not verdict.reference:
                logger.error("settlement_missing_reference", resource_id=ctx.resource_id)
                return await self._reject(
                    ctx, 502, "Ledger settled without a payment reference", reason="settlement_unavailable"
                )
            return await self._settle(ctx)
        if verdict.status == VerdictStatus.INSUFFICIENT_FUNDS:
            logger.warning(
                "settlement_insufficient_funds",
                resource_id=ctx.resource_id,
                payer=ctx.proof.payer,
                detail=verdict.error,
            )
            return await self._require_payment(ctx, INSUFFICIENT_FUNDS_ERROR, funding_required=True)
        if verdict.status == VerdictStatus.REQUIRES_PAYMENT:
            return await self._require_payment(ctx, verdict.error or PAYMENT_REQUIRED_ERROR)

        status_code = 409 if verdict.reason in REPLAY_REASONS else 400
        return await self._reject(
            ctx, status_code, verdict.error or verdict.reason or "Payment rejected", reason=verdict.reason
        )

    async def _require_payment(
        self, ctx: SettlementContext, error: str, funding_required: bool = False
    ) -> SettlementResult:
        self._transition_state(ctx, SettlementState.REQUIRES_PAYMENT)
        envelope = PaymentRequirementsEnvelope(
            x402_version=X402_VERSION,
            error=error,
            accepts=[ctx.requirements],
            funding_required=True if funding_required else None,
        )
        await publish(
            self.events,
            PaymentPhase.PAYMENT_DEMANDED,
            ctx.resource_id,
            "merchant",
            amount=ctx.requirements.max_amount_required,
            funding_required=funding_required,
        )
        return SettlementResult(
            state=ctx.state,
            status_code=402,
            body=envelope.to_wire(),
        )

    async def _settle(self, ctx: SettlementContext) -> SettlementResult:
        self._transition_state(ctx, SettlementState.SETTLED)
        verdict = ctx.verdict
        payer = verdict.payer or ctx.proof.payer
        network = verdict.network or ctx.proof.network

        receipt = SettlementResponse(
            success=True,
            transaction=verdict.reference,
            network=network,
            payer=payer,
        )
        logger.info(
            "payment_settled",
            resource_id=ctx.resource_id,
            payment_reference=verdict.reference,
            payer=payer,
            amount=ctx.proof.authorization.value,
        )
        await publish(
            self.events,
            PaymentPhase.SETTLED,
            ctx.resource_id,
            "merchant",
            payment_reference=verdict.reference,
        )
        return SettlementResult(
            state=ctx.state,
            status_code=200,
            body={
                "success": True,
                "productId": ctx.resource_id,
                "paymentReference": verdict.reference,
                "payer": payer,
                "network": network,
            },
            headers={PAYMENT_RESPONSE_HEADER: encode_settlement_response(receipt)},
            payment_reference=verdict.reference,
        )

    async def _reject(
        self, ctx: SettlementContext, status_code: int, error: str, reason: Optional[str] = None
    ) -> SettlementResult:
        self._transition_state(ctx, SettlementState.REJECTED)
        logger.warning(
            "settlement_rejected",
            resource_id=ctx.resource_id,
            status_code=status_code,
            reason=reason,
            error=error,
        )
        await publish(
            self.events,
            PaymentPhase.SETTLEMENT_REJECTED,
            ctx.resource_id,
            "merchant",
            status_code=status_code,
            reason=reason,
        )
        body: Dict[str, Any] = {"success": False, "error": error}
        if reason:
            body["reason"] = reason
        return SettlementResult(state=ctx.state, status_code=status_code, body=body)

    def _transition_state(self, ctx: SettlementContext, new_state: SettlementState):
        old_state = ctx.state
        ctx.state = new_state
        logger.info(
            "settlement_state_transition",
            resource_id=ctx.resource_id,
            from_state=old_state.value,
            to_state=new_state.value,
        )
