"""
Resource Client for AgentPay
Client-side x402 state machine: request, pay once on 402, retry once
"""

import asyncio
import binascii
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import httpx
import structlog
from pydantic import ValidationError

from agentpay.errors import (
    FundingRequired,
    MalformedEnvelope,
    PaymentError,
    ResourceRequestFailed,
    SecondPaymentRequiredNotAllowed,
    SettlementRejected,
    TransportError,
    UnknownResource,
)
from agentpay.events import EventBus, PaymentPhase, publish
from agentpay.payments.codec import decode_envelope, decode_settlement_response
from agentpay.payments.models import (
    INSUFFICIENT_FUNDS_ERROR,
    PAYMENT_HEADER,
    PAYMENT_RESPONSE_HEADER,
    PaymentProof,
    PaymentRequirements,
    SettlementResponse,
)
from agentpay.payments.preparer import PaymentProofPreparer

logger = structlog.get_logger()


class AttemptState(Enum):
    """Lifecycle states for one purchase attempt"""
    INITIAL = "initial"
    AWAITING_FIRST_RESPONSE = "awaiting_first_response"
    PAYMENT_REQUIRED = "payment_required"
    AWAITING_RETRY_RESPONSE = "awaiting_retry_response"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class PurchaseAttempt:
    """Everything known about a single fetch of a priced resource"""
    resource_id: str
    url: str
    method: str = "POST"
    state: AttemptState = AttemptState.INITIAL
    requirements: Optional[PaymentRequirements] = None
    proof: Optional[PaymentProof] = None
    status_code: Optional[int] = None
    body: Any = None
    payment_reference: Optional[str] = None
    settlement: Optional[SettlementResponse] = None
    error: Optional[PaymentError] = None
    network_calls: int = 0
    created_at: datetime = field(default_factory=datetime.utcnow)
    ended_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.state == AttemptState.SUCCESS

    @property
    def funding_required(self) -> bool:
        return isinstance(self.error, FundingRequired)

    @property
    def paid(self) -> bool:
        return self.proof is not None


def response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _is_funding_required(body: Any) -> bool:
    if not isinstance(body, dict):
        return False
    return body.get("error") == INSUFFICIENT_FUNDS_ERROR or body.get("fundingRequired") is True


def error_message(body: Any, status_code: int) -> str:
    if isinstance(body, dict):
        for key in ("error", "detail", "message"):
            if body.get(key):
                return str(body[key])
    if isinstance(body, str) and body:
        return body
    return f"Settlement rejected with status {status_code}"


class ResourceClient:
    """
    Fetches a priced resource, paying at most once.

    At most two network calls per attempt. The retry is the identical
    request plus the x-payment header. A second 402 is terminal.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        preparer: PaymentProofPreparer,
        payer: str,
        events: Optional[EventBus] = None,
        funding_link: Optional[str] = None,
    ):
        self.http_client = http_client
        self.preparer = preparer
        self.payer = payer
        self.events = events
        self.funding_link = funding_link

    async def fetch(
        self,
        url: str,
        resource_id: Optional[str] = None,
        method: str = "POST",
        json: Optional[Dict[str, Any]] = None,
    ) -> PurchaseAttempt:
        """
        Run one attempt to completion.
        Transitions: INITIAL -> AWAITING_FIRST_RESPONSE -> SUCCESS | PAYMENT_REQUIRED
                     -> AWAITING_RETRY_RESPONSE -> SUCCESS | FAILED
        """
        attempt = PurchaseAttempt(resource_id=resource_id or url, url=url, method=method.upper())

        # 1. First request, no payment header
        self._transition_state(attempt, AttemptState.AWAITING_FIRST_RESPONSE)
        await publish(self.events, PaymentPhase.REQUEST_SENT, attempt.resource_id, "buyer", url=url)
        try:
            response = await self._send(attempt, json=json)
        except TransportError as e:
            return await self._fail(attempt, e)

        if response.is_success:
            return await self._succeed(attempt, response)

        if response.status_code != 402:
            body = response_body(response)
            if response.status_code == 404:
                return await self._fail(attempt, UnknownResource(f"Resource not found: {url}"), response)
            return await self._fail(attempt, ResourceRequestFailed(response.status_code, body), response)

        # 2. Payment required
        try:
            envelope = decode_envelope(response.content)
        except MalformedEnvelope as e:
            return await self._fail(attempt, e, response)

        attempt.requirements = envelope.selected()
        self._transition_state(attempt, AttemptState.PAYMENT_REQUIRED)
        logger.info(
            "payment_required_received",
            resource=attempt.resource_id,
            amount=attempt.requirements.max_amount_required,
            pay_to=attempt.requirements.pay_to,
            network=attempt.requirements.network,
        )
        await publish(
            self.events,
            PaymentPhase.PAYMENT_REQUIRED,
            attempt.resource_id,
            "buyer",
            amount=attempt.requirements.max_amount_required,
            pay_to=attempt.requirements.pay_to,
        )

        await publish(self.events, PaymentPhase.PREPARING_PAYMENT, attempt.resource_id, "buyer")
        try:
            prepared = await self.preparer.prepare_payment(self.payer, attempt.requirements)
        except PaymentError as e:
            return await self._fail(attempt, e)
        attempt.proof = prepared.proof

        # 3. Single retry with proof
        self._transition_state(attempt, AttemptState.AWAITING_RETRY_RESPONSE)
        await publish(
            self.events, PaymentPhase.PAYMENT_SENT, attempt.resource_id, "buyer", nonce=prepared.proof.nonce
        )
        try:
            response = await self._send(attempt, json=json, headers={PAYMENT_HEADER: prepared.header})
        except TransportError as e:
            return await self._fail(attempt, e)

        if response.is_success:
            return await self._succeed(attempt, response)

        body = response_body(response)
        if response.status_code == 402:
            if _is_funding_required(body):
                error: PaymentError = FundingRequired(
                    "Insufficient wallet balance - funding required to complete purchase",
                    funding_link=self.funding_link,
                )
            else:
                error = SecondPaymentRequiredNotAllowed(
                    "Server demanded payment again after the proof was submitted"
                )
            return await self._fail(attempt, error, response)

        reason = body.get("reason") if isinstance(body, dict) else None
        return await self._fail(
            attempt,
            SettlementRejected(error_message(body, response.status_code), response.status_code, reason),
            response,
        )

    async def _send(
        self,
        attempt: PurchaseAttempt,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        attempt.network_calls += 1
        try:
            return await self.http_client.request(attempt.method, attempt.url, json=json, headers=headers)
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            logger.error("resource_request_transport_error", url=attempt.url, error=str(e))
            raise TransportError(f"Request to {attempt.url} failed: {e}") from e

    async def _succeed(self, attempt: PurchaseAttempt, response: httpx.Response) -> PurchaseAttempt:
        attempt.status_code = response.status_code
        attempt.body = response_body(response)

        receipt_header = response.headers.get(PAYMENT_RESPONSE_HEADER)
        if receipt_header:
            try:
                attempt.settlement = decode_settlement_response(receipt_header)
            except (binascii.Error, UnicodeDecodeError, ValidationError) as e:
                logger.warning("payment_response_header_unreadable", error=str(e))

        if isinstance(attempt.body, dict) and attempt.body.get("paymentReference"):
            attempt.payment_reference = attempt.body["paymentReference"]
        elif attempt.settlement is not None:
            attempt.payment_reference = attempt.settlement.transaction

        self._transition_state(attempt, AttemptState.SUCCESS)
        attempt.ended_at = datetime.utcnow()
        await publish(
            self.events,
            PaymentPhase.PURCHASE_SUCCEEDED,
            attempt.resource_id,
            "buyer",
            paid=attempt.paid,
            payment_reference=attempt.payment_reference,
        )
        return attempt

    async def _fail(
        self,
        attempt: PurchaseAttempt,
        error: PaymentError,
        response: Optional[httpx.Response] = None,
    ) -> PurchaseAttempt:
        if response is not None:
            attempt.status_code = response.status_code
            attempt.body = response_body(response)
        attempt.error = error
        self._transition_state(attempt, AttemptState.FAILED)
        attempt.ended_at = datetime.utcnow()
        logger.warning(
            "purchase_attempt_failed",
            resource=attempt.resource_id,
            code=error.code,
            error=error.message,
            status_code=attempt.status_code,
        )

        phase = PaymentPhase.FUNDING_REQUIRED if isinstance(error, FundingRequired) else PaymentPhase.PURCHASE_FAILED
        await publish(self.events, phase, attempt.resource_id, "buyer", code=error.code, error=error.message)
        return attempt

    def _transition_state(self, attempt: PurchaseAttempt, new_state: AttemptState):
        old_state = attempt.state
        attempt.state = new_state
        logger.info(
            "purchase_state_transition",
            resource=attempt.resource_id,
            from_state=old_state.value,
            to_state=new_state.value,
        )
