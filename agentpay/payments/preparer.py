"""
Payment proof preparation
Validates requirements, delegates signing, encodes the x-payment header
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

import httpx
import structlog

from agentpay.errors import InvalidRequirements, PaymentError, SigningUnavailable
from agentpay.payments.codec import encode_payment_header
from agentpay.payments.eip3009 import is_address
from agentpay.payments.models import PaymentProof, PaymentRequirements
from agentpay.payments.signing import Signer

logger = structlog.get_logger()


@dataclass(frozen=True)
class PreparedPayment:
    """A signed proof together with its header encoding"""
    proof: PaymentProof
    header: str


class PaymentProofPreparer:
    """
    Turns (payer, requirements) into a signed PaymentProof.

    Two calls with identical requirements yield different proofs because
    the signer allocates a fresh nonce and validity window each time.
    """

    def __init__(self, signer: Signer, clock: Callable[[], float] = time.time):
        self.signer = signer
        self._clock = clock

    def _validate(self, payer_identity: str, requirements: PaymentRequirements) -> None:
        if not is_address(payer_identity):
            raise InvalidRequirements(f"Payer identity is not a valid address: {payer_identity!r}")
        if not requirements.max_amount_required.isdigit():
            raise InvalidRequirements(
                f"maxAmountRequired must be a non-negative integer, got {requirements.max_amount_required!r}"
            )
        if requirements.max_timeout_seconds <= 0:
            raise InvalidRequirements("maxTimeoutSeconds must be positive")
        if not is_address(requirements.pay_to):
            raise InvalidRequirements(f"payTo is not a valid address: {requirements.pay_to!r}")
        if not is_address(requirements.asset):
            raise InvalidRequirements(f"asset is not a valid address: {requirements.asset!r}")

    def _check_proof(self, proof: PaymentProof, requirements: PaymentRequirements) -> None:
        auth = proof.authorization
        if auth.value_int > requirements.amount:
            raise InvalidRequirements(
                f"Signed value {auth.value} exceeds maxAmountRequired {requirements.max_amount_required}"
            )
        if auth.valid_before_ts <= int(self._clock()):
            raise InvalidRequirements("Signed authorization is already expired")
        if proof.scheme != requirements.scheme or proof.network != requirements.network:
            raise InvalidRequirements("Signed proof does not match the requested scheme/network")

    async def prepare(self, payer_identity: str, requirements: PaymentRequirements) -> PaymentProof:
        self._validate(payer_identity, requirements)

        logger.info(
            "payment_proof_preparing",
            payer=payer_identity,
            pay_to=requirements.pay_to,
            amount=requirements.max_amount_required,
            network=requirements.network,
        )

        try:
            proof = await self.signer.sign_proof(payer_identity, requirements)
        except PaymentError:
            raise
        except (httpx.HTTPError, OSError, asyncio.TimeoutError) as e:
            logger.error("payment_signing_unavailable", error=str(e))
            raise SigningUnavailable(f"Signing collaborator unreachable: {e}") from e

        self._check_proof(proof, requirements)

        logger.info("payment_proof_prepared", payer=payer_identity, nonce=proof.nonce)
        return proof

    async def prepare_payment(
        self, payer_identity: str, requirements: PaymentRequirements
    ) -> PreparedPayment:
        proof = await self.prepare(payer_identity, requirements)
        return PreparedPayment(proof=proof, header=encode_payment_header(proof))
