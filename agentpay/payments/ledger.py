"""
Ledger collaborators for the settlement engine
Verify a payment proof against requirements and finalize it at most once
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Set, Tuple

import httpx
import structlog
from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

from agentpay.errors import SettlementUnavailable
from agentpay.payments.eip3009 import (
    DEFAULT_TOKEN_NAME,
    DEFAULT_TOKEN_VERSION,
    chain_id_for,
    create_typed_data,
)
from agentpay.payments.models import (
    X402_VERSION,
    FinalizedReference,
    LedgerVerdict,
    PaymentProof,
    PaymentRequirements,
    VerdictStatus,
)

logger = structlog.get_logger()


class Ledger(Protocol):
    """Settlement collaborator; owns nonce uniqueness"""

    async def verify_settlement(
        self, proof: PaymentProof, requirements: PaymentRequirements
    ) -> LedgerVerdict:
        ...

    async def lookup_finalized_reference(self, reference: str) -> FinalizedReference:
        ...


@dataclass
class _SettlementRecord:
    reference: str
    payer: str
    amount: int
    network: str
    settled_at: float
    tx_hash: str


class SimulatedLedger:
    """
    In-process ledger for development and tests.

    Verifies the EIP-712 signature with eth-account, checks payee, asset
    window, amount and a balance table, and claims each (payer, nonce)
    exactly once under a lock so concurrent duplicates cannot both settle.
    References become finalized ``finality_delay_seconds`` after settlement.
    """

    def __init__(
        self,
        balances: Optional[Dict[str, int]] = None,
        default_balance: Optional[int] = None,
        finality_delay_seconds: float = 0.0,
        clock: Callable[[], float] = time.time,
    ):
        self.balances: Dict[str, int] = {k.lower(): v for k, v in (balances or {}).items()}
        self.default_balance = default_balance
        self.finality_delay_seconds = finality_delay_seconds
        self._clock = clock
        self._used_nonces: Set[Tuple[str, str]] = set()
        self._settlements: Dict[str, _SettlementRecord] = {}
        self._lock = asyncio.Lock()
        self.verify_calls = 0

    def fund(self, address: str, amount: int) -> None:
        key = address.lower()
        self.balances[key] = self._balance_of(key) + amount

    def _balance_of(self, address: str) -> int:
        if address in self.balances:
            return self.balances[address]
        return self.default_balance if self.default_balance is not None else 0

    def _has_funds(self, address: str, amount: int) -> bool:
        if address not in self.balances and self.default_balance is None:
            return True
        return self._balance_of(address) >= amount

    @staticmethod
    def _rejected(error: str, reason: str, proof: PaymentProof) -> LedgerVerdict:
        return LedgerVerdict(
            status=VerdictStatus.REJECTED,
            error=error,
            reason=reason,
            payer=proof.payer,
            network=proof.network,
        )

    def _recover_signer(self, proof: PaymentProof, requirements: PaymentRequirements) -> Optional[str]:
        auth = proof.authorization
        extra = requirements.extra or {}
        try:
            typed_data = create_typed_data(
                from_address=auth.from_address,
                to=auth.to,
                value=auth.value_int,
                valid_after=auth.valid_after_ts,
                valid_before=auth.valid_before_ts,
                nonce=auth.nonce,
                chain_id=chain_id_for(proof.network),
                verifying_contract=requirements.asset,
                token_name=extra.get("name", DEFAULT_TOKEN_NAME),
                token_version=extra.get("version", DEFAULT_TOKEN_VERSION),
            )
            encoded = encode_typed_data(full_message=typed_data)
            return Account.recover_message(encoded, signature=proof.payload.signature)
        except Exception as e:
            logger.warning("payment_signature_recovery_failed", error=str(e))
            return None

    async def verify_settlement(
        self, proof: PaymentProof, requirements: PaymentRequirements
    ) -> LedgerVerdict:
        self.verify_calls += 1
        auth = proof.authorization
        now = int(self._clock())

        if proof.scheme != requirements.scheme or proof.network != requirements.network:
            return self._rejected("Scheme or network mismatch", "network_mismatch", proof)

        if auth.to.lower() != requirements.pay_to.lower():
            return self._rejected("Recipient mismatch", "recipient_mismatch", proof)

        if auth.value_int < requirements.amount:
            return LedgerVerdict(
                status=VerdictStatus.INSUFFICIENT_FUNDS,
                error=f"Insufficient amount: got {auth.value}, expected {requirements.max_amount_required}",
                reason="insufficient_amount",
                payer=proof.payer,
                network=proof.network,
            )

        if auth.valid_before_ts <= now:
            return self._rejected("Payment authorization expired", "expired", proof)
        if auth.valid_after_ts > now:
            return self._rejected("Payment authorization not yet valid", "not_yet_valid", proof)

        recovered = self._recover_signer(proof, requirements)
        if recovered is None or recovered.lower() != auth.from_address.lower():
            return self._rejected("Invalid signature", "invalid_signature", proof)

        payer = auth.from_address.lower()
        nonce_key = (payer, auth.nonce.lower())

        async with self._lock:
            if nonce_key in self._used_nonces:
                logger.warning("payment_nonce_replayed", payer=auth.from_address, nonce=auth.nonce)
                return self._rejected("Payment authorization nonce already used", "nonce_already_used", proof)

            if not self._has_funds(payer, auth.value_int):
                return LedgerVerdict(
                    status=VerdictStatus.INSUFFICIENT_FUNDS,
                    error=f"Insufficient USDC balance: {self._balance_of(payer)} < {auth.value}",
                    reason="insufficient_funds",
                    payer=proof.payer,
                    network=proof.network,
                )

            self._used_nonces.add(nonce_key)
            if payer in self.balances or self.default_balance is not None:
                self.balances[payer] = self._balance_of(payer) - auth.value_int

            reference = f"sim_{uuid.uuid4().hex}"
            self._settlements[reference] = _SettlementRecord(
                reference=reference,
                payer=auth.from_address,
                amount=auth.value_int,
                network=proof.network,
                settled_at=self._clock(),
                tx_hash=Web3.to_hex(Web3.keccak(text=f"{reference}:{auth.nonce}")),
            )

        logger.info(
            "payment_settlement_simulated",
            reference=reference,
            payer=auth.from_address,
            to_address=auth.to,
            amount=auth.value,
            mode="simulated",
        )
        return LedgerVerdict(
            status=VerdictStatus.SETTLED,
            reference=reference,
            payer=auth.from_address,
            network=proof.network,
        )

    async def lookup_finalized_reference(self, reference: str) -> FinalizedReference:
        record = self._settlements.get(reference)
        if record is None:
            return FinalizedReference(reference=reference, status="unknown")
        if self._clock() - record.settled_at < self.finality_delay_seconds:
            return FinalizedReference(reference=reference, status="pending")
        return FinalizedReference(reference=reference, status="finalized", tx_hash=record.tx_hash)


class FacilitatorLedger:
    """
    Remote facilitator over HTTP.

    POST {url}/verify then {url}/settle with the x402 facilitator body;
    GET {transactions_url}/transactions/{id} for finalization lookups.
    """

    def __init__(
        self,
        facilitator_url: str,
        api_key: str = "",
        transactions_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.facilitator_url = facilitator_url.rstrip("/")
        self.transactions_url = (transactions_url or self.facilitator_url).rstrip("/")
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> Dict[str, str]:
        return {"x-secret-key": self.api_key} if self.api_key else {}

    async def _post_json(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.facilitator_url}{path}"
        logger.info("facilitator_request", url=url)
        try:
            response = await self.client.post(url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise SettlementUnavailable(f"Facilitator unreachable at {url}: {e}") from e

        if response.status_code >= 500:
            raise SettlementUnavailable(
                f"Facilitator responded with {response.status_code}: {response.text}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise SettlementUnavailable(
                f"Failed to parse JSON from facilitator at {url}: {response.text}"
            ) from e
        if not isinstance(data, dict):
            raise SettlementUnavailable(f"Facilitator at {url} returned a non-object body")
        return data

    @staticmethod
    def _verdict_for_failure(reason: Optional[str], proof: PaymentProof) -> LedgerVerdict:
        reason = reason or "unknown_error"
        if "insufficient_funds" in reason:
            status = VerdictStatus.INSUFFICIENT_FUNDS
        else:
            status = VerdictStatus.REJECTED
        return LedgerVerdict(
            status=status,
            error=reason,
            reason=reason,
            payer=proof.payer,
            network=proof.network,
        )

    async def verify_settlement(
        self, proof: PaymentProof, requirements: PaymentRequirements
    ) -> LedgerVerdict:
        body = {
            "x402Version": X402_VERSION,
            "paymentPayload": proof.to_wire(),
            "paymentRequirements": requirements.to_wire(),
        }

        verify = await self._post_json("/verify", body)
        if not verify.get("isValid"):
            logger.warning("facilitator_verify_rejected", reason=verify.get("invalidReason"))
            return self._verdict_for_failure(verify.get("invalidReason"), proof)

        settle = await self._post_json("/settle", body)
        if not settle.get("success"):
            logger.warning("facilitator_settle_failed", reason=settle.get("errorReason"))
            return self._verdict_for_failure(settle.get("errorReason"), proof)

        transaction = settle.get("transaction")
        if not transaction:
            logger.error("facilitator_settle_missing_transaction", payer=proof.payer)
            raise SettlementUnavailable("Facilitator reported success without a transaction reference")

        return LedgerVerdict(
            status=VerdictStatus.SETTLED,
            reference=transaction,
            payer=settle.get("payer") or proof.payer,
            network=settle.get("network") or proof.network,
        )

    async def lookup_finalized_reference(self, reference: str) -> FinalizedReference:
        url = f"{self.transactions_url}/transactions/{reference}"
        try:
            response = await self.client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            raise SettlementUnavailable(f"Transaction lookup failed: {e}") from e

        if response.status_code == 404:
            return FinalizedReference(reference=reference, status="unknown")
        if response.status_code >= 400:
            logger.error("transaction_lookup_failed", status=response.status_code, reference=reference)
            return FinalizedReference(reference=reference, status="pending")

        try:
            data = response.json()
        except ValueError as e:
            raise SettlementUnavailable(
                f"Failed to parse JSON from transaction lookup at {url}: {response.text}"
            ) from e

        result = data.get("result") if isinstance(data, dict) else None
        tx_hash = result.get("transactionHash") if isinstance(result, dict) else None
        if tx_hash:
            return FinalizedReference(reference=reference, status="finalized", tx_hash=tx_hash)
        return FinalizedReference(reference=reference, status="pending")

    async def close(self):
        await self.client.aclose()
