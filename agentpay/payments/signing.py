"""
Signing collaborators
The protocol core only sees the Signer interface; key custody lives here
"""

import secrets
import time
from typing import Callable, Optional, Protocol

import httpx
import structlog
from eth_account import Account
from eth_account.messages import encode_typed_data
from pydantic import ValidationError
from web3 import Web3

from agentpay.errors import InvalidRequirements, SigningUnavailable
from agentpay.payments.eip3009 import (
    DEFAULT_TOKEN_NAME,
    DEFAULT_TOKEN_VERSION,
    chain_id_for,
    create_typed_data,
)
from agentpay.payments.models import (
    ExactPaymentPayload,
    PaymentAuthorization,
    PaymentProof,
    PaymentRequirements,
)

logger = structlog.get_logger()


class Signer(Protocol):
    """Given payment terms and a payer, produce a signed payment proof"""

    async def sign_proof(self, payer: str, requirements: PaymentRequirements) -> PaymentProof:
        ...


class LocalAccountSigner:
    """
    Signs EIP-3009 authorizations with a locally held eth-account key.

    validAfter is backdated to tolerate clock skew; validBefore is
    now + maxTimeoutSeconds from the requirements.
    """

    def __init__(
        self,
        private_key: str,
        backdate_seconds: int = 600,
        clock: Callable[[], float] = time.time,
    ):
        self._account = Account.from_key(private_key)
        self.address = self._account.address
        self.backdate_seconds = backdate_seconds
        self._clock = clock

    async def sign_proof(self, payer: str, requirements: PaymentRequirements) -> PaymentProof:
        if payer.lower() != self.address.lower():
            raise InvalidRequirements(f"No signing key held for payer {payer}")

        try:
            chain_id = chain_id_for(requirements.network)
        except ValueError as e:
            raise InvalidRequirements(str(e)) from e

        now = int(self._clock())
        valid_after = max(now - self.backdate_seconds, 0)
        valid_before = now + requirements.max_timeout_seconds
        nonce = "0x" + secrets.token_hex(32)
        extra = requirements.extra or {}

        try:
            typed_data = create_typed_data(
                from_address=self.address,
                to=requirements.pay_to,
                value=requirements.amount,
                valid_after=valid_after,
                valid_before=valid_before,
                nonce=nonce,
                chain_id=chain_id,
                verifying_contract=requirements.asset,
                token_name=extra.get("name", DEFAULT_TOKEN_NAME),
                token_version=extra.get("version", DEFAULT_TOKEN_VERSION),
            )
        except ValueError as e:
            raise InvalidRequirements(f"Cannot build authorization: {e}") from e

        signed = self._account.sign_message(encode_typed_data(full_message=typed_data))

        return PaymentProof(
            scheme=requirements.scheme,
            network=requirements.network,
            payload=ExactPaymentPayload(
                signature=Web3.to_hex(signed.signature),
                authorization=PaymentAuthorization(
                    from_address=self.address,
                    to=Web3.to_checksum_address(requirements.pay_to),
                    value=requirements.max_amount_required,
                    valid_after=str(valid_after),
                    valid_before=str(valid_before),
                    nonce=nonce,
                ),
            ),
        )


class RemoteSigner:
    """Delegates signing to a wallet service over HTTP (POST {url}/sign)"""

    def __init__(
        self,
        service_url: str,
        api_key: str = "",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.service_url = service_url.rstrip("/")
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def sign_proof(self, payer: str, requirements: PaymentRequirements) -> PaymentProof:
        headers = {"x-secret-key": self.api_key} if self.api_key else {}
        try:
            response = await self.client.post(
                f"{self.service_url}/sign",
                json={"from": payer, "paymentRequirements": requirements.to_wire()},
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error("remote_signer_unreachable", url=self.service_url, error=str(e))
            raise SigningUnavailable(f"Signing service unreachable: {e}") from e

        if response.status_code >= 500:
            raise SigningUnavailable(f"Signing service responded with {response.status_code}")
        if response.status_code >= 400:
            raise InvalidRequirements(
                f"Signing service refused requirements: {response.status_code} {response.text}"
            )

        try:
            data = response.json()
            if isinstance(data, dict) and "paymentPayload" in data:
                data = data["paymentPayload"]
            return PaymentProof.model_validate(data)
        except (ValueError, ValidationError) as e:
            raise SigningUnavailable(f"Signing service returned an unusable proof: {e}") from e

    async def close(self):
        await self.client.aclose()
