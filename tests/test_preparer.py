"""
Tests for payment proof preparation and signing collaborators
"""

import time
from unittest.mock import AsyncMock

import httpx
import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data

from agentpay.errors import InvalidRequirements, SigningUnavailable
from agentpay.payments.codec import decode_payment_header
from agentpay.payments.eip3009 import chain_id_for, create_typed_data
from agentpay.payments.models import ExactPaymentPayload, PaymentAuthorization, PaymentProof
from agentpay.payments.preparer import PaymentProofPreparer
from agentpay.payments.signing import LocalAccountSigner, RemoteSigner
from tests.factories import MERCHANT_ADDRESS, USDC_ADDRESS, PaymentRequirementsFactory


def _recover(proof: PaymentProof) -> str:
    auth = proof.authorization
    typed = create_typed_data(
        from_address=auth.from_address,
        to=auth.to,
        value=auth.value_int,
        valid_after=auth.valid_after_ts,
        valid_before=auth.valid_before_ts,
        nonce=auth.nonce,
        chain_id=chain_id_for(proof.network),
        verifying_contract=USDC_ADDRESS,
    )
    return Account.recover_message(encode_typed_data(full_message=typed), signature=proof.payload.signature)


def _proof_for(payer: str, value: str, valid_before: int) -> PaymentProof:
    return PaymentProof(
        scheme="exact",
        network="base-sepolia",
        payload=ExactPaymentPayload(
            signature="0x" + "00" * 65,
            authorization=PaymentAuthorization(
                from_address=payer,
                to=MERCHANT_ADDRESS,
                value=value,
                valid_after="0",
                valid_before=str(valid_before),
                nonce="0x" + "11" * 32,
            ),
        ),
    )


class TestLocalAccountSigner:
    """EIP-3009 signing with a local key"""

    @pytest.mark.asyncio
    async def test_signature_recovers_to_payer(self, signer):
        proof = await signer.sign_proof(signer.address, PaymentRequirementsFactory())
        assert _recover(proof) == signer.address

    @pytest.mark.asyncio
    async def test_authorization_matches_requirements(self, signer):
        requirements = PaymentRequirementsFactory(max_amount_required="4990000", max_timeout_seconds=120)
        before = int(time.time())
        proof = await signer.sign_proof(signer.address, requirements)
        auth = proof.authorization

        assert auth.value == "4990000"
        assert auth.to.lower() == MERCHANT_ADDRESS
        assert auth.from_address == signer.address
        assert before + 120 <= auth.valid_before_ts <= int(time.time()) + 120
        assert auth.valid_after_ts < before
        assert len(auth.nonce) == 66

    @pytest.mark.asyncio
    async def test_refuses_foreign_payer(self, signer):
        with pytest.raises(InvalidRequirements):
            await signer.sign_proof(Account.create().address, PaymentRequirementsFactory())

    @pytest.mark.asyncio
    async def test_unknown_network(self, signer):
        with pytest.raises(InvalidRequirements):
            await signer.sign_proof(signer.address, PaymentRequirementsFactory(network="solana"))


class TestPaymentProofPreparer:
    """Validation around the signing collaborator"""

    @pytest.mark.asyncio
    async def test_prepare_produces_valid_proof(self, preparer, signer):
        requirements = PaymentRequirementsFactory()
        proof = await preparer.prepare(signer.address, requirements)

        assert proof.scheme == requirements.scheme
        assert proof.network == requirements.network
        assert proof.authorization.value_int <= requirements.amount
        assert proof.authorization.valid_before_ts > int(time.time())

    @pytest.mark.asyncio
    async def test_identical_requirements_give_distinct_proofs(self, preparer, signer):
        requirements = PaymentRequirementsFactory()
        first = await preparer.prepare(signer.address, requirements)
        second = await preparer.prepare(signer.address, requirements)

        assert first.nonce != second.nonce
        assert first.payload.signature != second.payload.signature

    @pytest.mark.asyncio
    async def test_prepare_payment_header_decodes_to_proof(self, preparer, signer):
        prepared = await preparer.prepare_payment(signer.address, PaymentRequirementsFactory())
        assert decode_payment_header(prepared.header) == prepared.proof

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payer", ["", "alice", "0x1234", "1234567890abcdef1234567890abcdef12345678"])
    async def test_invalid_payer_identity(self, preparer, payer):
        with pytest.raises(InvalidRequirements):
            await preparer.prepare(payer, PaymentRequirementsFactory())

    @pytest.mark.asyncio
    async def test_invalid_pay_to(self, preparer, signer):
        with pytest.raises(InvalidRequirements):
            await preparer.prepare(signer.address, PaymentRequirementsFactory(pay_to="merchant"))

    @pytest.mark.asyncio
    async def test_invalid_requirements_never_reach_signer(self, signer):
        mock_signer = AsyncMock()
        preparer = PaymentProofPreparer(mock_signer)

        with pytest.raises(InvalidRequirements):
            await preparer.prepare(signer.address, PaymentRequirementsFactory(asset="usdc"))
        mock_signer.sign_proof.assert_not_called()

    @pytest.mark.asyncio
    async def test_unreachable_signer(self, signer):
        mock_signer = AsyncMock()
        mock_signer.sign_proof.side_effect = httpx.ConnectError("connection refused")
        preparer = PaymentProofPreparer(mock_signer)

        with pytest.raises(SigningUnavailable):
            await preparer.prepare(signer.address, PaymentRequirementsFactory())

    @pytest.mark.asyncio
    async def test_overpaying_proof_rejected(self, signer):
        mock_signer = AsyncMock()
        mock_signer.sign_proof.return_value = _proof_for(signer.address, "2000000", int(time.time()) + 300)
        preparer = PaymentProofPreparer(mock_signer)

        with pytest.raises(InvalidRequirements):
            await preparer.prepare(signer.address, PaymentRequirementsFactory(max_amount_required="1000000"))

    @pytest.mark.asyncio
    async def test_expired_proof_rejected(self, signer):
        mock_signer = AsyncMock()
        mock_signer.sign_proof.return_value = _proof_for(signer.address, "1000000", int(time.time()) - 1)
        preparer = PaymentProofPreparer(mock_signer)

        with pytest.raises(InvalidRequirements):
            await preparer.prepare(signer.address, PaymentRequirementsFactory())


class TestRemoteSigner:
    """Signing delegated to a wallet service"""

    @pytest.mark.asyncio
    async def test_remote_proof_is_parsed(self, signer):
        requirements = PaymentRequirementsFactory()
        expected = await signer.sign_proof(signer.address, requirements)
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"paymentPayload": expected.to_wire()})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            remote = RemoteSigner("http://wallet.test", api_key="secret", client=http)
            proof = await remote.sign_proof(signer.address, requirements)

        assert proof == expected
        assert seen[0].url.path == "/sign"
        assert seen[0].headers["x-secret-key"] == "secret"

    @pytest.mark.asyncio
    async def test_server_error_is_signing_unavailable(self, signer):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))

        async with httpx.AsyncClient(transport=transport) as http:
            remote = RemoteSigner("http://wallet.test", client=http)
            with pytest.raises(SigningUnavailable):
                await remote.sign_proof(signer.address, PaymentRequirementsFactory())

    @pytest.mark.asyncio
    async def test_refusal_is_invalid_requirements(self, signer):
        transport = httpx.MockTransport(lambda request: httpx.Response(400, json={"error": "bad asset"}))

        async with httpx.AsyncClient(transport=transport) as http:
            remote = RemoteSigner("http://wallet.test", client=http)
            with pytest.raises(InvalidRequirements):
                await remote.sign_proof(signer.address, PaymentRequirementsFactory())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [["not", "a", "proof"], "just text", {"paymentPayload": None}])
    async def test_unusable_body_is_signing_unavailable(self, signer, body):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=body))

        async with httpx.AsyncClient(transport=transport) as http:
            remote = RemoteSigner("http://wallet.test", client=http)
            with pytest.raises(SigningUnavailable):
                await remote.sign_proof(signer.address, PaymentRequirementsFactory())

    @pytest.mark.asyncio
    async def test_preparer_maps_connection_failure(self, signer):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            preparer = PaymentProofPreparer(RemoteSigner("http://wallet.test", client=http))
            with pytest.raises(SigningUnavailable):
                await preparer.prepare(signer.address, PaymentRequirementsFactory())
