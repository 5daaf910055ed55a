"""
Tests for the x402 wire codec
402 envelopes, x-payment headers and x-payment-response headers
"""

import base64
import json

import pytest

from agentpay.errors import MalformedEnvelope, MalformedPaymentHeader
from agentpay.payments.codec import (
    decode_envelope,
    decode_payment_header,
    decode_settlement_response,
    encode_envelope,
    encode_payment_header,
    encode_settlement_response,
)
from agentpay.payments.models import PAYMENT_REQUIRED_ERROR, PaymentRequirementsEnvelope
from tests.factories import PaymentRequirementsFactory, SettlementResponseFactory


def _envelope_body(**overrides) -> dict:
    requirements = PaymentRequirementsFactory().to_wire()
    body = {"x402Version": 1, "error": PAYMENT_REQUIRED_ERROR, "accepts": [requirements]}
    body.update(overrides)
    return body


class TestEnvelopeDecoding:
    """Decoding 402 bodies"""

    def test_decode_valid_envelope(self):
        body = _envelope_body()
        envelope = decode_envelope(json.dumps(body).encode())

        assert envelope.x402_version == 1
        assert envelope.error == PAYMENT_REQUIRED_ERROR
        selected = envelope.selected()
        assert selected.max_amount_required == "1000000"
        assert selected.amount == 1_000_000
        assert selected.max_timeout_seconds == 300
        assert selected.extra == {"name": "USDC", "version": "2"}

    def test_reencoding_is_stable(self):
        raw = json.dumps(_envelope_body()).encode()
        once = encode_envelope(decode_envelope(raw))
        twice = encode_envelope(decode_envelope(once))

        assert once == twice
        assert json.loads(once)["accepts"][0]["maxAmountRequired"] == "1000000"

    def test_missing_version_fails(self):
        body = _envelope_body()
        del body["x402Version"]

        with pytest.raises(MalformedEnvelope):
            decode_envelope(json.dumps(body))

    @pytest.mark.parametrize("version", [99, 0, "1", True])
    def test_unsupported_version_fails(self, version):
        with pytest.raises(MalformedEnvelope):
            decode_envelope(json.dumps(_envelope_body(x402Version=version)))

    @pytest.mark.parametrize("accepts", [[], None, "not-a-list"])
    def test_empty_or_missing_accepts_fails(self, accepts):
        body = _envelope_body()
        if accepts is None:
            del body["accepts"]
        else:
            body["accepts"] = accepts

        with pytest.raises(MalformedEnvelope):
            decode_envelope(json.dumps(body))

    def test_non_json_body_fails(self):
        with pytest.raises(MalformedEnvelope):
            decode_envelope(b"<html>Payment Required</html>")

    def test_json_array_body_fails(self):
        with pytest.raises(MalformedEnvelope):
            decode_envelope(b"[]")

    def test_missing_required_field_fails(self):
        body = _envelope_body()
        del body["accepts"][0]["payTo"]

        with pytest.raises(MalformedEnvelope) as exc_info:
            decode_envelope(json.dumps(body))
        assert "payTo" in exc_info.value.message

    @pytest.mark.parametrize("field,value", [
        ("maxTimeoutSeconds", "300"),
        ("maxTimeoutSeconds", 0),
        ("maxAmountRequired", "-5"),
        ("maxAmountRequired", "1.5"),
    ])
    def test_wrong_typed_field_fails(self, field, value):
        body = _envelope_body()
        body["accepts"][0][field] = value

        with pytest.raises(MalformedEnvelope):
            decode_envelope(json.dumps(body))

    def test_invalid_later_entries_are_dropped(self):
        body = _envelope_body()
        body["accepts"].append({"scheme": "exact"})

        envelope = decode_envelope(json.dumps(body))
        assert len(envelope.accepts) == 1

    def test_first_entry_is_selected(self):
        body = _envelope_body()
        second = PaymentRequirementsFactory(max_amount_required="5").to_wire()
        body["accepts"].append(second)

        envelope = decode_envelope(json.dumps(body))
        assert envelope.selected().max_amount_required == "1000000"

    def test_funding_required_flag_is_read(self):
        body = _envelope_body(error="insufficient_funds", fundingRequired=True)
        envelope = decode_envelope(json.dumps(body))

        assert envelope.funding_required is True
        assert envelope.error == "insufficient_funds"

    def test_encode_omits_unset_optional_fields(self):
        envelope = PaymentRequirementsEnvelope(accepts=[PaymentRequirementsFactory(extra=None)])
        data = json.loads(encode_envelope(envelope))

        assert "fundingRequired" not in data
        assert "outputSchema" not in data["accepts"][0]
        assert "extra" not in data["accepts"][0]


class TestPaymentHeader:
    """x-payment header encoding"""

    @pytest.mark.asyncio
    async def test_header_is_base64_json(self, signer):
        proof = await signer.sign_proof(signer.address, PaymentRequirementsFactory())

        header = encode_payment_header(proof)
        document = json.loads(base64.b64decode(header))

        assert document["x402Version"] == 1
        assert document["scheme"] == "exact"
        assert set(document["payload"]["authorization"]) == {
            "from", "to", "value", "validAfter", "validBefore", "nonce"
        }
        assert decode_payment_header(header) == proof

    @pytest.mark.parametrize("value", ["", "   ", "!!!not-base64!!!"])
    def test_undecodable_header_fails(self, value):
        with pytest.raises(MalformedPaymentHeader):
            decode_payment_header(value)

    def test_base64_of_non_proof_fails(self):
        header = base64.b64encode(json.dumps({"hello": "world"}).encode()).decode()
        with pytest.raises(MalformedPaymentHeader):
            decode_payment_header(header)

    def test_base64_of_non_json_fails(self):
        header = base64.b64encode(b"not json").decode()
        with pytest.raises(MalformedPaymentHeader):
            decode_payment_header(header)


class TestSettlementResponseHeader:

    def test_settlement_response_round_trip(self):
        receipt = SettlementResponseFactory()
        decoded = decode_settlement_response(encode_settlement_response(receipt))

        assert decoded == receipt
        assert decoded.success is True
