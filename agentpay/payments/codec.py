"""
Wire codec for the x402 protocol boundary
Pure functions: 402 envelope bodies and base64 JSON headers
"""

import base64
import binascii
import json
from typing import Any, List, Union

import structlog
from pydantic import ValidationError

from agentpay.errors import MalformedEnvelope, MalformedPaymentHeader
from agentpay.payments.models import (
    X402_VERSION,
    PaymentProof,
    PaymentRequirements,
    PaymentRequirementsEnvelope,
    SettlementResponse,
)

logger = structlog.get_logger()


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    location = ".".join(str(part) for part in err.get("loc", ()))
    return f"{location}: {err.get('msg')}" if location else str(err.get("msg"))


def decode_envelope(body: Union[bytes, str]) -> PaymentRequirementsEnvelope:
    """
    Decode a 402 response body.

    Raises MalformedEnvelope when the body is not a JSON object, when
    ``x402Version`` is missing or unsupported, when ``accepts`` is missing
    or empty, or when the first entry is invalid.
    Later entries that fail validation are dropped since only the first
    one is ever selected.
    """
    try:
        data = json.loads(body)
    except (ValueError, TypeError) as exc:
        raise MalformedEnvelope(f"402 body is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise MalformedEnvelope("402 body must be a JSON object")

    version = data.get("x402Version")
    if version is None:
        raise MalformedEnvelope("402 body has no x402Version")
    if type(version) is not int or version != X402_VERSION:
        raise MalformedEnvelope(f"Unsupported x402Version {version!r}")

    accepts = data.get("accepts")
    if not isinstance(accepts, list) or not accepts:
        raise MalformedEnvelope("402 body has no payment options in 'accepts'")

    try:
        first = PaymentRequirements.model_validate(accepts[0])
    except ValidationError as exc:
        raise MalformedEnvelope(f"Invalid payment requirements: {_first_error(exc)}") from exc

    options: List[PaymentRequirements] = [first]
    for index, raw in enumerate(accepts[1:], start=1):
        try:
            options.append(PaymentRequirements.model_validate(raw))
        except ValidationError as exc:
            logger.debug("payment_option_dropped", index=index, error=_first_error(exc))

    envelope_fields: dict[str, Any] = {"accepts": options}
    for key in ("x402Version", "error", "fundingRequired"):
        if key in data:
            envelope_fields[key] = data[key]

    try:
        return PaymentRequirementsEnvelope.model_validate(envelope_fields)
    except ValidationError as exc:
        raise MalformedEnvelope(f"Invalid payment envelope: {_first_error(exc)}") from exc


def encode_envelope(envelope: PaymentRequirementsEnvelope) -> bytes:
    """Encode a 402 body; stable under decode/encode round trips"""
    return envelope.model_dump_json(by_alias=True, exclude_none=True).encode()


def encode_payment_header(proof: PaymentProof) -> str:
    """Encode PaymentProof as base64 for the x-payment header"""
    return base64.b64encode(
        proof.model_dump_json(by_alias=True, exclude_none=True).encode()
    ).decode()


def decode_payment_header(value: str) -> PaymentProof:
    """Decode the x-payment header; raises MalformedPaymentHeader"""
    if not value or not value.strip():
        raise MalformedPaymentHeader("x-payment header is empty")
    try:
        decoded = base64.b64decode(value.strip(), validate=True).decode()
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise MalformedPaymentHeader("x-payment header is not valid base64") from exc

    try:
        return PaymentProof.model_validate_json(decoded)
    except ValidationError as exc:
        raise MalformedPaymentHeader(f"Invalid payment payload: {_first_error(exc)}") from exc


def encode_settlement_response(response: SettlementResponse) -> str:
    """Encode the x-payment-response header"""
    return base64.b64encode(
        response.model_dump_json(by_alias=True, exclude_none=True).encode()
    ).decode()


def decode_settlement_response(value: str) -> SettlementResponse:
    decoded = base64.b64decode(value).decode()
    return SettlementResponse.model_validate_json(decoded)
