"""
AgentPay error taxonomy
Every protocol failure is a PaymentError with a stable machine-readable code
"""

from typing import Any, Dict, Optional


class PaymentError(Exception):
    """Base class for all payment protocol failures"""

    code = "payment_error"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "error": self.message, **self.details}


class ConfigError(PaymentError):
    """Raised when the supplied configuration is invalid"""

    code = "config_error"


class MalformedEnvelope(PaymentError):
    """402 body is not a usable payment requirements envelope"""

    code = "malformed_envelope"


class MalformedPaymentHeader(PaymentError):
    """x-payment header could not be decoded into a payment proof"""

    code = "malformed_payment_header"


class InvalidRequirements(PaymentError):
    """Payment requirements or payer identity failed validation"""

    code = "invalid_requirements"


class SigningUnavailable(PaymentError):
    """The signing collaborator could not be reached"""

    code = "signing_unavailable"
    retryable = True


class TransportError(PaymentError):
    """Network-level failure talking to the resource server"""

    code = "transport_error"
    retryable = True


class ConfirmationRequired(PaymentError):
    """Purchase attempted without an explicit affirmative confirmation"""

    code = "confirmation_required"

    def __init__(self, message: str = "User confirmation required before processing payment"):
        super().__init__(message)


class UnknownResource(PaymentError):
    """Reference does not resolve to a known resource"""

    code = "unknown_resource"


class ResourceRequestFailed(PaymentError):
    """Resource server answered the first request with an unexpected status"""

    code = "resource_request_failed"

    def __init__(self, status_code: int, body: Any):
        super().__init__(
            f"Resource server responded with {status_code}",
            details={"status_code": status_code, "body": body},
        )
        self.status_code = status_code
        self.body = body


class SettlementRejected(PaymentError):
    """Proof was refused (bad signature, expired, replayed, mismatched)"""

    code = "settlement_rejected"

    def __init__(self, message: str, status_code: Optional[int] = None, reason: Optional[str] = None):
        details: Dict[str, Any] = {}
        if status_code is not None:
            details["status_code"] = status_code
        if reason:
            details["reason"] = reason
        super().__init__(message, details=details)
        self.status_code = status_code
        self.reason = reason


class SettlementUnavailable(PaymentError):
    """The ledger/facilitator collaborator could not be reached"""

    code = "settlement_unavailable"
    retryable = True


class FundingRequired(PaymentError):
    """Payer wallet cannot cover the price; add funds rather than re-sign"""

    code = "funding_required"

    def __init__(self, message: str, funding_link: Optional[str] = None):
        super().__init__(message, details={"funding_link": funding_link} if funding_link else None)
        self.funding_link = funding_link


class SecondPaymentRequiredNotAllowed(PaymentError):
    """Server demanded payment again after the single retry-with-proof"""

    code = "second_payment_required"
