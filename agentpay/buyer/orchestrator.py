"""
Purchase Orchestrator
Confirmation gate and catalog resolution in front of the resource client
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import structlog

from agentpay.buyer.catalog import CatalogResolver
from agentpay.buyer.client import PurchaseAttempt
from agentpay.errors import ConfirmationRequired, FundingRequired, PaymentError, UnknownResource
from agentpay.events import EventBus, PaymentPhase, publish
from agentpay.models import Product

logger = structlog.get_logger()


class PurchaseClient(Protocol):
    async def fetch(self, url: str, resource_id: Optional[str] = None, method: str = "POST") -> PurchaseAttempt:
        ...


@dataclass
class PurchaseOutcome:
    """Result handed back to the caller of purchase()"""
    success: bool
    reference: str
    product: Optional[Product] = None
    payment_reference: Optional[str] = None
    body: Any = None
    error: Optional[PaymentError] = None
    funding_required: bool = False
    funding_link: Optional[str] = None
    attempt: Optional[PurchaseAttempt] = None

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error else None

    @property
    def retryable(self) -> bool:
        return bool(self.error and self.error.retryable)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "productId": self.reference,
        }
        if self.payment_reference:
            data["paymentReference"] = self.payment_reference
        if self.product:
            data["product"] = self.product.model_dump()
        if self.error:
            data["error"] = self.error.message
            data["code"] = self.error.code
        if self.funding_required:
            data["fundingRequired"] = True
            data["fundingLink"] = self.funding_link
        return data


class PurchaseOrchestrator:
    """
    Purchases a product by reference.

    Nothing touches the network unless ``confirmed is True``; an unknown
    reference fails before the resource server is contacted.
    """

    def __init__(
        self,
        catalog: CatalogResolver,
        client: PurchaseClient,
        merchant_url: str,
        events: Optional[EventBus] = None,
    ):
        self.catalog = catalog
        self.client = client
        self.merchant_url = merchant_url.rstrip("/")
        self.events = events

    def purchase_url(self, product_id: str) -> str:
        return f"{self.merchant_url}/api/purchase/{product_id}"

    async def purchase(self, reference: str, confirmed: bool) -> PurchaseOutcome:
        if confirmed is not True:
            logger.info("purchase_confirmation_missing", reference=reference)
            return await self._failed(reference, ConfirmationRequired())

        try:
            product = await self.catalog.resolve(reference)
        except PaymentError as e:
            return await self._failed(reference, e)

        if product is None:
            return await self._failed(reference, UnknownResource(f"Product {reference} not found"))

        logger.info("purchase_started", reference=reference, price=product.price)
        attempt = await self.client.fetch(self.purchase_url(product.id), resource_id=product.id)

        if attempt.succeeded:
            logger.info(
                "purchase_succeeded",
                reference=reference,
                paid=attempt.paid,
                payment_reference=attempt.payment_reference,
            )
            return PurchaseOutcome(
                success=True,
                reference=reference,
                product=product,
                payment_reference=attempt.payment_reference,
                body=attempt.body,
                attempt=attempt,
            )

        error = attempt.error
        return PurchaseOutcome(
            success=False,
            reference=reference,
            product=product,
            body=attempt.body,
            error=error,
            funding_required=isinstance(error, FundingRequired),
            funding_link=error.funding_link if isinstance(error, FundingRequired) else None,
            attempt=attempt,
        )

    async def _failed(self, reference: str, error: PaymentError) -> PurchaseOutcome:
        logger.warning("purchase_rejected_locally", reference=reference, code=error.code)
        await publish(
            self.events, PaymentPhase.PURCHASE_FAILED, reference, "buyer", code=error.code, error=error.message
        )
        return PurchaseOutcome(success=False, reference=reference, error=error)
