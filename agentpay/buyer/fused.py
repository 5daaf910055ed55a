"""
Fused fetch-with-payment client
A remote facilitator performs request, signing and retry in one call
"""

import asyncio
from datetime import datetime
from typing import Optional

import httpx
import structlog

from agentpay.buyer.client import AttemptState, PurchaseAttempt, error_message, response_body
from agentpay.errors import FundingRequired, SettlementRejected, TransportError
from agentpay.events import EventBus, PaymentPhase, publish

logger = structlog.get_logger()

DEFAULT_FUNDING_LINK = "https://faucet.circle.com/"


class FetchWithPaymentClient:
    """
    POST {service_url}?url=...&method=...&from=... with x-secret-key.

    200 is success; 402 means the wallet cannot cover the price and maps
    to FundingRequired; anything else is SettlementRejected. Exactly one
    network call per attempt.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        service_url: str,
        api_key: str,
        payer: str,
        events: Optional[EventBus] = None,
        funding_link: str = DEFAULT_FUNDING_LINK,
    ):
        self.http_client = http_client
        self.service_url = service_url
        self.api_key = api_key
        self.payer = payer
        self.events = events
        self.funding_link = funding_link

    async def fetch(
        self,
        url: str,
        resource_id: Optional[str] = None,
        method: str = "POST",
    ) -> PurchaseAttempt:
        attempt = PurchaseAttempt(resource_id=resource_id or url, url=url, method=method.upper())
        attempt.state = AttemptState.AWAITING_FIRST_RESPONSE
        await publish(self.events, PaymentPhase.REQUEST_SENT, attempt.resource_id, "buyer", url=url, fused=True)

        logger.info("fetch_with_payment_request", url=url, payer=self.payer)
        attempt.network_calls += 1
        try:
            response = await self.http_client.post(
                self.service_url,
                params={"url": url, "method": attempt.method, "from": self.payer},
                headers={"x-secret-key": self.api_key, "Content-Type": "application/json"},
            )
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            return await self._finish(attempt, error=TransportError(f"Fetch-with-payment call failed: {e}"))

        attempt.status_code = response.status_code
        attempt.body = response_body(response)

        if response.status_code == 200:
            if isinstance(attempt.body, dict):
                attempt.payment_reference = (
                    attempt.body.get("paymentReference")
                    or attempt.body.get("transactionId")
                    or attempt.body.get("transactionHash")
                )
            return await self._finish(attempt)

        if response.status_code == 402:
            link = self.funding_link
            result = attempt.body.get("result") if isinstance(attempt.body, dict) else None
            if isinstance(result, dict) and isinstance(result.get("link"), str):
                link = result["link"] or link
            return await self._finish(
                attempt,
                error=FundingRequired(
                    "Insufficient wallet balance - funding required to complete purchase",
                    funding_link=link,
                ),
            )

        reason = attempt.body.get("reason") if isinstance(attempt.body, dict) else None
        return await self._finish(
            attempt,
            error=SettlementRejected(
                error_message(attempt.body, response.status_code), response.status_code, reason
            ),
        )

    async def _finish(self, attempt: PurchaseAttempt, error=None) -> PurchaseAttempt:
        attempt.error = error
        attempt.state = AttemptState.FAILED if error else AttemptState.SUCCESS
        attempt.ended_at = datetime.utcnow()
        if error is None:
            phase = PaymentPhase.PURCHASE_SUCCEEDED
        elif isinstance(error, FundingRequired):
            phase = PaymentPhase.FUNDING_REQUIRED
        else:
            phase = PaymentPhase.PURCHASE_FAILED
        logger.info(
            "fetch_with_payment_finished",
            resource=attempt.resource_id,
            state=attempt.state.value,
            status_code=attempt.status_code,
            code=error.code if error else None,
        )
        await publish(self.events, phase, attempt.resource_id, "buyer", status_code=attempt.status_code)
        return attempt
