"""
Typed payment phase events
State machines publish PaymentEvents; presentation layers subscribe to them
"""

import inspect
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

logger = structlog.get_logger()


class PaymentPhase(str, Enum):
    """Protocol phases observable from outside the state machines"""
    # Buyer side
    REQUEST_SENT = "request_sent"
    PAYMENT_REQUIRED = "payment_required"
    PREPARING_PAYMENT = "preparing_payment"
    PAYMENT_SENT = "payment_sent"
    PURCHASE_SUCCEEDED = "purchase_succeeded"
    FUNDING_REQUIRED = "funding_required"
    PURCHASE_FAILED = "purchase_failed"
    # Merchant side
    SETTLEMENT_STARTED = "settlement_started"
    PAYMENT_DEMANDED = "payment_demanded"
    SETTLED = "settled"
    SETTLEMENT_REJECTED = "settlement_rejected"


@dataclass(frozen=True)
class PaymentEvent:
    """A single phase transition"""
    phase: PaymentPhase
    resource: str
    source: str  # "buyer" or "merchant"
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "status",
            "data": {
                "phase": self.phase.value,
                "resource": self.resource,
                "source": self.source,
                "timestamp": self.timestamp,
                **self.details,
            },
        }


Subscriber = Callable[[PaymentEvent], Union[None, Awaitable[None]]]


class EventBus:
    """
    In-process fan-out of PaymentEvents.

    Subscribers may be plain callables or coroutine functions. A failing
    subscriber is logged and skipped so presentation never alters protocol
    outcomes.
    """

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber; returns a callable that removes it"""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def emit(self, event: PaymentEvent) -> None:
        for subscriber in list(self._subscribers):
            try:
                result = subscriber(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "payment_event_subscriber_failed",
                    phase=event.phase.value,
                    error=str(e)
                )


async def publish(
    bus: Optional[EventBus],
    phase: PaymentPhase,
    resource: str,
    source: str,
    **details: Any,
) -> None:
    """Emit on ``bus`` when one was injected"""
    if bus is not None:
        await bus.emit(PaymentEvent(phase=phase, resource=resource, source=source, details=details))
