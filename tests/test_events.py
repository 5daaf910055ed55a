"""
Tests for the payment event bus
"""

import pytest

from agentpay.events import EventBus, PaymentEvent, PaymentPhase, publish


class TestEventBus:

    @pytest.mark.asyncio
    async def test_sync_and_async_subscribers(self):
        bus = EventBus()
        seen = []

        async def async_subscriber(event):
            seen.append(("async", event.phase))

        bus.subscribe(lambda event: seen.append(("sync", event.phase)))
        bus.subscribe(async_subscriber)

        await bus.emit(PaymentEvent(phase=PaymentPhase.REQUEST_SENT, resource="tv-1", source="buyer"))

        assert seen == [("sync", PaymentPhase.REQUEST_SENT), ("async", PaymentPhase.REQUEST_SENT)]

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_stop_others(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("display crashed")

        bus.subscribe(broken)
        bus.subscribe(seen.append)

        await bus.emit(PaymentEvent(phase=PaymentPhase.SETTLED, resource="tv-1", source="merchant"))

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe(seen.append)
        assert bus.subscriber_count == 1

        unsubscribe()
        await publish(bus, PaymentPhase.SETTLED, "tv-1", "merchant")

        assert bus.subscriber_count == 0
        assert seen == []

    @pytest.mark.asyncio
    async def test_publish_without_bus_is_noop(self):
        await publish(None, PaymentPhase.SETTLED, "tv-1", "merchant")

    def test_event_wire_shape(self):
        event = PaymentEvent(
            phase=PaymentPhase.PAYMENT_REQUIRED,
            resource="tv-1",
            source="buyer",
            details={"amount": "4990000"},
        )

        data = event.to_dict()

        assert data["type"] == "status"
        assert data["data"]["phase"] == "payment_required"
        assert data["data"]["resource"] == "tv-1"
        assert data["data"]["amount"] == "4990000"
        assert "timestamp" in data["data"]
