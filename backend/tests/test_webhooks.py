"""
Test webhook verification and dispatch
"""
import time

import pytest

from conftest import stripe_event, stripe_signature
from paysync.exceptions import GatewaySignatureError
from paysync.models.orders import OrderStatus
from paysync.services.webhook_processor import WebhookProcessor


def intent_payload(reference, product, status="succeeded", amount=2999, **extra):
    return {
        "id": reference,
        "object": "payment_intent",
        "status": status,
        "amount": amount,
        "currency": "usd",
        "metadata": {"productId": str(product.id), "quantity": "1"},
        **extra,
    }


class TestSignatureVerification:
    async def test_valid_signature(self, webhooks, product):
        payload = stripe_event("payment_intent.succeeded", intent_payload("pi_1", product))

        result = await webhooks.process(payload, stripe_signature(payload))

        assert result["received"] is True
        assert result["status"] == "processed"

    async def test_bad_signature(self, webhooks, product):
        payload = stripe_event("payment_intent.succeeded", intent_payload("pi_1", product))

        with pytest.raises(GatewaySignatureError):
            await webhooks.process(payload, stripe_signature(payload, secret="whsec_other"))

    async def test_missing_header(self, webhooks, product):
        payload = stripe_event("payment_intent.succeeded", intent_payload("pi_1", product))

        with pytest.raises(GatewaySignatureError):
            await webhooks.process(payload, None)

    async def test_expired_timestamp(self, webhooks, product):
        payload = stripe_event("payment_intent.succeeded", intent_payload("pi_1", product))
        old = int(time.time()) - 3600

        with pytest.raises(GatewaySignatureError):
            await webhooks.process(payload, stripe_signature(payload, timestamp=old))

    async def test_secret_not_configured(self, lifecycle, product):
        processor = WebhookProcessor(lifecycle, "")
        payload = stripe_event("payment_intent.succeeded", intent_payload("pi_1", product))

        with pytest.raises(GatewaySignatureError):
            await processor.process(payload, stripe_signature(payload))


class TestDispatch:
    async def test_succeeded_confirms_provisional(self, webhooks, lifecycle, store, product):
        await lifecycle.create_provisional("pi_1", product.id)
        payload = stripe_event("payment_intent.succeeded", intent_payload("pi_1", product))

        result = await webhooks.process(payload, stripe_signature(payload))

        assert result["outcome"] == "confirmed"
        assert (await store.get_by_payment_reference("pi_1")).status == OrderStatus.COMPLETED

    async def test_succeeded_without_order_creates_it(self, webhooks, store, product):
        payload = stripe_event("payment_intent.succeeded", intent_payload("pi_2", product))

        result = await webhooks.process(payload, stripe_signature(payload))

        assert result["outcome"] == "created"
        order = await store.get_by_payment_reference("pi_2")
        assert order.status == OrderStatus.COMPLETED
        assert order.amount == 2999

    async def test_duplicate_delivery(self, webhooks, store, product):
        """Redelivering the same event leaves a single completed order"""
        payload = stripe_event("payment_intent.succeeded", intent_payload("pi_3", product), event_id="evt_1")

        await webhooks.process(payload, stripe_signature(payload))
        result = await webhooks.process(payload, stripe_signature(payload))

        assert result["outcome"] == "already_final"
        stats = await store.count_by_status()
        assert sum(row.count for row in stats) == 1

    async def test_payment_failed(self, webhooks, lifecycle, store, product):
        await lifecycle.create_provisional("pi_4", product.id)
        payload = stripe_event(
            "payment_intent.payment_failed",
            intent_payload("pi_4", product, status="requires_payment_method")
        )

        result = await webhooks.process(payload, stripe_signature(payload))

        assert result["outcome"] == "failed"
        assert (await store.get_by_payment_reference("pi_4")).status == OrderStatus.FAILED

    async def test_canceled_refunds(self, webhooks, lifecycle, store, product):
        await lifecycle.create_provisional("pi_5", product.id)
        payload = stripe_event("payment_intent.canceled", intent_payload("pi_5", product, status="canceled"))

        await webhooks.process(payload, stripe_signature(payload))

        assert (await store.get_by_payment_reference("pi_5")).status == OrderStatus.REFUNDED

    @pytest.mark.parametrize("event_type", ["payment_method.attached", "customer.created"])
    async def test_other_events_ignored(self, webhooks, store, event_type):
        payload = stripe_event(event_type, {"id": "pm_123", "object": "payment_method"})

        result = await webhooks.process(payload, stripe_signature(payload))

        assert result == {"received": True, "event_id": result["event_id"], "status": "ignored"}
        assert await store.count_by_status() == []
