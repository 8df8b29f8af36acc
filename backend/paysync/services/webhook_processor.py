"""
Webhook Processor

Verifies Stripe webhook signatures and dispatches payment events into the
Order Lifecycle Engine.

Gateways redeliver on timeout, so processing an event twice must be harmless;
the lifecycle transitions are guarded updates, which makes every handler here
idempotent without tracking event ids.
"""
import logging
from enum import Enum
from typing import Any, Dict, Optional

import stripe

from ..exceptions import GatewaySignatureError
from .gateway_client import intent_from_stripe
from .order_lifecycle import OrderLifecycleEngine, mask_identifier

logger = logging.getLogger(__name__)


class WebhookEventType(Enum):
    """Stripe webhook event types we act on"""

    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
    PAYMENT_INTENT_CANCELED = "payment_intent.canceled"
    PAYMENT_METHOD_ATTACHED = "payment_method.attached"


class WebhookStatus(Enum):
    """Webhook processing status"""

    PROCESSED = "processed"
    IGNORED = "ignored"


class WebhookProcessor:
    """Turns verified gateway events into order transitions."""

    def __init__(
        self,
        engine: OrderLifecycleEngine,
        webhook_secret: str,
        tolerance_seconds: int = 300
    ):
        self.engine = engine
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds

        if not webhook_secret:
            logger.warning("STRIPE_WEBHOOK_SECRET not configured; webhooks will be rejected")

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Any:
        """
        Verify the stripe-signature header and parse the event.

        Raises:
            GatewaySignatureError: Secret/header missing, signature invalid,
                timestamp outside tolerance, or payload not JSON
        """
        logger.info(
            f"Webhook received (has_signature={bool(signature)}, body_length={len(payload)}, "
            f"secret_configured={bool(self.webhook_secret)})"
        )

        if not self.webhook_secret:
            raise GatewaySignatureError("Webhook secret not configured")
        if not signature:
            raise GatewaySignatureError("Missing stripe-signature header")

        try:
            return stripe.Webhook.construct_event(
                payload,
                signature,
                self.webhook_secret,
                tolerance=self.tolerance_seconds
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise GatewaySignatureError()
        except ValueError as e:
            logger.warning(f"Webhook payload could not be parsed: {e}")
            raise GatewaySignatureError("Invalid webhook payload")

    async def process(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify and dispatch one webhook delivery.

        Unknown event types are acknowledged and ignored so the gateway does
        not keep redelivering them. Datastore errors propagate so the
        gateway retries.
        """
        event = self.construct_event(payload, signature)
        return await self.dispatch(event)

    async def dispatch(self, event: Any) -> Dict[str, Any]:
        """Route a verified event to its handler."""
        event_type = event["type"]
        event_id = event.get("id")
        obj = event["data"]["object"]

        if event_type == WebhookEventType.PAYMENT_INTENT_SUCCEEDED.value:
            intent = intent_from_stripe(obj)
            logger.info(f"Stripe event {event_type} for payment {mask_identifier(intent.id)}")
            result = await self.engine.confirm_from_gateway(
                intent.id,
                intent.amount,
                intent.currency,
                intent.metadata
            )
            outcome = result.outcome.value

        elif event_type == WebhookEventType.PAYMENT_INTENT_FAILED.value:
            logger.info(f"Stripe payment failed for payment {mask_identifier(obj['id'])}")
            changed = await self.engine.fail_from_gateway(obj["id"])
            outcome = "failed" if changed else "unchanged"

        elif event_type == WebhookEventType.PAYMENT_INTENT_CANCELED.value:
            logger.info(f"Stripe payment canceled for payment {mask_identifier(obj['id'])}")
            changed = await self.engine.refund_from_gateway(obj["id"])
            outcome = "refunded" if changed else "unchanged"

        else:
            if event_type == WebhookEventType.PAYMENT_METHOD_ATTACHED.value:
                logger.info(f"PaymentMethod {mask_identifier(obj.get('id'))} attached to customer")
            else:
                logger.info(f"Unhandled Stripe event type: {event_type}")
            return {
                "received": True,
                "event_id": event_id,
                "status": WebhookStatus.IGNORED.value,
            }

        return {
            "received": True,
            "event_id": event_id,
            "status": WebhookStatus.PROCESSED.value,
            "outcome": outcome,
        }
