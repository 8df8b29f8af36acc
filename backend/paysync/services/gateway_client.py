"""
Payment Gateway Client

Interface to the payment gateway plus the Stripe implementation.

The Stripe SDK is blocking, so every call runs in a worker thread under
asyncio.wait_for(): a hung gateway can stall one order, never a whole sweep.
All gateway failures surface as GatewayError.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import stripe
from pydantic import BaseModel, Field

from ..exceptions import GatewayError

logger = logging.getLogger(__name__)


# ============================================================================
# Gateway Models
# ============================================================================

class PaymentIntentInfo(BaseModel):
    """Authoritative view of a payment attempt as reported by the gateway."""
    id: str
    status: str
    amount: int = Field(ge=0)
    currency: str
    metadata: Dict[str, str] = Field(default_factory=dict)
    client_secret: Optional[str] = None
    last_payment_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    @property
    def canceled(self) -> bool:
        return self.status == "canceled"

    @property
    def payment_failed(self) -> bool:
        """Gateway recorded a failed attempt and is waiting for a new payment method."""
        return self.status == "requires_payment_method" and self.last_payment_error is not None


class ReceiptInfo(BaseModel):
    """Invoice or receipt link for a completed payment."""
    download_url: Optional[str] = None
    invoice_id: Optional[str] = None
    invoice_number: Optional[str] = None
    charge_id: Optional[str] = None
    message: Optional[str] = None


def intent_from_stripe(obj: Any) -> PaymentIntentInfo:
    """Convert a Stripe PaymentIntent (or its webhook payload dict) to PaymentIntentInfo."""
    metadata = obj.get("metadata") or {}
    error = obj.get("last_payment_error") or None
    error_message = None
    if error:
        error_message = error.get("message") or error.get("code") or "payment_failed"

    return PaymentIntentInfo(
        id=obj["id"],
        status=obj.get("status") or "unknown",
        amount=obj.get("amount") or 0,
        currency=(obj.get("currency") or "usd").lower(),
        metadata={str(k): str(v) for k, v in dict(metadata).items()},
        client_secret=obj.get("client_secret"),
        last_payment_error=error_message
    )


# ============================================================================
# Gateway Interface
# ============================================================================

class PaymentGateway(ABC):
    """Operations this service needs from the payment gateway."""

    @abstractmethod
    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        receipt_email: Optional[str] = None,
        description: Optional[str] = None
    ) -> PaymentIntentInfo:
        """Create a card payment intent for amount (minor units)."""

    @abstractmethod
    async def retrieve_payment_intent(self, payment_reference: str) -> PaymentIntentInfo:
        """Fetch current gateway state of a payment intent."""

    @abstractmethod
    async def retrieve_receipt(self, payment_reference: str) -> ReceiptInfo:
        """Resolve an invoice (preferred) or charge receipt link for a payment."""


# ============================================================================
# Stripe Implementation
# ============================================================================

class StripeGatewayClient(PaymentGateway):
    """PaymentGateway backed by the Stripe API."""

    def __init__(
        self,
        api_key: str,
        timeout_seconds: float = 10.0,
        max_network_retries: int = 2
    ):
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        stripe.max_network_retries = max_network_retries
        logger.info(
            f"Initialized Stripe gateway in {'test' if api_key.startswith('sk_test') else 'live'} mode "
            f"(timeout={timeout_seconds}s)"
        )

    async def _call(self, operation: str, fn, *args, **kwargs):
        """Run a blocking Stripe SDK call off the event loop with a timeout."""
        kwargs.setdefault("api_key", self.api_key)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, **kwargs),
                timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            raise GatewayError(
                f"Stripe {operation} timed out after {self.timeout_seconds}s",
                {"operation": operation}
            )
        except stripe.InvalidRequestError as e:
            raise GatewayError(
                f"Stripe {operation} rejected: {e.user_message or e}",
                {"operation": operation, "code": e.code},
                not_found=e.code == "resource_missing"
            )
        except stripe.StripeError as e:
            raise GatewayError(
                f"Stripe {operation} failed: {e.user_message or e}",
                {"operation": operation, "error_type": type(e).__name__}
            )

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        receipt_email: Optional[str] = None,
        description: Optional[str] = None
    ) -> PaymentIntentInfo:
        params: Dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "metadata": {**metadata, "paymentIntentId": ""},
            # Card only; no automatic payment methods (keeps Link out of checkout)
            "automatic_payment_methods": {"enabled": False},
            "payment_method_types": ["card"],
        }
        if receipt_email:
            params["receipt_email"] = receipt_email
        if description:
            params["description"] = description

        intent = await self._call("create_payment_intent", stripe.PaymentIntent.create, **params)

        # Echo the intent id into metadata so webhook consumers can correlate
        await self._call(
            "update_payment_intent",
            stripe.PaymentIntent.modify,
            intent["id"],
            metadata={**metadata, "paymentIntentId": intent["id"]}
        )

        logger.info(f"Created Stripe payment intent {intent['id']} for {amount} {currency}")
        return intent_from_stripe(intent)

    async def retrieve_payment_intent(self, payment_reference: str) -> PaymentIntentInfo:
        intent = await self._call("retrieve_payment_intent", stripe.PaymentIntent.retrieve, payment_reference)
        return intent_from_stripe(intent)

    async def retrieve_receipt(self, payment_reference: str) -> ReceiptInfo:
        intent = await self._call(
            "retrieve_payment_intent",
            stripe.PaymentIntent.retrieve,
            payment_reference,
            expand=["latest_charge"]
        )

        charge = intent.get("latest_charge")
        if not charge or isinstance(charge, str):
            return ReceiptInfo(message="No charge found for this payment")

        invoice_id = charge.get("invoice")
        if invoice_id:
            try:
                invoice = await self._call("retrieve_invoice", stripe.Invoice.retrieve, invoice_id)
            except GatewayError as e:
                logger.warning(f"Error retrieving invoice {invoice_id}: {e.message}")
            else:
                if invoice.get("hosted_invoice_url"):
                    return ReceiptInfo(
                        download_url=invoice["hosted_invoice_url"],
                        invoice_id=invoice["id"],
                        invoice_number=invoice.get("number")
                    )

        if charge.get("receipt_url"):
            return ReceiptInfo(
                download_url=charge["receipt_url"],
                charge_id=charge["id"],
                message="Receipt (no invoice available)"
            )

        return ReceiptInfo(message="No receipt or invoice available for this payment")
