"""
Mock Payment Gateway

In-memory stand-in for Stripe, used when STRIPE_SECRET_KEY is not set
(local development, demos, tests).

Mock Behavior:
- Payment intents get "pi_mock_" ids
- With auto_approve (demo mode) new intents are immediately "succeeded";
  otherwise ~90% succeed and the rest fail, decided by a deterministic hash
  of amount and metadata
- Tests can force a status or make a reference raise GatewayError
"""
import hashlib
import uuid
from typing import Dict, Optional, Set

from ..exceptions import GatewayError
from ..services.gateway_client import PaymentGateway, PaymentIntentInfo, ReceiptInfo

DECLINE_REASONS = ["insufficient_funds", "do_not_honor", "generic_decline"]


class MockPaymentGateway(PaymentGateway):
    """PaymentGateway keeping intents in a dict."""

    def __init__(self, auto_approve: bool = True):
        self.auto_approve = auto_approve
        self.intents: Dict[str, PaymentIntentInfo] = {}
        self._unreachable: Set[str] = set()
        self.retrieve_calls = 0

    # ========================================================================
    # PaymentGateway
    # ========================================================================

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        receipt_email: Optional[str] = None,
        description: Optional[str] = None
    ) -> PaymentIntentInfo:
        intent_id = f"pi_mock_{uuid.uuid4().hex[:16]}"

        if self.auto_approve:
            status, error = "succeeded", None
        else:
            hash_input = f"{amount}:{currency}:{sorted(metadata.items())}"
            hash_value = int(hashlib.sha256(hash_input.encode()).hexdigest()[:8], 16)
            if hash_value % 10 != 0:  # ~90% approval
                status, error = "succeeded", None
            else:
                status, error = "requires_payment_method", DECLINE_REASONS[hash_value % len(DECLINE_REASONS)]

        intent = PaymentIntentInfo(
            id=intent_id,
            status=status,
            amount=amount,
            currency=currency,
            metadata={**metadata, "paymentIntentId": intent_id},
            client_secret=f"{intent_id}_secret_{uuid.uuid4().hex[:12]}",
            last_payment_error=error
        )
        self.intents[intent_id] = intent
        return intent

    async def retrieve_payment_intent(self, payment_reference: str) -> PaymentIntentInfo:
        self.retrieve_calls += 1
        if payment_reference in self._unreachable:
            raise GatewayError(
                "Mock gateway unreachable",
                {"operation": "retrieve_payment_intent"}
            )

        intent = self.intents.get(payment_reference)
        if intent is None:
            raise GatewayError(
                f"No such payment_intent: '{payment_reference}'",
                {"operation": "retrieve_payment_intent", "code": "resource_missing"},
                not_found=True
            )
        return intent

    async def retrieve_receipt(self, payment_reference: str) -> ReceiptInfo:
        intent = await self.retrieve_payment_intent(payment_reference)
        if not intent.succeeded:
            return ReceiptInfo(message="No charge found for this payment")
        return ReceiptInfo(message="Invoice not available for demo payments")

    # ========================================================================
    # Test Controls
    # ========================================================================

    def register_intent(
        self,
        payment_reference: str,
        status: str = "succeeded",
        amount: int = 1000,
        currency: str = "usd",
        metadata: Optional[Dict[str, str]] = None,
        last_payment_error: Optional[str] = None
    ) -> PaymentIntentInfo:
        """Seed or replace an intent with a fixed state."""
        intent = PaymentIntentInfo(
            id=payment_reference,
            status=status,
            amount=amount,
            currency=currency,
            metadata=metadata or {},
            last_payment_error=last_payment_error
        )
        self.intents[payment_reference] = intent
        return intent

    def set_unreachable(self, payment_reference: str, unreachable: bool = True) -> None:
        """Make retrieval of one reference raise GatewayError."""
        if unreachable:
            self._unreachable.add(payment_reference)
        else:
            self._unreachable.discard(payment_reference)
