"""
Order Lifecycle Engine

State machine reconciling optimistic (provisional) order creation with
gateway-confirmed completion or failure.

States:
    NONE -> PROVISIONAL -> COMPLETED
    NONE -> PROVISIONAL -> FAILED -> REFUNDED
    NONE -> PROVISIONAL -> REFUNDED      (gateway canceled the intent)
    NONE -> COMPLETED                    (webhook fallback, no provisional row)

PROVISIONAL is status "processing" with is_provisional=True. Every transition
is one guarded UPDATE in the OrderStore, so duplicate gateway deliveries,
the sweeper and the storefront can all drive the same order safely.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel

from ..exceptions import ProductNotFoundError
from ..models.orders import CustomerInfo, NewOrder, Order, OrderStatus
from .order_store import OrderStore

logger = logging.getLogger(__name__)


def mask_identifier(value: Optional[str]) -> str:
    """Shorten an identifier for logs: pi_3Pabc...wxyz."""
    if not value:
        return "unknown"
    value = str(value)
    if len(value) <= 8:
        return value
    return f"{value[:4]}...{value[-4:]}"


class ConfirmOutcome(str, Enum):
    CONFIRMED = "confirmed"            # provisional order moved to completed
    ALREADY_FINAL = "already_final"    # nothing to do, order already left processing
    CREATED = "created"                # fallback: order created directly as completed
    INVALID_METADATA = "invalid_metadata"  # fallback impossible, event dropped


class ConfirmResult(BaseModel):
    outcome: ConfirmOutcome
    order: Optional[Order] = None

    @property
    def changed(self) -> bool:
        return self.outcome in (ConfirmOutcome.CONFIRMED, ConfirmOutcome.CREATED)


class OrderLifecycleEngine:
    """Drives orders through their lifecycle on behalf of every writer."""

    def __init__(self, store: OrderStore):
        self.store = store

    # ========================================================================
    # Provisional Creation (storefront)
    # ========================================================================

    async def create_provisional(
        self,
        payment_reference: str,
        product_id: int,
        quantity: int = 1,
        customer: Optional[CustomerInfo] = None
    ) -> Tuple[Order, bool]:
        """
        Record a purchase right after client-side payment confirmation.

        Idempotent: an existing order for the reference is returned unchanged.

        Returns:
            (order, created)

        Raises:
            ProductNotFoundError: Unknown product
        """
        existing = await self.store.get_by_payment_reference(payment_reference)
        if existing:
            logger.info(
                f"Order already exists for payment {mask_identifier(payment_reference)} "
                f"(order={existing.id}, provisional={existing.is_provisional})"
            )
            return existing, False

        product = await self.store.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)

        customer = customer or CustomerInfo()
        user_id = None
        if customer.customer_email:
            user_id = await self.store.find_or_create_user(customer.customer_email)

        order, created = await self.store.create_or_get(NewOrder(
            user_id=user_id,
            product_id=product.id,
            payment_reference=payment_reference,
            quantity=quantity,
            amount=product.price * quantity,
            currency=(product.currency or "usd").lower(),
            status=OrderStatus.PROCESSING,
            customer_email=customer.customer_email,
            customer_name=customer.customer_name,
            customer_phone=customer.customer_phone,
            is_provisional=True,
            provisional_created_at=datetime.utcnow()
        ))

        if created:
            logger.info(f"Provisional order {order.id} created for payment {mask_identifier(payment_reference)}")
        return order, created

    # ========================================================================
    # Gateway-Driven Transitions (webhook, sweeper)
    # ========================================================================

    async def confirm_from_gateway(
        self,
        payment_reference: str,
        gateway_amount: int,
        gateway_currency: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> ConfirmResult:
        """
        Apply a gateway "payment succeeded".

        - processing order: -> completed
        - order already final: no-op (duplicate delivery)
        - no order: create it as completed from the intent metadata

        Malformed metadata on the fallback path is terminal for this event:
        logged and reported as INVALID_METADATA, never raised.
        """
        existing = await self.store.get_by_payment_reference(payment_reference)
        if existing:
            return await self._complete_existing(existing)

        logger.info(f"No existing order for payment {mask_identifier(payment_reference)}, creating from gateway metadata")
        metadata = metadata or {}

        try:
            product_id = int(metadata.get("productId", ""))
            quantity = int(metadata.get("quantity") or 1)
        except ValueError:
            logger.error(
                f"Payment {mask_identifier(payment_reference)} carries unusable metadata "
                f"(productId={metadata.get('productId')!r}, quantity={metadata.get('quantity')!r})"
            )
            return ConfirmResult(outcome=ConfirmOutcome.INVALID_METADATA)

        product = await self.store.get_product(product_id)
        if product is None or quantity <= 0:
            logger.error(
                f"Product not found for payment {mask_identifier(payment_reference)} "
                f"(productId={product_id}, quantity={quantity})"
            )
            return ConfirmResult(outcome=ConfirmOutcome.INVALID_METADATA)

        email = metadata.get("customerEmail") or None
        user_id = await self.store.find_or_create_user(email) if email else None

        order, created = await self.store.create_or_get(NewOrder(
            user_id=user_id,
            product_id=product.id,
            payment_reference=payment_reference,
            quantity=quantity,
            amount=gateway_amount,
            currency=gateway_currency.lower(),
            status=OrderStatus.COMPLETED,
            customer_email=email,
            customer_name=metadata.get("customerName") or None,
            customer_phone=metadata.get("customerPhone") or None,
            is_provisional=False
        ))

        if created:
            logger.info(f"Order {order.id} created as completed for payment {mask_identifier(payment_reference)}")
            return ConfirmResult(outcome=ConfirmOutcome.CREATED, order=order)

        # A provisional insert won the race; continue as if it had been there
        return await self._complete_existing(order)

    async def fail_from_gateway(self, payment_reference: str) -> bool:
        """
        Apply a gateway "payment failed": processing -> failed.

        No-op when no order exists or the order is already final.
        """
        changed = await self.store.update_status(
            payment_reference,
            OrderStatus.FAILED,
            allowed_from=[OrderStatus.PROCESSING]
        )
        if changed:
            logger.info(f"Order for payment {mask_identifier(payment_reference)} marked as failed")
        else:
            logger.info(f"No processing order to fail for payment {mask_identifier(payment_reference)}")
        return changed

    async def refund_from_gateway(self, payment_reference: str) -> bool:
        """Apply a gateway cancellation/refund: processing or failed -> refunded."""
        changed = await self.store.update_status(
            payment_reference,
            OrderStatus.REFUNDED,
            allowed_from=[OrderStatus.PROCESSING, OrderStatus.FAILED]
        )
        if changed:
            logger.info(f"Order for payment {mask_identifier(payment_reference)} marked as refunded")
        return changed

    async def mark_sync_attempt(self, order_id: int, success: bool) -> None:
        """Sweep bookkeeping only: bump sync_attempts, stamp last_sync_attempt."""
        updated = await self.store.record_sync_attempt(order_id)
        if not updated:
            logger.warning(f"Sync attempt for missing order {order_id} not recorded")
            return
        logger.debug(f"Recorded sync attempt for order {order_id} (success={success})")

    async def _complete_existing(self, order: Order) -> ConfirmResult:
        if order.status != OrderStatus.PROCESSING:
            logger.info(
                f"Order {order.id} already {order.status.value} for payment "
                f"{mask_identifier(order.payment_reference)}"
            )
            return ConfirmResult(outcome=ConfirmOutcome.ALREADY_FINAL, order=order)

        changed = await self.store.update_status(
            order.payment_reference,
            OrderStatus.COMPLETED,
            allowed_from=[OrderStatus.PROCESSING]
        )
        current = await self.store.get_by_payment_reference(order.payment_reference)
        if not changed:
            # Another writer finished the transition between our read and update
            return ConfirmResult(outcome=ConfirmOutcome.ALREADY_FINAL, order=current)

        logger.info(f"Provisional order {order.id} confirmed for payment {mask_identifier(order.payment_reference)}")
        return ConfirmResult(outcome=ConfirmOutcome.CONFIRMED, order=current)
