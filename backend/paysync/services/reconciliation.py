"""
Reconciliation Sweeper

Repairs orders whose webhook was lost or delayed by asking the gateway for
the authoritative payment status.

Candidates: every provisional order, plus processing orders not synced in the
last stale_after window. Backoff is implicit: each attempt stamps
last_sync_attempt, so a processing order is retried at most once per window.
A gateway error on one order never aborts the sweep for the others.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import List

from pydantic import BaseModel

from ..exceptions import GatewayError, NotFoundError, ReconciliationError, SweepInProgressError
from ..models.orders import Order, StatusCount
from .gateway_client import PaymentGateway
from .order_lifecycle import OrderLifecycleEngine, mask_identifier
from .order_store import OrderStore

logger = logging.getLogger(__name__)


class SyncOutcome(str, Enum):
    SYNCED = "synced"
    FAILED = "failed"
    SKIPPED = "skipped"


class SyncResult(BaseModel):
    synced: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.synced + self.failed + self.skipped


class ReconciliationSweeper:
    """Polls the gateway for stale orders and drives them through the lifecycle engine."""

    def __init__(
        self,
        store: OrderStore,
        engine: OrderLifecycleEngine,
        gateway: PaymentGateway,
        stale_after: timedelta = timedelta(minutes=5)
    ):
        self.store = store
        self.engine = engine
        self.gateway = gateway
        self.stale_after = stale_after
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def sweep(self) -> SyncResult:
        """
        Run one sweep over all stale orders.

        Raises:
            SweepInProgressError: Another sweep is still running in this process
        """
        if self._lock.locked():
            raise SweepInProgressError()

        async with self._lock:
            logger.info("Starting background sync of pending orders...")
            stale_before = datetime.utcnow() - self.stale_after
            candidates = await self.store.list_sync_candidates(stale_before)
            logger.info(f"Found {len(candidates)} orders to sync")

            result = SyncResult()
            for order in candidates:
                try:
                    outcome = await self.sync_order(order)
                except Exception as e:
                    logger.error(f"Error syncing order {order.id}: {e}", exc_info=True)
                    outcome = SyncOutcome.FAILED

                if outcome == SyncOutcome.SYNCED:
                    result.synced += 1
                elif outcome == SyncOutcome.FAILED:
                    result.failed += 1
                else:
                    result.skipped += 1

            logger.info(
                f"Sync completed: {result.synced} synced, {result.failed} failed, {result.skipped} skipped"
            )
            return result

    async def run_scheduled(self) -> None:
        """APScheduler entry point: run a sweep unless one is in flight."""
        try:
            await self.sweep()
        except SweepInProgressError:
            logger.warning("Previous reconciliation sweep still running; skipping this interval")

    async def sync_order(self, order: Order) -> SyncOutcome:
        """Reconcile one order against the gateway and record the attempt."""
        logger.info(f"Syncing order {order.id} with payment {mask_identifier(order.payment_reference)}")

        try:
            intent = await self._fetch_intent(order)
        except ReconciliationError as e:
            logger.error(f"Gateway error syncing order {order.id}: {e.message}")
            await self.engine.mark_sync_attempt(order.id, success=False)
            return SyncOutcome.FAILED

        if intent.succeeded:
            result = await self.engine.confirm_from_gateway(
                intent.id, intent.amount, intent.currency, intent.metadata
            )
            outcome = SyncOutcome.SYNCED if result.changed else SyncOutcome.SKIPPED
            if result.changed:
                logger.info(f"Order {order.id} confirmed from provisional")
            else:
                logger.info(f"Order {order.id} already confirmed")
        elif intent.canceled:
            await self.engine.refund_from_gateway(intent.id)
            logger.info(f"Order {order.id} marked as refunded (payment canceled)")
            outcome = SyncOutcome.SYNCED
        elif intent.payment_failed:
            await self.engine.fail_from_gateway(intent.id)
            logger.info(f"Order {order.id} marked as failed ({intent.last_payment_error})")
            outcome = SyncOutcome.SYNCED
        else:
            logger.info(f"Order {order.id} still processing (status: {intent.status})")
            outcome = SyncOutcome.SKIPPED

        await self.engine.mark_sync_attempt(order.id, success=True)
        return outcome

    async def sync_order_by_id(self, order_id: int) -> SyncOutcome:
        """Manual sync of one order (admin)."""
        order = await self.store.get_by_id(order_id)
        if order is None:
            raise NotFoundError("Order not found", {"order_id": order_id})
        return await self.sync_order(order)

    async def get_sync_stats(self) -> List[StatusCount]:
        """Order counts grouped by status and provisional flag."""
        return await self.store.count_by_status()

    async def _fetch_intent(self, order: Order):
        try:
            return await self.gateway.retrieve_payment_intent(order.payment_reference)
        except GatewayError as e:
            raise ReconciliationError(
                f"Could not retrieve payment {mask_identifier(order.payment_reference)}: {e.message}",
                {"order_id": order.id, **e.details}
            )
