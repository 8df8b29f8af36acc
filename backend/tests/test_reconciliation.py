"""
Test reconciliation sweep
"""
import asyncio

import pytest

from paysync.exceptions import NotFoundError, SweepInProgressError
from paysync.models.orders import OrderStatus
from paysync.services.reconciliation import SyncOutcome
from paysync.services.scheduler import ReconciliationScheduler, SWEEP_JOB_ID


def metadata_for(product):
    return {"productId": str(product.id), "quantity": "1"}


class TestSweep:
    async def test_sweep_converges(self, sweeper, lifecycle, gateway, store, product):
        """Every candidate is counted once and leaves processing when the gateway is decisive"""
        gateway.register_intent("pi_ok", "succeeded", 2999, metadata=metadata_for(product))
        gateway.register_intent("pi_cancel", "canceled", 2999)
        gateway.register_intent("pi_declined", "requires_payment_method", 2999, last_payment_error="card_declined")
        for ref in ("pi_ok", "pi_cancel", "pi_declined"):
            await lifecycle.create_provisional(ref, product.id)

        result = await sweeper.sweep()

        assert (result.synced, result.failed, result.skipped) == (3, 0, 0)
        assert result.total == 3
        statuses = {
            ref: (await store.get_by_payment_reference(ref)).status
            for ref in ("pi_ok", "pi_cancel", "pi_declined")
        }
        assert statuses == {
            "pi_ok": OrderStatus.COMPLETED,
            "pi_cancel": OrderStatus.REFUNDED,
            "pi_declined": OrderStatus.FAILED,
        }

    async def test_pending_intent_skipped(self, sweeper, lifecycle, gateway, store, product):
        gateway.register_intent("pi_wait", "processing", 2999)
        order, _ = await lifecycle.create_provisional("pi_wait", product.id)

        result = await sweeper.sweep()

        assert result.skipped == 1
        updated = await store.get_by_id(order.id)
        assert updated.status == OrderStatus.PROCESSING
        assert updated.sync_attempts == 1

    async def test_gateway_error_counted_and_recorded(self, sweeper, lifecycle, gateway, store, product):
        gateway.register_intent("pi_down", "succeeded", 2999)
        gateway.set_unreachable("pi_down")
        gateway.register_intent("pi_ok", "succeeded", 2999, metadata=metadata_for(product))
        down, _ = await lifecycle.create_provisional("pi_down", product.id)
        await lifecycle.create_provisional("pi_ok", product.id)

        result = await sweeper.sweep()

        assert result.failed == 1
        assert result.synced == 1
        updated = await store.get_by_id(down.id)
        assert updated.sync_attempts == 1
        assert updated.last_sync_attempt is not None
        assert updated.status == OrderStatus.PROCESSING

    async def test_recently_synced_order_not_retried(self, sweeper, lifecycle, gateway, store, product):
        """A non-provisional processing order waits one window between attempts"""
        gateway.register_intent("pi_wait", "processing", 2999)
        order, _ = await lifecycle.create_provisional("pi_wait", product.id)
        await store.update_status("pi_wait", OrderStatus.PROCESSING, allowed_from=[OrderStatus.PROCESSING])

        await sweeper.sweep()
        calls = gateway.retrieve_calls
        result = await sweeper.sweep()

        assert result.total == 0
        assert gateway.retrieve_calls == calls

    async def test_overlapping_sweep_rejected(self, sweeper, lifecycle, gateway, product):
        release = asyncio.Event()
        original = gateway.retrieve_payment_intent

        async def slow_retrieve(reference):
            await release.wait()
            return await original(reference)

        gateway.retrieve_payment_intent = slow_retrieve
        gateway.register_intent("pi_slow", "succeeded", 2999, metadata=metadata_for(product))
        await lifecycle.create_provisional("pi_slow", product.id)

        first = asyncio.create_task(sweeper.sweep())
        await asyncio.sleep(0.05)
        with pytest.raises(SweepInProgressError):
            await sweeper.sweep()
        await sweeper.run_scheduled()

        release.set()
        result = await first
        assert result.synced == 1


class TestManualSync:
    async def test_sync_order_by_id(self, sweeper, lifecycle, gateway, store, product):
        gateway.register_intent("pi_1", "succeeded", 2999, metadata=metadata_for(product))
        order, _ = await lifecycle.create_provisional("pi_1", product.id)

        assert await sweeper.sync_order_by_id(order.id) == SyncOutcome.SYNCED
        assert await sweeper.sync_order_by_id(order.id) == SyncOutcome.SKIPPED

    async def test_sync_unknown_order(self, sweeper):
        with pytest.raises(NotFoundError):
            await sweeper.sync_order_by_id(12345)

    async def test_sync_stats(self, sweeper, lifecycle, product):
        await lifecycle.create_provisional("pi_1", product.id)
        await lifecycle.create_provisional("pi_2", product.id)
        await lifecycle.fail_from_gateway("pi_2")

        stats = {(row.status, row.is_provisional): row.count for row in await sweeper.get_sync_stats()}

        assert stats == {("processing", True): 1, ("failed", False): 1}


class TestScheduler:
    async def test_start_registers_sweep_job(self, sweeper):
        scheduler = ReconciliationScheduler(sweeper, interval_minutes=5)
        scheduler.start()
        try:
            assert scheduler.running
            job = scheduler.get_job()
            assert job.id == SWEEP_JOB_ID
            assert job.next_run_time is not None
        finally:
            scheduler.shutdown(wait=False)
        assert scheduler.get_job() is None
