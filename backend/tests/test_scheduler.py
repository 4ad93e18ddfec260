"""
Unit Tests for the Reconciliation Scheduler

Run with: pytest tests/test_scheduler.py -v
"""

import asyncio

import pytest

from conftest import ADDRESS_A, FakeInvoiceStore, FakeTransferSource, make_invoice, make_transfer
from reconciliation.exceptions import PendingLoadError
from reconciliation.scheduler import ReconciliationScheduler
from reconciliation.services.reconciliation_service import ReconciliationService


def make_scheduler(store=None, source=None, interval_seconds=0):
    store = store or FakeInvoiceStore([make_invoice("inv-1", "1.0")])
    source = source or FakeTransferSource({ADDRESS_A: [make_transfer("0x1", "1.0")]})
    service = ReconciliationService(store=store, source=source)
    return ReconciliationScheduler(service, interval_seconds=interval_seconds)


class TestReconciliationScheduler:

    @pytest.mark.asyncio
    async def test_tick_runs_pass(self):
        scheduler = make_scheduler()

        result = await scheduler.tick()

        assert result.trigger == "scheduler"
        assert result.updated == 1
        assert scheduler.last_result is result
        assert scheduler.last_run_at is not None

    @pytest.mark.asyncio
    async def test_tick_skipped_while_pass_in_flight(self):
        source = FakeTransferSource({ADDRESS_A: [make_transfer("0x1", "1.0")]})
        source.delays[ADDRESS_A] = 0.05
        scheduler = make_scheduler(source=source)

        manual = asyncio.create_task(scheduler.run_now(trigger="api"))
        await asyncio.sleep(0.01)
        skipped = await scheduler.tick()
        result = await manual

        assert skipped is None
        assert scheduler.skipped_ticks == 1
        assert result.updated == 1
        assert len(source.calls) == 1

    @pytest.mark.asyncio
    async def test_run_now_waits_for_pass_in_flight(self):
        source = FakeTransferSource({ADDRESS_A: [make_transfer("0x1", "1.0")]})
        source.delays[ADDRESS_A] = 0.05
        store = FakeInvoiceStore([make_invoice("inv-1", "1.0")])
        scheduler = make_scheduler(store=store, source=source)

        first, second = await asyncio.gather(
            scheduler.run_now(trigger="api"),
            scheduler.run_now(trigger="api"),
        )

        assert first.updated == 1
        assert second.checked == 0
        assert len(store.mark_paid_calls) == 1

    @pytest.mark.asyncio
    async def test_tick_swallows_pending_load_error(self):
        store = FakeInvoiceStore([make_invoice("inv-1", "1.0")])
        store.fail_load = True
        scheduler = make_scheduler(store=store)

        assert await scheduler.tick() is None
        assert "database unavailable" in scheduler.last_error

    @pytest.mark.asyncio
    async def test_run_now_propagates_pending_load_error(self):
        store = FakeInvoiceStore([make_invoice("inv-1", "1.0")])
        store.fail_load = True
        scheduler = make_scheduler(store=store)

        with pytest.raises(PendingLoadError):
            await scheduler.run_now()

    @pytest.mark.asyncio
    async def test_disabled_when_interval_is_zero(self):
        scheduler = make_scheduler(interval_seconds=0)

        scheduler.start()

        assert scheduler.is_scheduled is False
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_start_and_stop_loop(self):
        scheduler = make_scheduler(interval_seconds=60)

        scheduler.start()
        await asyncio.sleep(0.01)

        assert scheduler.is_scheduled is True
        assert scheduler.last_result is not None

        await scheduler.stop()
        assert scheduler.is_scheduled is False

    @pytest.mark.asyncio
    async def test_status(self):
        scheduler = make_scheduler(interval_seconds=30)
        await scheduler.run_now()

        status = scheduler.status()

        assert status["interval_seconds"] == 30
        assert status["running"] is False
        assert status["last_result"]["updated"] == 1
