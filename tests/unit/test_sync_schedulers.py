"""
Tests de los schedulers periodicos de inventario y de ordenes.
"""
import asyncio
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from apscheduler.triggers.cron import CronTrigger

from possync.application.services.inventory_sync_service import InventorySyncSummary
from possync.application.use_cases.inventory_sync_use_cases import InventorySyncScheduler
from possync.application.use_cases.order_sync_use_cases import OrderSyncScheduler
from possync.domain.entities.sync import SyncOptions, SyncResult


@pytest.fixture
def inventory_service():
    service = MagicMock()
    service.sync_all_locations = AsyncMock(
        return_value=InventorySyncSummary(locations=2, succeeded=2, items_synced=10, cost_changes=1)
    )
    return service


@pytest.fixture
def inventory_scheduler(inventory_service, clock) -> InventorySyncScheduler:
    return InventorySyncScheduler(
        inventory_service, interval_minutes=15, initial_delay_seconds=30, enabled=True, clock=clock
    )


@pytest.fixture
def sync_service():
    service = MagicMock()
    service.is_running = False
    service.sync_all_merchants = AsyncMock(return_value={
        "M-1": SyncResult(success=True, orders_processed=4),
        "M-2": SyncResult(success=True, orders_processed=1),
    })
    return service


def _order_scheduler(sync_service, clock, **kwargs) -> OrderSyncScheduler:
    options = dict(
        interval_minutes=15,
        enabled=True,
        full_sync_hour=3,
        business_start_hour=6,
        business_end_hour=22,
        business_timezone="America/Chicago",
        skip_weekends=False,
    )
    options.update(kwargs)
    return OrderSyncScheduler(sync_service, clock=clock, **options)


# =========================================================================
# Registro en APScheduler
# =========================================================================


class TestSchedulerRegistration:

    def test_start_registers_interval_job(self, inventory_scheduler, clock):
        scheduler = MagicMock()

        inventory_scheduler.start(scheduler)

        scheduler.add_job.assert_called_once()
        kwargs = scheduler.add_job.call_args.kwargs
        assert kwargs["id"] == "inventory_sync"
        assert kwargs["max_instances"] == 1
        assert kwargs["coalesce"] is True
        trigger = kwargs["trigger"]
        assert trigger.interval == timedelta(minutes=15)
        assert trigger.start_date == clock() + timedelta(seconds=30)

    def test_disabled_scheduler_does_not_register(self, inventory_service, clock):
        scheduler = MagicMock()
        disabled = InventorySyncScheduler(inventory_service, enabled=False, clock=clock)

        disabled.start(scheduler)

        scheduler.add_job.assert_not_called()
        assert disabled.is_running is False

    def test_stop_removes_job(self, inventory_scheduler):
        scheduler = MagicMock()
        inventory_scheduler.start(scheduler)

        inventory_scheduler.stop()

        scheduler.remove_job.assert_called_once_with("inventory_sync")
        assert inventory_scheduler.is_running is False

    def test_status_reports_next_run(self, inventory_scheduler):
        next_run = datetime(2026, 3, 12, 8, 15, tzinfo=timezone.utc)
        scheduler = MagicMock()
        scheduler.get_job.return_value = MagicMock(next_run_time=next_run)
        inventory_scheduler.start(scheduler)

        status = inventory_scheduler.get_status()

        assert status["enabled"] is True
        assert status["running"] is True
        assert status["syncing"] is False
        assert status["interval_minutes"] == 15
        assert status["next_sync_at"] == next_run
        assert status["last_sync_at"] is None
        assert status["last_error"] is None


# =========================================================================
# Corridas
# =========================================================================


class TestInventorySyncScheduler:

    @pytest.mark.asyncio
    async def test_manual_trigger_returns_summary(self, inventory_scheduler, clock):
        result = await inventory_scheduler.trigger_manual_sync()

        assert result["success"] is True
        assert "2/2 locaciones" in result["message"]
        assert "10 items" in result["message"]
        assert inventory_scheduler.get_status()["last_sync_at"] == clock()

    @pytest.mark.asyncio
    async def test_manual_trigger_reports_failed_locations(self, inventory_scheduler, inventory_service):
        inventory_service.sync_all_locations.return_value = InventorySyncSummary(
            locations=2, succeeded=1, failed=1, errors={"M-2": "sin credenciales"}
        )

        result = await inventory_scheduler.trigger_manual_sync()

        assert result["success"] is True
        assert "1 locaciones con error" in result["message"]

    @pytest.mark.asyncio
    async def test_error_is_recorded_not_raised(self, inventory_scheduler, inventory_service):
        inventory_service.sync_all_locations.side_effect = RuntimeError("db caida")

        await inventory_scheduler.run_scheduled()
        result = await inventory_scheduler.trigger_manual_sync()

        assert result["success"] is False
        assert "db caida" in result["message"]
        assert inventory_scheduler.get_status()["last_error"] == "db caida"

    @pytest.mark.asyncio
    async def test_overlapping_run_is_skipped(self, inventory_scheduler, inventory_service):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_sync():
            started.set()
            await release.wait()
            return InventorySyncSummary(locations=1, succeeded=1)

        inventory_service.sync_all_locations.side_effect = slow_sync

        first = asyncio.create_task(inventory_scheduler.trigger_manual_sync())
        await started.wait()
        assert inventory_scheduler.is_syncing is True

        second = await inventory_scheduler.trigger_manual_sync()
        await inventory_scheduler.run_scheduled()
        release.set()
        first_result = await first

        assert second == {"success": False, "message": "Ya hay una sincronizacion en curso"}
        assert first_result["success"] is True
        assert inventory_service.sync_all_locations.await_count == 1
        assert inventory_scheduler.is_syncing is False


class TestOrderSyncScheduler:

    @pytest.mark.asyncio
    async def test_incremental_run(self, sync_service, clock):
        scheduler = OrderSyncScheduler(sync_service, interval_minutes=15, enabled=True, clock=clock)

        result = await scheduler.trigger_manual_sync()

        assert result["success"] is True
        assert "Sync incremental: 2/2 merchants, 5 ordenes" == result["message"]
        sync_service.sync_all_merchants.assert_awaited_once_with(SyncOptions(force_full_sync=False))

    @pytest.mark.asyncio
    async def test_full_run_forces_full_sync(self, sync_service, clock):
        scheduler = OrderSyncScheduler(sync_service, interval_minutes=15, enabled=True, clock=clock)

        result = await scheduler.trigger_manual_sync(full=True)

        assert result["message"].startswith("Sync completo")
        sync_service.sync_all_merchants.assert_awaited_once_with(SyncOptions(force_full_sync=True))

    @pytest.mark.asyncio
    async def test_failed_merchants_are_listed(self, sync_service, clock):
        sync_service.sync_all_merchants.return_value = {
            "M-1": SyncResult(success=True, orders_processed=2),
            "M-2": SyncResult(success=False),
        }
        scheduler = OrderSyncScheduler(sync_service, interval_minutes=15, enabled=True, clock=clock)

        result = await scheduler.trigger_manual_sync()

        assert "1/2 merchants" in result["message"]
        assert "con error: M-2" in result["message"]

    def test_disabled_flag_skips_registration(self, sync_service):
        scheduler = OrderSyncScheduler(sync_service, enabled=False)
        apscheduler = MagicMock()

        scheduler.start(apscheduler)

        apscheduler.add_job.assert_not_called()


# =========================================================================
# Horario comercial y sync completo diario (reloj: 2026-03-12 08:00 UTC = 03:00 en Chicago)
# =========================================================================


class TestOrderSyncCalendar:

    def test_start_registers_incremental_and_daily_jobs(self, sync_service, clock):
        apscheduler = MagicMock()
        scheduler = _order_scheduler(sync_service, clock)

        scheduler.start(apscheduler)

        assert apscheduler.add_job.call_count == 2
        ids = [c.kwargs["id"] for c in apscheduler.add_job.call_args_list]
        assert ids == ["order_incremental_sync", "order_daily_full_sync"]
        assert isinstance(apscheduler.add_job.call_args_list[1].kwargs["trigger"], CronTrigger)

        scheduler.stop()

        removed = [c.args[0] for c in apscheduler.remove_job.call_args_list]
        assert removed == ["order_daily_full_sync", "order_incremental_sync"]

    @pytest.mark.asyncio
    async def test_incremental_skipped_outside_business_hours(self, sync_service, clock):
        scheduler = _order_scheduler(sync_service, clock)

        await scheduler.run_scheduled()

        assert scheduler.is_business_hours() is False
        sync_service.sync_all_merchants.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_incremental_runs_inside_business_hours(self, sync_service, clock):
        scheduler = _order_scheduler(sync_service, clock)
        clock.advance(hours=6)

        await scheduler.run_scheduled()

        assert scheduler.is_business_hours() is True
        sync_service.sync_all_merchants.assert_awaited_once_with(SyncOptions(force_full_sync=False))

    def test_business_end_hour_is_exclusive(self, sync_service, clock):
        scheduler = _order_scheduler(sync_service, clock)

        clock.now = datetime(2026, 3, 13, 2, 59, tzinfo=timezone.utc)
        assert scheduler.is_business_hours() is True
        clock.now = datetime(2026, 3, 13, 3, 0, tzinfo=timezone.utc)
        assert scheduler.is_business_hours() is False

    def test_weekend_gating_is_optional(self, sync_service, clock):
        clock.now = datetime(2026, 3, 14, 15, 0, tzinfo=timezone.utc)

        assert _order_scheduler(sync_service, clock).is_business_hours() is True
        assert _order_scheduler(sync_service, clock, skip_weekends=True).is_business_hours() is False

    @pytest.mark.asyncio
    async def test_manual_trigger_ignores_business_hours(self, sync_service, clock):
        scheduler = _order_scheduler(sync_service, clock)

        result = await scheduler.trigger_manual_sync()

        assert result["success"] is True
        sync_service.sync_all_merchants.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_full_sync_runs_once_per_local_day(self, sync_service, clock):
        scheduler = _order_scheduler(sync_service, clock)

        assert await scheduler.check_full_sync() is True
        clock.advance(minutes=30)
        assert await scheduler.check_full_sync() is False
        clock.advance(days=1)
        assert await scheduler.check_full_sync() is True

        assert sync_service.sync_all_merchants.await_count == 2
        sync_service.sync_all_merchants.assert_awaited_with(SyncOptions(force_full_sync=True))
        assert scheduler.get_status()["last_full_sync_date"] == date(2026, 3, 13)

    @pytest.mark.asyncio
    async def test_full_sync_waits_for_its_hour(self, sync_service, clock):
        scheduler = _order_scheduler(sync_service, clock)
        clock.advance(hours=1)

        assert await scheduler.check_full_sync() is False
        sync_service.sync_all_merchants.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_skips_while_sync_service_is_running(self, sync_service, clock):
        sync_service.is_running = True
        scheduler = _order_scheduler(sync_service, clock)

        result = await scheduler.trigger_manual_sync()
        ran_full = await scheduler.check_full_sync()
        clock.advance(hours=6)
        await scheduler.run_scheduled()

        assert result["success"] is False
        assert "corrida en curso" in result["message"]
        assert ran_full is False
        assert scheduler.get_status()["last_full_sync_date"] is None
        sync_service.sync_all_merchants.assert_not_awaited()
