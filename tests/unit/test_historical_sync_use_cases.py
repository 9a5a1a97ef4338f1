"""
Tests unitarios para SyncJobOrchestrator.

Verifican el ciclo de vida de jobs y checkpoints sobre el store real
(SQLite en memoria). El sync de cada merchant se mockea salvo en el
escenario de punta a punta.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from possync.application.dto.sync_dto import HistoricalSyncRequestDTO
from possync.application.services.pos_sync_service import PosSyncService
from possync.application.use_cases.historical_sync_use_cases import SyncJobOrchestrator
from possync.domain.entities.sync import SyncProgress, SyncResult
from possync.shared.constants.sync_constants import CheckpointStatus, JobStatus
from possync.shared.exceptions.domain import (
    EntityNotFoundException,
    NoActiveLocationsException,
    ValidationException,
)
from possync.shared.exceptions.sync import PosApiError
from possync.shared.utils.datetime_utils import datetime_to_ms, ms_to_datetime


T0 = datetime_to_ms(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))
T1 = datetime_to_ms(datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc))
T2 = datetime_to_ms(datetime(2026, 3, 10, 16, 30, tzinfo=timezone.utc))


def _ok_result(processed: int = 3) -> SyncResult:
    return SyncResult(
        success=True,
        orders_processed=processed,
        window_end=datetime(2026, 3, 12, 8, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def sync_service():
    service = MagicMock()
    service.sync_merchant = AsyncMock(return_value=_ok_result())
    return service


@pytest.fixture
def orchestrator(store, sync_service, clock):
    return SyncJobOrchestrator(store, sync_service, max_retries=5, backoff_base_seconds=30, clock=clock)


@pytest.fixture
async def three_locations(add_location, add_pos_config):
    for name, merchant_id in (("Centro", "M-1"), ("Norte", "M-2"), ("Sur", "M-3")):
        location_id = await add_location(name)
        await add_pos_config(merchant_id, name, location_id=location_id)


class TestStartHistoricalSync:
    """Tests para la creacion de jobs."""

    @pytest.mark.asyncio
    async def test_creates_one_job_and_one_checkpoint_per_location(self, store, orchestrator, three_locations):
        job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO(requested_by="ops"))

        assert job.status == JobStatus.PENDING.value
        assert job.total_locations == 3
        assert job.requested_by == "ops"
        assert len(await store.list_jobs()) == 1

        checkpoints = await store.list_checkpoints(job.id)
        assert [c.merchant_id for c in checkpoints] == ["M-1", "M-2", "M-3"]
        assert all(c.status == CheckpointStatus.PENDING.value for c in checkpoints)

    @pytest.mark.asyncio
    async def test_window_defaults_and_is_stored_in_metadata(self, orchestrator, clock, three_locations):
        job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO())

        assert job.end_date == clock.now
        assert job.start_date == clock.now - timedelta(days=365)
        assert job.force_full_sync is False

    @pytest.mark.asyncio
    async def test_explicit_naive_dates_are_taken_as_utc(self, orchestrator, three_locations):
        job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO(
            start_date=datetime(2026, 1, 1),
            end_date=datetime(2026, 2, 1),
            force_full_sync=True,
        ))

        assert job.start_date == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert job.end_date == datetime(2026, 2, 1, tzinfo=timezone.utc)
        assert job.force_full_sync is True

    @pytest.mark.asyncio
    async def test_start_after_default_end_raises(self, orchestrator, store, three_locations):
        with pytest.raises(ValidationException):
            await orchestrator.start_historical_sync(HistoricalSyncRequestDTO(
                start_date=datetime(2026, 4, 1, tzinfo=timezone.utc),
            ))

        assert await store.list_jobs() == []

    @pytest.mark.asyncio
    async def test_without_active_locations_raises(self, orchestrator, add_pos_config):
        await add_pos_config("M-OFF", "Cerrada", is_active=False)

        with pytest.raises(NoActiveLocationsException):
            await orchestrator.start_historical_sync(HistoricalSyncRequestDTO())

    @pytest.mark.asyncio
    async def test_location_linking(self, store, orchestrator, add_location, add_pos_config):
        """Vinculo explicito, luego nombre unico sin mayusculas; sin match queda None."""
        centro = await add_location("Tienda Centro")
        bodega = await add_location("Bodega")
        await add_pos_config("M-1", "Caja principal", location_id=bodega)
        await add_pos_config("M-2", "tienda centro")
        await add_pos_config("M-3", "Kiosko aeropuerto")

        job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO())

        checkpoints = {c.merchant_id: c for c in await store.list_checkpoints(job.id)}
        assert checkpoints["M-1"].location_id == bodega
        assert checkpoints["M-2"].location_id == centro
        assert checkpoints["M-3"].location_id is None
        assert checkpoints["M-3"].merchant_name == "Kiosko aeropuerto"

        status = await orchestrator.get_job_status(job.id)
        names = {c.merchant_id: c.location_name for c in status.checkpoints}
        assert names == {"M-1": "Bodega", "M-2": "Tienda Centro", "M-3": "Kiosko aeropuerto"}


class TestWorkerTick:
    """Tests para el tick del worker."""

    # =========================================================================
    # Camino feliz
    # =========================================================================

    @pytest.mark.asyncio
    async def test_job_completes_after_all_checkpoints(self, store, orchestrator, sync_service, three_locations):
        job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO())

        assert await orchestrator.run_tick() is True
        assert (await store.get_job(job.id)).status == JobStatus.ACTIVE.value
        assert await orchestrator.run_tick() is True

        # El tick del ultimo checkpoint cierra el job
        assert await orchestrator.run_tick() is True
        job = await store.get_job(job.id)
        assert job.status == JobStatus.COMPLETED.value
        assert await orchestrator.run_tick() is False

        assert job.completed_at is not None
        assert job.error_log is None
        assert job.processed_orders == 9
        assert job.total_orders == 9
        assert job.percent_complete == 100
        assert sync_service.sync_merchant.await_count == 3

        checkpoints = await store.list_checkpoints(job.id)
        assert all(c.status == CheckpointStatus.COMPLETED.value for c in checkpoints)

    @pytest.mark.asyncio
    async def test_end_to_end_with_real_sync_service(self, store, clock, three_locations, pos_api, make_order):
        """Tres locaciones con el motor real: job completado y ordenes por merchant."""
        pos_api.orders = [make_order("O1", modified=T1, total=1000)]
        service = PosSyncService(store, client_factory=pos_api.factory, batch_delay_ms=0)
        orchestrator = SyncJobOrchestrator(store, service, clock=clock)

        job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO())
        while await orchestrator.run_tick():
            pass

        status = await orchestrator.get_job_status(job.id)
        assert status.status == JobStatus.COMPLETED
        assert status.progress.processed_orders == 3
        assert status.progress.percent_complete == 100
        assert {c.status for c in status.checkpoints} == {CheckpointStatus.COMPLETED}

    @pytest.mark.asyncio
    async def test_window_comes_from_job_metadata(self, store, orchestrator, sync_service, add_pos_config):
        config_id = await add_pos_config("M-1", "Centro")
        job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO(
            start_date=datetime(2026, 1, 1, tzinfo=timezone.utc),
            end_date=datetime(2026, 2, 1, tzinfo=timezone.utc),
            batch_size=25,
        ))

        await orchestrator.run_tick()

        pos_config_id, options = sync_service.sync_merchant.await_args.args
        assert pos_config_id == config_id
        assert options.start_date == job.start_date
        assert options.end_date == job.end_date
        assert options.batch_size == 25

    # =========================================================================
    # Reintentos y backoff
    # =========================================================================

    @pytest.mark.asyncio
    async def test_failure_schedules_retry_with_backoff(self, store, orchestrator, sync_service, clock, add_pos_config):
        await add_pos_config("M-1", "Centro")
        sync_service.sync_merchant.side_effect = PosApiError("API POS error 503", http_status=503)
        job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO())

        await orchestrator.run_tick()

        checkpoint = (await store.list_checkpoints(job.id))[0]
        assert checkpoint.status == CheckpointStatus.RETRY.value
        assert checkpoint.retry_count == 1
        assert checkpoint.next_retry_at == clock.now + timedelta(seconds=60)
        assert "503" in checkpoint.last_error

        # Antes de que venza el backoff no se reclama
        assert await orchestrator.run_tick() is False
        assert sync_service.sync_merchant.await_count == 1
        assert (await store.get_job(job.id)).status == JobStatus.ACTIVE.value

        clock.advance(seconds=61)
        assert await orchestrator.run_tick() is True
        assert sync_service.sync_merchant.await_count == 2

    @pytest.mark.asyncio
    async def test_checkpoint_fails_after_max_retries(self, store, orchestrator, sync_service, clock, add_pos_config):
        await add_pos_config("M-1", "Centro")
        sync_service.sync_merchant.side_effect = PosApiError("API POS inalcanzable")
        job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO())

        for _ in range(5):
            assert await orchestrator.run_tick() is True
            clock.advance(hours=1)

        checkpoint = (await store.list_checkpoints(job.id))[0]
        assert checkpoint.status == CheckpointStatus.FAILED.value
        assert checkpoint.retry_count == 5

        # El ultimo intento cierra el job con el error registrado; no hay sexto
        job = await store.get_job(job.id)
        assert job.status == JobStatus.COMPLETED.value
        assert await orchestrator.run_tick() is False
        assert sync_service.sync_merchant.await_count == 5

        job = await store.get_job(job.id)
        assert job.status == JobStatus.COMPLETED.value
        assert "M-1" in job.error_log

    @pytest.mark.asyncio
    async def test_unsuccessful_result_counts_as_failure(self, store, orchestrator, sync_service, add_pos_config):
        await add_pos_config("M-1", "Centro")
        failed = SyncResult(success=False, systemic_failure=True)
        failed.add_error("O1", "base caida")
        sync_service.sync_merchant.return_value = failed
        job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO())

        await orchestrator.run_tick()

        checkpoint = (await store.list_checkpoints(job.id))[0]
        assert checkpoint.status == CheckpointStatus.RETRY.value
        assert "base caida" in checkpoint.last_error
        assert (await store.get_job(job.id)).processed_orders == 0

    @pytest.mark.asyncio
    async def test_retry_resumes_from_last_progress(self, store, orchestrator, sync_service, clock, add_pos_config):
        await add_pos_config("M-1", "Centro")
        resume_point = datetime(2025, 9, 1, tzinfo=timezone.utc)

        async def progress_then_fail(pos_config_id, options):
            await options.progress_callback(
                SyncProgress(orders_processed=40, orders_in_page=40, page=1, resume_point=resume_point)
            )
            raise PosApiError("corte de red")

        sync_service.sync_merchant.side_effect = progress_then_fail
        job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO())
        await orchestrator.run_tick()

        checkpoint = (await store.list_checkpoints(job.id))[0]
        assert checkpoint.last_synced_at == resume_point
        assert checkpoint.processed_orders == 40

        sync_service.sync_merchant.side_effect = None
        clock.advance(hours=1)
        await orchestrator.run_tick()

        _, options = sync_service.sync_merchant.await_args.args
        assert options.start_date == resume_point

    # =========================================================================
    # Corrida detenida
    # =========================================================================

    @pytest.mark.asyncio
    async def test_stopped_run_returns_checkpoint_to_pending(self, store, orchestrator, sync_service, add_pos_config):
        await add_pos_config("M-1", "Centro")
        resume_point = datetime(2025, 9, 1, tzinfo=timezone.utc)

        async def progress_then_stop(pos_config_id, options):
            await options.progress_callback(
                SyncProgress(orders_processed=40, orders_in_page=40, page=1, resume_point=resume_point)
            )
            return SyncResult(
                success=True,
                stopped=True,
                orders_processed=40,
                window_end=datetime(2026, 3, 12, 8, 0, tzinfo=timezone.utc),
            )

        sync_service.sync_merchant.side_effect = progress_then_stop
        job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO())

        assert await orchestrator.run_tick() is True

        checkpoint = (await store.list_checkpoints(job.id))[0]
        assert checkpoint.status == CheckpointStatus.PENDING.value
        assert checkpoint.last_synced_at == resume_point
        assert checkpoint.processed_orders == 40
        assert checkpoint.completed_at is None
        assert checkpoint.retry_count == 0
        job_row = await store.get_job(job.id)
        assert job_row.status == JobStatus.ACTIVE.value
        assert job_row.processed_orders == 0

        sync_service.sync_merchant.side_effect = None
        assert await orchestrator.run_tick() is True

        _, options = sync_service.sync_merchant.await_args.args
        assert options.start_date == resume_point
        assert (await store.get_job(job.id)).status == JobStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_stop_sync_mid_checkpoint_with_real_service(
        self, store, clock, add_pos_config, held_pos_api, make_order
    ):
        """stop_sync durante la segunda pagina: el checkpoint queda pendiente en el ultimo punto persistido."""
        await add_pos_config("M-1", "Centro")
        api = held_pos_api(1)
        api.orders = [make_order("O1", modified=T0), make_order("O2", modified=T1), make_order("O3", modified=T2)]
        service = PosSyncService(store, client_factory=api.factory, batch_delay_ms=0)
        orchestrator = SyncJobOrchestrator(store, service, clock=clock)
        job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO(batch_size=2))

        tick = asyncio.create_task(orchestrator.run_tick())
        await api.entered[1].wait()
        assert service.stop_sync() is True
        api.released[1].set()
        assert await tick is True

        checkpoint = (await store.list_checkpoints(job.id))[0]
        assert checkpoint.status == CheckpointStatus.PENDING.value
        assert checkpoint.last_synced_at == ms_to_datetime(T1)
        assert checkpoint.processed_orders == 2
        assert (await store.get_job(job.id)).processed_orders == 0

        # El tick siguiente reanuda desde el punto persistido y cierra el job
        assert await orchestrator.run_tick() is True
        assert api.order_calls[2]["modified_since_ms"] == T1
        status = await orchestrator.get_job_status(job.id)
        assert status.status == JobStatus.COMPLETED
        assert status.checkpoints[0].status == CheckpointStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, orchestrator, sync_service, three_locations):
        await orchestrator.start_historical_sync(HistoricalSyncRequestDTO())
        orchestrator._busy = True
        assert orchestrator.is_busy is True

        assert await orchestrator.run_tick() is False
        sync_service.sync_merchant.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tick_without_jobs_does_nothing(self, orchestrator, sync_service):
        assert await orchestrator.run_tick() is False
        sync_service.sync_merchant.assert_not_awaited()


class TestRecoveryAndCancel:
    """Tests de recuperacion tras reinicio y cancelacion."""

    @pytest.mark.asyncio
    async def test_recover_stuck_jobs_resets_active_rows(self, store, orchestrator, three_locations):
        job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO())
        checkpoint = (await store.list_checkpoints(job.id))[0]
        await store.update_job(job.id, {"status": JobStatus.ACTIVE.value})
        await store.update_checkpoint(checkpoint.id, {"status": CheckpointStatus.ACTIVE.value})

        recovered = await orchestrator.recover_stuck_jobs()

        assert recovered == {"jobs": 1, "checkpoints": 1}
        assert (await store.get_job(job.id)).status == JobStatus.PENDING.value
        assert (await store.get_checkpoint(checkpoint.id)).status == CheckpointStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_cancel_job_cancels_open_checkpoints(self, store, orchestrator, sync_service, three_locations):
        job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO())
        await orchestrator.run_tick()

        cancelled = await orchestrator.cancel_job(job.id)

        assert cancelled.status == JobStatus.CANCELLED.value
        statuses = [c.status for c in await store.list_checkpoints(job.id)]
        assert statuses == [
            CheckpointStatus.COMPLETED.value,
            CheckpointStatus.CANCELLED.value,
            CheckpointStatus.CANCELLED.value,
        ]

        assert await orchestrator.run_tick() is False
        assert sync_service.sync_merchant.await_count == 1


    @pytest.mark.asyncio
    async def test_failure_after_cancel_does_not_schedule_retry(
        self, store, orchestrator, sync_service, add_pos_config
    ):
        await add_pos_config("M-1", "Centro")
        job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO())

        async def cancel_then_fail(pos_config_id, options):
            await orchestrator.cancel_job(job.id)
            raise PosApiError("corte de red")

        sync_service.sync_merchant.side_effect = cancel_then_fail

        assert await orchestrator.run_tick() is True

        checkpoint = (await store.list_checkpoints(job.id))[0]
        assert checkpoint.status == CheckpointStatus.CANCELLED.value
        assert checkpoint.retry_count == 0
        assert checkpoint.next_retry_at is None
        assert "corte de red" in checkpoint.last_error
        assert (await store.get_job(job.id)).status == JobStatus.CANCELLED.value
        assert await orchestrator.run_tick() is False

    @pytest.mark.asyncio
    async def test_cancel_unknown_job_raises(self, orchestrator):
        with pytest.raises(EntityNotFoundException):
            await orchestrator.cancel_job(404)

    @pytest.mark.asyncio
    async def test_cancel_finished_job_is_a_no_op(self, store, orchestrator, add_pos_config):
        await add_pos_config("M-1", "Centro")
        job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO())
        await orchestrator.run_tick()

        result = await orchestrator.cancel_job(job.id)

        assert result.status == JobStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_get_status_of_unknown_job_raises(self, orchestrator):
        with pytest.raises(EntityNotFoundException):
            await orchestrator.get_job_status(1)


class TestWorkerScheduling:
    """Tests del registro del worker en APScheduler."""

    def test_start_worker_registers_single_instance_job(self, orchestrator):
        scheduler = MagicMock()

        orchestrator.start_worker(scheduler, interval_seconds=5)

        kwargs = scheduler.add_job.call_args.kwargs
        assert kwargs["id"] == SyncJobOrchestrator.WORKER_JOB_ID
        assert kwargs["max_instances"] == 1
        assert kwargs["coalesce"] is True
        assert orchestrator.is_worker_running is True

    def test_stop_worker_removes_job(self, orchestrator):
        scheduler = MagicMock()
        orchestrator.start_worker(scheduler)

        orchestrator.stop_worker()

        scheduler.remove_job.assert_called_once_with(SyncJobOrchestrator.WORKER_JOB_ID)
        assert orchestrator.is_worker_running is False
