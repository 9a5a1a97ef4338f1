"""
Casos de uso de sync historico multi-locacion.

Patron asincrono:
- El endpoint crea el job (uno) y sus checkpoints (uno por locacion) y
  retorna inmediatamente un job_id.
- Un worker periodico (APScheduler) avanza un checkpoint por tick.
- El frontend hace polling al endpoint de status hasta que el job termine.

A diferencia de un job en memoria, el estado vive en la base de datos:
tras un reinicio, recover_stuck_jobs devuelve a pending lo que quedo active.

Maquinas de estado:
- Job: pending -> active -> completed | cancelled
- Checkpoint: pending -> active -> completed | retry -> active | failed | cancelled
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from possync.application.dto.sync_dto import (
    CheckpointStatusDTO,
    HistoricalSyncRequestDTO,
    JobProgressDTO,
    JobStatusDTO,
    JobSummaryDTO,
)
from possync.application.services.pos_sync_service import PosSyncService
from possync.core.config import settings
from possync.domain.entities.pos import Location, PosConfig
from possync.domain.entities.sync import SyncCheckpoint, SyncJob, SyncOptions, SyncProgress
from possync.domain.repositories.sync_store import SyncStore
from possync.shared.constants.sync_constants import (
    CheckpointStatus,
    HISTORICAL_JOB_TYPE,
    JobStatus,
)
from possync.shared.exceptions.domain import (
    EntityNotFoundException,
    NoActiveLocationsException,
    ValidationException,
)
from possync.shared.exceptions.sync import SyncConfigError
from possync.shared.utils.datetime_utils import ensure_utc, utc_now


class SyncJobOrchestrator:
    """
    Orquestador de jobs de sync historico.

    El worker es single-flight: un flag en memoria descarta ticks que se
    solapan, y APScheduler corre el job con max_instances=1.
    """

    WORKER_JOB_ID = "sync_job_worker"

    def __init__(
        self,
        store: SyncStore,
        sync_service: PosSyncService,
        *,
        max_retries: Optional[int] = None,
        backoff_base_seconds: Optional[int] = None,
        batch_size: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._sync_service = sync_service
        self._max_retries = max_retries or settings.SYNC_JOB_MAX_RETRIES
        self._backoff_base = (
            settings.SYNC_JOB_BACKOFF_BASE_SECONDS if backoff_base_seconds is None else backoff_base_seconds
        )
        self._batch_size = batch_size or settings.SYNC_JOB_BATCH_SIZE
        self._clock = clock
        self._busy = False
        self._scheduler = None

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def is_worker_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.get_job(self.WORKER_JOB_ID) is not None

    # ------------------------------------------------------------------
    # Creacion de jobs
    # ------------------------------------------------------------------

    async def start_historical_sync(self, request: HistoricalSyncRequestDTO) -> SyncJob:
        """
        Crea un job con un checkpoint por locacion POS activa.

        Args:
            request: Ventana, sync forzado y solicitante

        Returns:
            SyncJob: Job creado en estado pending (el worker lo procesa)

        Raises:
            NoActiveLocationsException: Si no hay configuraciones POS activas
            ValidationException: Si la ventana resultante queda vacia
        """
        pos_configs = await self._store.list_active_pos_configs()
        if not pos_configs:
            raise NoActiveLocationsException()

        locations = await self._store.list_active_locations()
        now = self._clock()
        end_date = ensure_utc(request.end_date) if request.end_date else now
        start_date = (
            ensure_utc(request.start_date) if request.start_date
            else end_date - timedelta(days=settings.SYNC_HISTORICAL_DEPTH_DAYS)
        )
        if start_date >= end_date:
            raise ValidationException("start_date debe ser anterior a end_date", field="start_date")

        job = await self._store.create_job({
            "type": HISTORICAL_JOB_TYPE,
            "status": JobStatus.PENDING.value,
            "requested_by": request.requested_by,
            "total_locations": len(pos_configs),
            "processed_orders": 0,
            "total_orders": 0,
            "job_metadata": {
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "force_full_sync": request.force_full_sync,
                "batch_size": request.batch_size or self._batch_size,
            },
        })

        for pos_config in pos_configs:
            await self._store.create_checkpoint({
                "job_id": job.id,
                "location_id": self._link_location(pos_config, locations),
                "merchant_id": pos_config.merchant_id,
                "merchant_name": pos_config.merchant_name,
                "status": CheckpointStatus.PENDING.value,
                "retry_count": 0,
            })

        logger.info(
            f"[sync-job] Job {job.id} creado con {len(pos_configs)} locaciones "
            f"(solicitado por {request.requested_by or 'sistema'})"
        )
        return job

    @staticmethod
    def _link_location(pos_config: PosConfig, locations: List[Location]) -> Optional[int]:
        """
        Vincula la configuracion POS con una locacion interna.

        Orden: vinculo explicito, luego coincidencia unica de nombre
        (sin distinguir mayusculas). Si no hay, None: el checkpoint
        conserva igual el merchant externo.
        """
        if pos_config.location_id:
            return pos_config.location_id

        wanted = (pos_config.merchant_name or "").strip().lower()
        matches = [loc for loc in locations if loc.name.strip().lower() == wanted]
        if len(matches) == 1:
            return matches[0].id

        logger.warning(
            f"[sync-job] Sin locacion para {pos_config.merchant_name} ({pos_config.merchant_id}): "
            f"{len(matches)} coincidencias de nombre"
        )
        return None

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def recover_stuck_jobs(self) -> Dict[str, int]:
        """
        Devuelve a pending los jobs y checkpoints que quedaron active
        (el proceso murio a mitad de un tick). Correr antes de arrancar el worker.
        """
        jobs = await self._store.reset_active_jobs()
        checkpoints = await self._store.reset_active_checkpoints()
        if jobs or checkpoints:
            logger.warning(f"[sync-job] Recuperados {jobs} jobs y {checkpoints} checkpoints atascados")
        return {"jobs": jobs, "checkpoints": checkpoints}

    def start_worker(self, scheduler, interval_seconds: Optional[int] = None) -> None:
        """
        Registra el tick del worker en el scheduler (AsyncIOScheduler).

        Args:
            scheduler: Scheduler de APScheduler ya creado
            interval_seconds: Intervalo entre ticks
        """
        interval = interval_seconds or settings.SYNC_JOB_WORKER_INTERVAL_SECONDS
        scheduler.add_job(
            self.run_tick,
            trigger=IntervalTrigger(seconds=interval),
            id=self.WORKER_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler = scheduler
        logger.info(f"[sync-job] Worker iniciado (cada {interval}s)")

    def stop_worker(self) -> None:
        if self._scheduler is not None and self._scheduler.get_job(self.WORKER_JOB_ID):
            self._scheduler.remove_job(self.WORKER_JOB_ID)
            logger.info("[sync-job] Worker detenido")
        self._scheduler = None

    async def run_tick(self) -> bool:
        """
        Un tick del worker: avanza a lo sumo un checkpoint.

        Nunca lanza: cualquier error se registra y el tick termina.

        Returns:
            bool: True si se proceso un checkpoint
        """
        if self._busy:
            return False
        self._busy = True
        try:
            return await self._tick()
        except Exception as e:
            logger.exception(f"[sync-job] Error en tick del worker: {e}")
            return False
        finally:
            self._busy = False

    async def _tick(self) -> bool:
        job = await self._store.get_oldest_open_job()
        if job is None:
            return False

        now = self._clock()
        if job.status == JobStatus.PENDING.value:
            values = {"status": JobStatus.ACTIVE.value}
            if job.started_at is None:
                values["started_at"] = now
            await self._store.update_job(job.id, values)
            logger.info(f"[sync-job] Job {job.id} activo")

        checkpoint = await self._store.claim_checkpoint(job.id, now)
        if checkpoint is None:
            if await self._store.count_open_checkpoints(job.id) == 0:
                await self._complete_job(job)
            return False

        await self._process_checkpoint(job, checkpoint)
        if await self._store.count_open_checkpoints(job.id) == 0:
            current = await self._store.get_job(job.id)
            if current is not None and current.status == JobStatus.ACTIVE.value:
                await self._complete_job(current)
        return True

    async def _complete_job(self, job: SyncJob) -> None:
        checkpoints = await self._store.list_checkpoints(job.id)
        failed = [c for c in checkpoints if c.status == CheckpointStatus.FAILED.value]
        error_log = None
        if failed:
            error_log = "\n".join(
                f"{c.merchant_name or c.merchant_id} ({c.merchant_id}): {c.last_error}" for c in failed
            )

        await self._store.update_job(job.id, {
            "status": JobStatus.COMPLETED.value,
            "completed_at": self._clock(),
            "error_log": error_log,
        })
        if failed:
            logger.warning(f"[sync-job] Job {job.id} completado con {len(failed)} locaciones fallidas")
        else:
            logger.success(f"[sync-job] Job {job.id} completado")

    async def _process_checkpoint(self, job: SyncJob, checkpoint: SyncCheckpoint) -> None:
        logger.info(
            f"[sync-job] Job {job.id}: procesando {checkpoint.merchant_name or checkpoint.merchant_id} "
            f"(intento {checkpoint.retry_count + 1})"
        )

        async def on_progress(progress: SyncProgress) -> None:
            values = {"processed_orders": progress.orders_processed}
            if progress.resume_point is not None:
                values["last_synced_at"] = progress.resume_point
            await self._store.update_checkpoint(checkpoint.id, values)

        try:
            pos_config = await self._store.get_pos_config_by_merchant(checkpoint.merchant_id)
            if pos_config is None:
                raise SyncConfigError(f"Sin configuracion POS para el merchant {checkpoint.merchant_id}")

            options = SyncOptions(
                start_date=checkpoint.last_synced_at or job.start_date,
                end_date=job.end_date,
                force_full_sync=job.force_full_sync,
                batch_size=(job.job_metadata or {}).get("batch_size") or self._batch_size,
                progress_callback=on_progress,
            )
            result = await self._sync_service.sync_merchant(pos_config.id, options)
            if not result.success:
                raise RuntimeError(result.error_summary() or "Falla sistemica de persistencia")
        except Exception as e:
            await self._fail_checkpoint(job, checkpoint, str(e))
            return

        if result.stopped:
            await self._release_stopped_checkpoint(job, checkpoint, result.orders_processed)
            return

        total = result.orders_processed + len(result.errors)
        values = {
            "status": CheckpointStatus.COMPLETED.value,
            "completed_at": self._clock(),
            "processed_orders": result.orders_processed,
            "total_orders": total,
            "last_error": result.error_summary(),
        }
        if result.window_end is not None:
            values["last_synced_at"] = result.window_end
        await self._store.update_checkpoint(checkpoint.id, values)
        await self._store.increment_job_totals(job.id, result.orders_processed, total)
        logger.success(
            f"[sync-job] Job {job.id}: {checkpoint.merchant_id} completado "
            f"({result.orders_processed}/{total} ordenes)"
        )

    async def _job_was_cancelled(self, job_id: int) -> bool:
        current = await self._store.get_job(job_id)
        return current is not None and current.status == JobStatus.CANCELLED.value

    async def _cancel_checkpoint(self, checkpoint: SyncCheckpoint, error: Optional[str] = None) -> None:
        values = {"status": CheckpointStatus.CANCELLED.value, "completed_at": self._clock()}
        if error:
            values["last_error"] = error[:2000]
        await self._store.update_checkpoint(checkpoint.id, values)
        logger.info(f"[sync-job] {checkpoint.merchant_id} cancelado junto con su job")

    async def _release_stopped_checkpoint(
        self, job: SyncJob, checkpoint: SyncCheckpoint, processed_orders: int
    ) -> None:
        """
        Corrida detenida a mitad de ventana: el checkpoint vuelve a pending
        con el punto de reanudacion que dejo el callback de progreso.
        """
        if await self._job_was_cancelled(job.id):
            await self._cancel_checkpoint(checkpoint)
            return

        await self._store.update_checkpoint(checkpoint.id, {
            "status": CheckpointStatus.PENDING.value,
            "processed_orders": processed_orders,
        })
        logger.warning(
            f"[sync-job] Job {job.id}: {checkpoint.merchant_id} detenido tras {processed_orders} ordenes, "
            f"queda pendiente para reanudar"
        )

    async def _fail_checkpoint(self, job: SyncJob, checkpoint: SyncCheckpoint, error: str) -> None:
        if await self._job_was_cancelled(job.id):
            await self._cancel_checkpoint(checkpoint, error)
            return

        retry_count = checkpoint.retry_count + 1
        if retry_count < self._max_retries:
            delay = self._backoff_base * (2 ** retry_count)
            next_retry_at = self._clock() + timedelta(seconds=delay)
            await self._store.update_checkpoint(checkpoint.id, {
                "status": CheckpointStatus.RETRY.value,
                "retry_count": retry_count,
                "next_retry_at": next_retry_at,
                "last_error": error[:2000],
            })
            logger.warning(
                f"[sync-job] {checkpoint.merchant_id} fallo (intento {retry_count}/{self._max_retries}), "
                f"reintento en {delay}s: {error}"
            )
            return

        await self._store.update_checkpoint(checkpoint.id, {
            "status": CheckpointStatus.FAILED.value,
            "retry_count": retry_count,
            "last_error": error[:2000],
            "completed_at": self._clock(),
        })
        logger.error(f"[sync-job] {checkpoint.merchant_id} fallo definitivamente tras {retry_count} intentos: {error}")

    # ------------------------------------------------------------------
    # Consulta y cancelacion
    # ------------------------------------------------------------------

    async def cancel_job(self, job_id: int) -> SyncJob:
        """
        Cancela un job. Los checkpoints pending/retry pasan a cancelled;
        un checkpoint active termina su trabajo sin interrupcion.

        Raises:
            EntityNotFoundException: Si el job no existe
        """
        job = await self._store.get_job(job_id)
        if job is None:
            raise EntityNotFoundException("SyncJob", job_id)

        if job.status in (JobStatus.COMPLETED.value, JobStatus.CANCELLED.value):
            logger.info(f"[sync-job] Job {job_id} ya estaba {job.status}, nada que cancelar")
            return job

        await self._store.update_job(job_id, {
            "status": JobStatus.CANCELLED.value,
            "completed_at": self._clock(),
        })
        cancelled = await self._store.cancel_open_checkpoints(job_id)
        logger.info(f"[sync-job] Job {job_id} cancelado ({cancelled} checkpoints cancelados)")
        return await self._store.get_job(job_id)

    async def get_job_status(self, job_id: int) -> JobStatusDTO:
        """
        Estado del job con progreso y detalle por locacion.

        Raises:
            EntityNotFoundException: Si el job no existe
        """
        job = await self._store.get_job(job_id)
        if job is None:
            raise EntityNotFoundException("SyncJob", job_id)

        checkpoints = await self._store.list_checkpoints(job_id)
        location_names: Dict[int, str] = {}
        for checkpoint in checkpoints:
            if checkpoint.location_id and checkpoint.location_id not in location_names:
                location = await self._store.get_location(checkpoint.location_id)
                if location is not None:
                    location_names[location.id] = location.name

        return JobStatusDTO(
            id=job.id,
            type=job.type,
            status=job.status,
            requested_by=job.requested_by,
            metadata=job.job_metadata or {},
            error_log=job.error_log,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            progress=JobProgressDTO(
                total_locations=job.total_locations,
                total_orders=job.total_orders,
                processed_orders=job.processed_orders,
                percent_complete=job.percent_complete,
            ),
            checkpoints=[
                CheckpointStatusDTO(
                    id=c.id,
                    location_id=c.location_id,
                    location_name=location_names.get(c.location_id) or c.merchant_name,
                    merchant_id=c.merchant_id,
                    status=c.status,
                    processed_orders=c.processed_orders,
                    total_orders=c.total_orders,
                    last_synced_at=c.last_synced_at,
                    last_error=c.last_error,
                    retry_count=c.retry_count,
                    next_retry_at=c.next_retry_at,
                )
                for c in checkpoints
            ],
        )

    async def list_jobs(self, limit: int = 20) -> List[JobSummaryDTO]:
        jobs = await self._store.list_jobs(limit)
        return [JobSummaryDTO.model_validate(job) for job in jobs]
