"""
Endpoints de operacion del motor de sync POS.
"""
from datetime import date
from typing import List

from fastapi import APIRouter, Depends, Query, status

from possync.api.v1.dependencies.use_case_deps import (
    get_inventory_scheduler,
    get_orchestrator,
    get_order_scheduler,
    get_sync_service,
    get_sync_store,
)
from possync.application.dto.sync_dto import (
    DailySalesDTO,
    HistoricalSyncRequestDTO,
    HistoricalSyncResponseDTO,
    JobStatusDTO,
    JobSummaryDTO,
    ManualSyncResponseDTO,
    MerchantSyncStatusDTO,
    OrderSchedulerStatusDTO,
    SchedulerStatusDTO,
    SyncCursorDTO,
    SyncResultDTO,
)
from possync.application.services.pos_sync_service import PosSyncService
from possync.application.use_cases.historical_sync_use_cases import SyncJobOrchestrator
from possync.application.use_cases.inventory_sync_use_cases import InventorySyncScheduler
from possync.application.use_cases.order_sync_use_cases import OrderSyncScheduler
from possync.domain.entities.sync import SyncOptions
from possync.domain.repositories.sync_store import SyncStore
from possync.shared.constants.sync_constants import DATA_TYPE_ORDERS, JobStatus, POS_CHANNEL, POS_SYSTEM
from possync.shared.exceptions.domain import EntityNotFoundException

router = APIRouter(prefix="/sync", tags=["Sync"])


@router.post("/jobs/historical", response_model=HistoricalSyncResponseDTO, status_code=status.HTTP_202_ACCEPTED)
async def start_historical_sync(
    payload: HistoricalSyncRequestDTO,
    orchestrator: SyncJobOrchestrator = Depends(get_orchestrator),
):
    """
    Crea un job de sync historico (un checkpoint por locacion activa).
    Retorna inmediatamente; consultar GET /sync/jobs/{job_id} para el progreso.
    """
    job = await orchestrator.start_historical_sync(payload)
    return HistoricalSyncResponseDTO(
        job_id=job.id,
        status=JobStatus(job.status),
        total_locations=job.total_locations,
        message=f"Job creado con {job.total_locations} locaciones",
    )


@router.get("/jobs", response_model=List[JobSummaryDTO])
async def list_jobs(
    limit: int = Query(20, ge=1, le=100),
    orchestrator: SyncJobOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.list_jobs(limit)


@router.get("/jobs/{job_id}", response_model=JobStatusDTO)
async def get_job_status(job_id: int, orchestrator: SyncJobOrchestrator = Depends(get_orchestrator)):
    """Estado de un job con progreso y detalle por locacion."""
    return await orchestrator.get_job_status(job_id)


@router.post("/jobs/{job_id}/cancel", response_model=JobSummaryDTO)
async def cancel_job(job_id: int, orchestrator: SyncJobOrchestrator = Depends(get_orchestrator)):
    """Cancela un job; el checkpoint en curso termina normalmente."""
    job = await orchestrator.cancel_job(job_id)
    return JobSummaryDTO.model_validate(job)


@router.post("/merchants/{pos_config_id}", response_model=SyncResultDTO)
async def sync_merchant(
    pos_config_id: int,
    force_full: bool = False,
    sync_service: PosSyncService = Depends(get_sync_service),
):
    """Sync puntual de un merchant (espera a que termine)."""
    result = await sync_service.sync_merchant(pos_config_id, SyncOptions(force_full_sync=force_full))
    return SyncResultDTO.model_validate(result)


@router.get("/merchants/{merchant_id}/cursor", response_model=SyncCursorDTO)
async def get_merchant_cursor(merchant_id: str, store: SyncStore = Depends(get_sync_store)):
    cursor = await store.get_cursor(POS_SYSTEM, merchant_id, DATA_TYPE_ORDERS)
    if cursor is None:
        raise EntityNotFoundException("SyncCursor", merchant_id)
    return SyncCursorDTO.model_validate(cursor)


@router.get("/merchants/{merchant_id}/daily-sales", response_model=DailySalesDTO)
async def get_merchant_daily_sales(
    merchant_id: str,
    sales_date: date = Query(..., description="Fecha del agregado (YYYY-MM-DD)"),
    store: SyncStore = Depends(get_sync_store),
):
    """Agregado diario de ventas de un merchant del POS."""
    merchant = await store.get_merchant_by_external_id(merchant_id, POS_CHANNEL)
    if merchant is None:
        raise EntityNotFoundException("Merchant", merchant_id)
    daily = await store.get_daily_sales(merchant.id, POS_CHANNEL, sales_date)
    if daily is None:
        raise EntityNotFoundException("DailySales", f"{merchant_id}/{sales_date.isoformat()}")
    return DailySalesDTO.model_validate(daily)


@router.get("/status", response_model=List[MerchantSyncStatusDTO])
async def get_sync_status(sync_service: PosSyncService = Depends(get_sync_service)):
    """Estado del cursor de ordenes por merchant."""
    return await sync_service.get_sync_status()


@router.post("/stop")
async def stop_sync(sync_service: PosSyncService = Depends(get_sync_service)):
    return {"stopped": sync_service.stop_sync()}


@router.post("/inventory/trigger", response_model=ManualSyncResponseDTO)
async def trigger_inventory_sync(scheduler: InventorySyncScheduler = Depends(get_inventory_scheduler)):
    return await scheduler.trigger_manual_sync()


@router.get("/inventory/status", response_model=SchedulerStatusDTO)
async def get_inventory_status(scheduler: InventorySyncScheduler = Depends(get_inventory_scheduler)):
    return scheduler.get_status()


@router.post("/orders/trigger", response_model=ManualSyncResponseDTO)
async def trigger_order_sync(
    full: bool = False,
    scheduler: OrderSyncScheduler = Depends(get_order_scheduler),
):
    """Sync manual de todos los merchants (incremental o completo)."""
    return await scheduler.trigger_manual_sync(full=full)


@router.get("/orders/status", response_model=OrderSchedulerStatusDTO)
async def get_order_sync_status(scheduler: OrderSyncScheduler = Depends(get_order_scheduler)):
    return scheduler.get_status()
