"""
Dependencias para inyeccion de casos de uso.

Los servicios del motor de sync son singletons de proceso: se crean en el
startup y viven en app.state (comparten el scheduler y el flag de worker).
"""
from fastapi import Request

from possync.application.services.pos_sync_service import PosSyncService
from possync.application.use_cases.historical_sync_use_cases import SyncJobOrchestrator
from possync.application.use_cases.inventory_sync_use_cases import InventorySyncScheduler
from possync.application.use_cases.order_sync_use_cases import OrderSyncScheduler
from possync.domain.repositories.sync_store import SyncStore


def get_sync_store(request: Request) -> SyncStore:
    return request.app.state.store


def get_sync_service(request: Request) -> PosSyncService:
    return request.app.state.sync_service


def get_orchestrator(request: Request) -> SyncJobOrchestrator:
    """
    Dependencia para obtener el orquestador de jobs historicos.

    Returns:
        SyncJobOrchestrator: Instancia creada en el startup
    """
    return request.app.state.orchestrator


def get_inventory_scheduler(request: Request) -> InventorySyncScheduler:
    return request.app.state.inventory_scheduler


def get_order_scheduler(request: Request) -> OrderSyncScheduler:
    return request.app.state.order_scheduler
