"""
Casos de uso de la aplicacion.
"""
from possync.application.use_cases.historical_sync_use_cases import SyncJobOrchestrator
from possync.application.use_cases.inventory_sync_use_cases import InventorySyncScheduler
from possync.application.use_cases.order_sync_use_cases import OrderSyncScheduler

__all__ = [
    "SyncJobOrchestrator",
    "InventorySyncScheduler",
    "OrderSyncScheduler",
]
