"""
Scheduler periodico de sincronizacion de inventario.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Optional

from loguru import logger

from possync.application.services.inventory_sync_service import InventorySyncService
from possync.core.config import settings
from possync.infrastructure.scheduling.interval_scheduler import IntervalSyncScheduler
from possync.shared.utils.datetime_utils import utc_now


class InventorySyncScheduler(IntervalSyncScheduler):
    """
    Corre InventorySyncService.sync_all_locations cada N minutos
    (por defecto 15), con la primera corrida 30 s despues de iniciar.
    """

    job_id = "inventory_sync"
    label = "inventory-sync"

    def __init__(
        self,
        inventory_service: InventorySyncService,
        *,
        interval_minutes: Optional[int] = None,
        initial_delay_seconds: Optional[int] = None,
        enabled: Optional[bool] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(
            interval_minutes=interval_minutes or settings.INVENTORY_SYNC_INTERVAL_MINUTES,
            initial_delay_seconds=(
                settings.INVENTORY_SYNC_INITIAL_DELAY_SECONDS if initial_delay_seconds is None
                else initial_delay_seconds
            ),
            enabled=settings.INVENTORY_SYNC_ENABLED if enabled is None else enabled,
            clock=clock,
        )
        self._inventory_service = inventory_service

    async def _run_sync(self, **kwargs: Any) -> str:
        summary = await self._inventory_service.sync_all_locations()
        message = (
            f"Inventario sincronizado: {summary.succeeded}/{summary.locations} locaciones, "
            f"{summary.items_synced} items, {summary.cost_changes} cambios de costo"
        )
        if summary.failed:
            logger.warning(f"[{self.label}] {summary.failed} locaciones con error: {summary.errors}")
            message += f", {summary.failed} locaciones con error"
        else:
            logger.success(f"[{self.label}] {message}")
        return message
