"""
Scheduler periodico de sync de ordenes de todos los merchants.

- Incremental cada N minutos, solo dentro del horario comercial
  (BUSINESS_START_HOUR <= hora < BUSINESS_END_HOUR en BUSINESS_TIMEZONE,
  opcionalmente sin fines de semana).
- Sync completo una vez al dia a FULL_SYNC_HOUR (hora local).
- Ninguna corrida arranca si el servicio de sync ya tiene una en curso.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo

from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from possync.application.services.pos_sync_service import PosSyncService
from possync.core.config import settings
from possync.domain.entities.sync import SyncOptions
from possync.infrastructure.scheduling.interval_scheduler import IntervalSyncScheduler
from possync.shared.utils.datetime_utils import utc_now


class OrderSyncScheduler(IntervalSyncScheduler):
    """
    Corre sync_all_merchants en modo incremental cada N minutos y en modo
    completo una vez al dia. Deshabilitado salvo AUTO_SYNC_ENABLED.
    """

    job_id = "order_incremental_sync"
    full_sync_job_id = "order_daily_full_sync"
    label = "order-sync"

    def __init__(
        self,
        sync_service: PosSyncService,
        *,
        interval_minutes: Optional[int] = None,
        enabled: Optional[bool] = None,
        full_sync_hour: Optional[int] = None,
        business_start_hour: Optional[int] = None,
        business_end_hour: Optional[int] = None,
        business_timezone: Optional[str] = None,
        skip_weekends: Optional[bool] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(
            interval_minutes=interval_minutes or settings.INCREMENTAL_SYNC_INTERVAL_MINUTES,
            enabled=settings.AUTO_SYNC_ENABLED if enabled is None else enabled,
            clock=clock,
        )
        self._sync_service = sync_service
        self._full_sync_hour = settings.FULL_SYNC_HOUR if full_sync_hour is None else full_sync_hour
        self._business_start_hour = (
            settings.BUSINESS_START_HOUR if business_start_hour is None else business_start_hour
        )
        self._business_end_hour = settings.BUSINESS_END_HOUR if business_end_hour is None else business_end_hour
        self._timezone = ZoneInfo(business_timezone or settings.BUSINESS_TIMEZONE)
        self._skip_weekends = settings.SKIP_WEEKEND_SYNC if skip_weekends is None else skip_weekends
        self._last_full_sync_date: Optional[date] = None

    def _local_now(self) -> datetime:
        return self._clock().astimezone(self._timezone)

    def is_business_hours(self) -> bool:
        """True si la hora local esta dentro del horario comercial (sabado y domingo son fin de semana)."""
        local = self._local_now()
        if self._skip_weekends and local.weekday() >= 5:
            return False
        return self._business_start_hour <= local.hour < self._business_end_hour

    def start(self, scheduler) -> None:
        super().start(scheduler)
        if self._scheduler is None:
            return

        scheduler.add_job(
            self.check_full_sync,
            trigger=CronTrigger(minute=0, timezone=self._timezone),
            id=self.full_sync_job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(
            f"[{self.label}] Sync completo diario a las {self._full_sync_hour:02d}:00 ({self._timezone.key}); "
            f"horario comercial {self._business_start_hour}-{self._business_end_hour}"
            f"{', sin fines de semana' if self._skip_weekends else ''}"
        )

    def stop(self) -> None:
        if self._scheduler is not None and self._scheduler.get_job(self.full_sync_job_id) is not None:
            self._scheduler.remove_job(self.full_sync_job_id)
        super().stop()

    async def run_scheduled(self) -> None:
        """Corrida incremental programada, solo dentro del horario comercial."""
        if not self.is_business_hours():
            logger.debug(f"[{self.label}] Fuera del horario comercial, se omite el sync incremental")
            return
        await self._run_guarded()

    async def check_full_sync(self) -> bool:
        """
        Corre el sync completo si es la hora configurada y todavia no
        corrio hoy (fecha local).

        Returns:
            bool: True si el sync completo corrio con exito
        """
        local = self._local_now()
        if local.hour != self._full_sync_hour or self._last_full_sync_date == local.date():
            return False

        logger.info(f"[{self.label}] Iniciando sync completo diario ({local.date().isoformat()})")
        ok, _ = await self._run_guarded(full=True)
        if ok:
            self._last_full_sync_date = local.date()
        return ok

    async def trigger_manual_sync(self, full: bool = False, **kwargs: Any):
        """Disparo manual; full=True fuerza sync completo (ignora la marca de agua)."""
        return await super().trigger_manual_sync(full=full, **kwargs)

    def _skip_reason(self) -> Optional[str]:
        if self._sync_service.is_running:
            return "El servicio de sync de ordenes ya tiene una corrida en curso"
        return None

    async def _run_sync(self, full: bool = False, **kwargs: Any) -> str:
        results = await self._sync_service.sync_all_merchants(SyncOptions(force_full_sync=full))
        failed = [merchant_id for merchant_id, r in results.items() if not r.success]
        processed = sum(r.orders_processed for r in results.values())
        message = (
            f"Sync {'completo' if full else 'incremental'}: {len(results) - len(failed)}/{len(results)} "
            f"merchants, {processed} ordenes"
        )
        if failed:
            logger.warning(f"[{self.label}] Merchants con error: {', '.join(failed)}")
            message += f", con error: {', '.join(failed)}"
        else:
            logger.success(f"[{self.label}] {message}")
        return message

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status.update({
            "business_hours_active": self.is_business_hours(),
            "full_sync_hour": self._full_sync_hour,
            "last_full_sync_date": self._last_full_sync_date,
        })
        return status
