"""
Base de schedulers periodicos sobre APScheduler (AsyncIOScheduler).

Cada scheduler registra un job de intervalo con max_instances=1 y
coalesce=True; ademas un flag en memoria descarta corridas solapadas
(manual + programada).
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from possync.shared.utils.datetime_utils import ensure_utc, utc_now


class IntervalSyncScheduler:
    """
    Scheduler periodico con guardia de solapamiento, disparo manual y estado.

    Las subclases implementan _run_sync y retornan un mensaje de resumen.
    """

    job_id: str = "interval_sync"
    label: str = "sync"

    def __init__(
        self,
        *,
        interval_minutes: int,
        initial_delay_seconds: int = 0,
        enabled: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._interval_minutes = interval_minutes
        self._initial_delay_seconds = initial_delay_seconds
        self._enabled = enabled
        self._clock = clock
        self._scheduler = None
        self._is_syncing = False
        self._last_sync_at: Optional[datetime] = None
        self._last_error: Optional[str] = None

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.get_job(self.job_id) is not None

    def start(self, scheduler) -> None:
        """Registra el job periodico; la primera corrida ocurre tras el delay inicial."""
        if not self._enabled:
            logger.info(f"[{self.label}] Scheduler deshabilitado por configuracion")
            return

        first_run = self._clock() + timedelta(seconds=self._initial_delay_seconds)
        scheduler.add_job(
            self.run_scheduled,
            trigger=IntervalTrigger(minutes=self._interval_minutes, start_date=first_run),
            id=self.job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler = scheduler
        logger.info(
            f"[{self.label}] Scheduler iniciado: cada {self._interval_minutes} min, "
            f"primera corrida {first_run.isoformat()}"
        )

    def stop(self) -> None:
        if self.is_running:
            self._scheduler.remove_job(self.job_id)
            logger.info(f"[{self.label}] Scheduler detenido")
        self._scheduler = None

    async def run_scheduled(self) -> None:
        """Corrida programada: los errores se registran, no se propagan al scheduler."""
        await self._run_guarded()

    async def trigger_manual_sync(self, **kwargs: Any) -> Dict[str, Any]:
        """
        Dispara una corrida manual y espera su resultado.

        Returns:
            Dict con success y message
        """
        if self._is_syncing:
            return {"success": False, "message": "Ya hay una sincronizacion en curso"}
        ok, message = await self._run_guarded(**kwargs)
        return {"success": ok, "message": message}

    async def _run_guarded(self, **kwargs: Any) -> Tuple[bool, str]:
        if self._is_syncing:
            logger.warning(f"[{self.label}] Corrida anterior en curso, se omite esta")
            return False, "Ya hay una sincronizacion en curso"

        reason = self._skip_reason()
        if reason is not None:
            logger.info(f"[{self.label}] Corrida omitida: {reason}")
            return False, reason

        self._is_syncing = True
        try:
            message = await self._run_sync(**kwargs)
            self._last_error = None
            return True, message
        except Exception as e:
            self._last_error = str(e)
            logger.exception(f"[{self.label}] Error en la sincronizacion: {e}")
            return False, f"Error en la sincronizacion: {e}"
        finally:
            self._is_syncing = False
            self._last_sync_at = self._clock()

    def _skip_reason(self) -> Optional[str]:
        """Motivo para omitir la corrida, o None para correrla."""
        return None

    async def _run_sync(self, **kwargs: Any) -> str:
        raise NotImplementedError

    def get_status(self) -> Dict[str, Any]:
        next_sync_at = None
        if self.is_running:
            job = self._scheduler.get_job(self.job_id)
            if job.next_run_time is not None:
                next_sync_at = ensure_utc(job.next_run_time)
        return {
            "enabled": self._enabled,
            "running": self.is_running,
            "syncing": self._is_syncing,
            "interval_minutes": self._interval_minutes,
            "last_sync_at": self._last_sync_at,
            "next_sync_at": next_sync_at,
            "last_error": self._last_error,
        }
