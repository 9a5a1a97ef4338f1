"""
Entidades de dominio del motor de sync: cursores, jobs y checkpoints,
mas los tipos de entrada/salida de una corrida de sincronizacion.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from possync.shared.constants.sync_constants import (
    CheckpointStatus,
    JobStatus,
    OrderOperation,
)
from possync.shared.utils.datetime_utils import ensure_utc


@dataclass
class SyncCursor:
    """
    Progreso persistido por (system, merchant_id, data_type).

    last_modified_ms es la marca de agua: solo avanza, salvo sync completo forzado.
    """

    id: Optional[int] = None
    system: str = ""
    merchant_id: str = ""
    data_type: str = ""
    last_modified_ms: Optional[int] = None
    batch_size: int = 100
    sync_frequency: Optional[int] = None
    error_count: int = 0
    last_error: Optional[str] = None
    last_run_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    is_active: bool = True


@dataclass
class SyncJob:
    """Job de sync historico multi-locacion."""

    id: Optional[int] = None
    type: str = ""
    status: str = JobStatus.PENDING.value
    requested_by: Optional[str] = None
    total_locations: int = 0
    processed_orders: int = 0
    total_orders: int = 0
    job_metadata: Dict[str, Any] = field(default_factory=dict)
    error_log: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def _metadata_datetime(self, key: str) -> Optional[datetime]:
        raw = (self.job_metadata or {}).get(key)
        if not raw:
            return None
        return ensure_utc(datetime.fromisoformat(str(raw)))

    @property
    def start_date(self) -> Optional[datetime]:
        return self._metadata_datetime("start_date")

    @property
    def end_date(self) -> Optional[datetime]:
        return self._metadata_datetime("end_date")

    @property
    def force_full_sync(self) -> bool:
        return bool((self.job_metadata or {}).get("force_full_sync", False))

    @property
    def percent_complete(self) -> int:
        if not self.total_orders:
            return 0
        return round(self.processed_orders / self.total_orders * 100)


@dataclass
class SyncCheckpoint:
    """
    Unidad de trabajo de un job: una locacion.

    merchant_id es el id externo del merchant POS y siempre se conserva;
    location_id puede ser None si no se pudo vincular una Location interna.
    last_synced_at es el punto de reanudacion.
    """

    id: Optional[int] = None
    job_id: Optional[int] = None
    location_id: Optional[int] = None
    merchant_id: str = ""
    merchant_name: Optional[str] = None
    status: str = CheckpointStatus.PENDING.value
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None
    last_error: Optional[str] = None
    processed_orders: int = 0
    total_orders: int = 0
    last_synced_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


ProgressCallback = Callable[["SyncProgress"], Awaitable[None]]


@dataclass
class SyncProgress:
    """Progreso reportado tras cada pagina procesada."""

    orders_processed: int
    orders_in_page: int
    page: int
    resume_point: Optional[datetime] = None


@dataclass
class SyncOptions:
    """
    Opciones de una corrida de sync_merchant.

    start_date explicito tiene prioridad sobre el cursor (backfill).
    """

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    batch_size: Optional[int] = None
    force_full_sync: bool = False
    historical_depth_days: Optional[int] = None
    progress_callback: Optional[ProgressCallback] = None


@dataclass
class SyncResult:
    """Resultado de una corrida. Nunca se lanza por fallos de registros individuales."""

    success: bool = False
    orders_processed: int = 0
    orders_created: int = 0
    orders_updated: int = 0
    line_items_processed: int = 0
    payments_processed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)
    related_errors: List[Dict[str, str]] = field(default_factory=list)
    systemic_failure: bool = False
    stopped: bool = False
    max_modified_ms: Optional[int] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    duration_ms: int = 0

    def add_error(self, key: str, message: str) -> None:
        self.errors.append({"order_id": key, "error": message})

    def error_summary(self) -> Optional[str]:
        """Resumen corto de los errores por orden, o None si no hubo."""
        if not self.errors:
            return None
        head = "; ".join(f"{e['order_id']}: {e['error']}" for e in self.errors[:5])
        extra = len(self.errors) - 5
        if extra > 0:
            head += f" (+{extra} mas)"
        return f"{len(self.errors)} ordenes con error: {head}"


@dataclass
class OrderUpsertResult:
    """Resultado de process_order."""

    op: OrderOperation
    order_id: int
    related_errors: List[Dict[str, str]] = field(default_factory=list)
