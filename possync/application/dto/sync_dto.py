"""
DTOs del motor de sincronizacion POS.
Definen la estructura de datos de jobs historicos, schedulers y cursores.
"""
from typing import Optional, Dict, List, Any
from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, Field, model_validator

from possync.shared.constants.sync_constants import JobStatus, CheckpointStatus


class HistoricalSyncRequestDTO(BaseModel):
    """DTO para iniciar un sync historico de todas las locaciones activas."""

    start_date: Optional[datetime] = Field(
        None,
        description="Inicio de la ventana (si falta se usa la profundidad historica configurada)"
    )
    end_date: Optional[datetime] = Field(
        None,
        description="Fin de la ventana (si falta se fija al momento de crear el job)"
    )
    force_full_sync: bool = Field(False, description="Ignora la marca de agua del cursor")
    batch_size: Optional[int] = Field(None, ge=1, le=1000, description="Ordenes por pagina")
    requested_by: Optional[str] = Field(None, max_length=255, description="Usuario que solicita el job")

    @model_validator(mode="after")
    def _check_window(self):
        if self.start_date and self.end_date and self.start_date >= self.end_date:
            raise ValueError("start_date debe ser anterior a end_date")
        return self


class HistoricalSyncResponseDTO(BaseModel):
    """Respuesta inmediata al crear un job (para polling)."""

    job_id: int = Field(..., description="ID del job creado")
    status: JobStatus = Field(..., description="Estado inicial del job")
    total_locations: int = Field(..., description="Checkpoints creados (uno por locacion)")
    message: str = Field(..., description="Mensaje descriptivo")


class JobProgressDTO(BaseModel):
    total_locations: int
    total_orders: int
    processed_orders: int
    percent_complete: int


class CheckpointStatusDTO(BaseModel):
    """Estado de una locacion dentro de un job."""

    id: int
    location_id: Optional[int] = None
    location_name: Optional[str] = None
    merchant_id: str
    status: CheckpointStatus
    processed_orders: int = 0
    total_orders: int = 0
    last_synced_at: Optional[datetime] = None
    last_error: Optional[str] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None


class JobSummaryDTO(BaseModel):
    """Resumen de un job (listado)."""

    id: int
    type: str
    status: JobStatus
    requested_by: Optional[str] = None
    total_locations: int = 0
    processed_orders: int = 0
    total_orders: int = 0
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        """Configuración de Pydantic."""
        from_attributes = True


class JobStatusDTO(BaseModel):
    """Estado completo de un job para polling."""

    id: int
    type: str
    status: JobStatus
    requested_by: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    error_log: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    progress: JobProgressDTO
    checkpoints: List[CheckpointStatusDTO] = Field(default_factory=list)


class SyncResultDTO(BaseModel):
    """Resultado de una corrida de sync de un merchant."""

    success: bool
    orders_processed: int = 0
    orders_created: int = 0
    orders_updated: int = 0
    line_items_processed: int = 0
    payments_processed: int = 0
    errors: List[Dict[str, str]] = Field(default_factory=list)
    related_errors: List[Dict[str, str]] = Field(default_factory=list)
    systemic_failure: bool = False
    stopped: bool = False
    max_modified_ms: Optional[int] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    duration_ms: int = 0

    class Config:
        """Configuración de Pydantic."""
        from_attributes = True


class ManualSyncResponseDTO(BaseModel):
    success: bool
    message: str


class SchedulerStatusDTO(BaseModel):
    """Estado de un scheduler periodico (inventario u ordenes)."""

    enabled: bool
    running: bool
    syncing: bool
    interval_minutes: int
    last_sync_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    last_error: Optional[str] = None


class OrderSchedulerStatusDTO(SchedulerStatusDTO):
    """Estado del scheduler de ordenes, con la ventana de horario comercial."""

    business_hours_active: bool = True
    full_sync_hour: int
    last_full_sync_date: Optional[date] = None


class SyncCursorDTO(BaseModel):
    """Cursor de sync de un merchant."""

    system: str
    merchant_id: str
    data_type: str
    last_modified_ms: Optional[int] = None
    batch_size: int
    error_count: int = 0
    last_error: Optional[str] = None
    last_run_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    is_active: bool = True

    class Config:
        """Configuración de Pydantic."""
        from_attributes = True


class MerchantSyncStatusDTO(BaseModel):
    pos_config_id: int
    merchant_id: str
    merchant_name: str
    last_sync_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    error_count: int = 0
    last_error: Optional[str] = None
    last_modified_ms: Optional[int] = None
    is_running: bool = False


class DailySalesDTO(BaseModel):
    """Agregado diario de ventas de un merchant."""

    merchant_id: int
    channel: str
    sales_date: date
    order_count: int = 0
    item_count: int = 0
    customer_count: int = 0
    gross_sales: Decimal
    discounts: Decimal
    net_sales: Decimal
    tax_amount: Decimal
    tip_amount: Decimal
    total_revenue: Decimal
    total_cogs: Decimal
    gross_margin: Decimal
    gross_margin_percent: Decimal
    refund_count: int = 0
    refund_amount: Decimal
    payments_breakdown: Dict[str, str] = Field(default_factory=dict)
    avg_order_value: Decimal
    avg_items_per_order: Decimal

    class Config:
        """Configuración de Pydantic."""
        from_attributes = True
