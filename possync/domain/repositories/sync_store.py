"""
Interfaz del almacenamiento del motor de sync.
Define el contrato que debe cumplir cualquier implementación.

El motor, el orquestador y los schedulers solo dependen de esta interfaz;
la implementación SQLAlchemy vive en infraestructura.
"""
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from possync.domain.entities.pos import Location, Merchant, PosConfig
from possync.domain.entities.sales import (
    DailySales,
    Discount,
    InventoryStock,
    ItemCostHistory,
    Order,
    OrderLineItem,
    Payment,
    Refund,
)
from possync.domain.entities.sync import SyncCheckpoint, SyncCursor, SyncJob
from possync.shared.constants.sync_constants import OrderOperation


class SyncStore(ABC):
    """
    Interfaz del almacenamiento tipado.

    Los upserts reciben un dict de columnas y resuelven conflictos por la
    clave natural de cada entidad.
    """

    # ------------------------------------------------------------------
    # Configuracion POS y locaciones
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_pos_config(self, pos_config_id: int) -> Optional[PosConfig]:
        """
        Obtiene una configuracion POS por su ID interno.

        Args:
            pos_config_id: ID de la configuracion

        Returns:
            Optional[PosConfig]: Configuracion encontrada o None
        """
        pass

    @abstractmethod
    async def get_pos_config_by_merchant(self, external_merchant_id: str) -> Optional[PosConfig]:
        """Obtiene la configuracion POS de un merchant externo."""
        pass

    @abstractmethod
    async def list_active_pos_configs(self) -> List[PosConfig]:
        pass

    @abstractmethod
    async def update_pos_config_last_sync(self, pos_config_id: int, synced_at: datetime) -> None:
        pass

    @abstractmethod
    async def list_active_locations(self) -> List[Location]:
        pass

    @abstractmethod
    async def get_location(self, location_id: int) -> Optional[Location]:
        pass

    # ------------------------------------------------------------------
    # Merchants
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_merchant_by_external_id(self, external_id: str, channel: str) -> Optional[Merchant]:
        pass

    @abstractmethod
    async def upsert_merchant(self, values: Dict[str, Any]) -> Merchant:
        """
        Crea el merchant o retorna el existente por (external_id, channel).

        Args:
            values: Columnas del merchant

        Returns:
            Merchant: Merchant canonico (nunca duplicado)
        """
        pass

    # ------------------------------------------------------------------
    # Ordenes e hijos
    # ------------------------------------------------------------------

    @abstractmethod
    async def upsert_order(self, values: Dict[str, Any]) -> Tuple[OrderOperation, int]:
        """
        Upsert atomico de una orden por (merchant_id, external_order_id, channel).

        Returns:
            Tuple[OrderOperation, int]: Operacion realizada e ID de la orden
        """
        pass

    @abstractmethod
    async def get_order_by_external_id(
        self, merchant_id: int, external_order_id: str, channel: str
    ) -> Optional[Order]:
        pass

    @abstractmethod
    async def update_order_financials(self, order_id: int, values: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def list_orders_by_date(self, merchant_id: int, channel: str, order_date: date) -> List[Order]:
        pass

    @abstractmethod
    async def list_order_dates(
        self, merchant_id: int, channel: str, start_date: date, end_date: date
    ) -> List[date]:
        """Fechas distintas (order_date) con al menos una orden en el rango inclusive."""
        pass

    @abstractmethod
    async def get_line_item_by_external_id(self, external_line_item_id: str) -> Optional[OrderLineItem]:
        pass

    @abstractmethod
    async def upsert_line_item(self, values: Dict[str, Any]) -> Tuple[OrderOperation, int]:
        """
        Upsert por external_line_item_id.
        En una actualizacion nunca se sobreescribe unit_cost_at_sale.
        """
        pass

    @abstractmethod
    async def upsert_payment(self, values: Dict[str, Any]) -> Tuple[OrderOperation, int]:
        pass

    @abstractmethod
    async def upsert_discount(self, values: Dict[str, Any]) -> Tuple[OrderOperation, int]:
        pass

    @abstractmethod
    async def upsert_refund(self, values: Dict[str, Any]) -> Tuple[OrderOperation, int]:
        pass

    @abstractmethod
    async def list_line_items(self, order_id: int) -> List[OrderLineItem]:
        pass

    @abstractmethod
    async def list_payments(self, order_id: int) -> List[Payment]:
        pass

    @abstractmethod
    async def list_discounts(self, order_id: int) -> List[Discount]:
        pass

    @abstractmethod
    async def list_refunds(self, order_id: int) -> List[Refund]:
        pass

    # ------------------------------------------------------------------
    # Costos, inventario y agregados diarios
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_cost_at(self, merchant_id: int, external_item_id: str, at: datetime) -> Optional[Decimal]:
        """
        Costo vigente de un item en un instante: la observacion mas reciente
        con effective_from <= at.
        """
        pass

    @abstractmethod
    async def get_latest_cost(self, merchant_id: int, external_item_id: str) -> Optional[ItemCostHistory]:
        pass

    @abstractmethod
    async def add_cost_observation(self, values: Dict[str, Any]) -> ItemCostHistory:
        pass

    @abstractmethod
    async def upsert_inventory_stock(self, values: Dict[str, Any]) -> InventoryStock:
        pass

    @abstractmethod
    async def upsert_daily_sales(self, values: Dict[str, Any]) -> DailySales:
        pass

    @abstractmethod
    async def get_daily_sales(self, merchant_id: int, channel: str, sales_date: date) -> Optional[DailySales]:
        pass

    # ------------------------------------------------------------------
    # Cursores
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_cursor(self, system: str, merchant_id: str, data_type: str) -> Optional[SyncCursor]:
        pass

    @abstractmethod
    async def get_or_create_cursor(
        self, system: str, merchant_id: str, data_type: str, batch_size: int
    ) -> SyncCursor:
        pass

    @abstractmethod
    async def update_cursor(self, cursor_id: int, values: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def advance_cursor_watermark(self, cursor_id: int, candidate_ms: int) -> bool:
        """
        Sube last_modified_ms a candidate_ms solo si el valor guardado es menor
        o nulo, en un unico UPDATE condicional. Retorna True si avanzo.
        """
        pass

    @abstractmethod
    async def record_cursor_error(self, cursor_id: int, error: str) -> None:
        """Incrementa error_count de forma atomica y guarda last_error."""
        pass

    # ------------------------------------------------------------------
    # Jobs y checkpoints
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_job(self, values: Dict[str, Any]) -> SyncJob:
        pass

    @abstractmethod
    async def get_job(self, job_id: int) -> Optional[SyncJob]:
        pass

    @abstractmethod
    async def list_jobs(self, limit: int = 20) -> List[SyncJob]:
        pass

    @abstractmethod
    async def get_oldest_open_job(self) -> Optional[SyncJob]:
        """Job mas antiguo en estado pending o active."""
        pass

    @abstractmethod
    async def update_job(self, job_id: int, values: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def increment_job_totals(self, job_id: int, processed_orders: int, total_orders: int) -> None:
        """Suma contadores del job en una sola sentencia (sin leer-modificar-escribir)."""
        pass

    @abstractmethod
    async def create_checkpoint(self, values: Dict[str, Any]) -> SyncCheckpoint:
        pass

    @abstractmethod
    async def get_checkpoint(self, checkpoint_id: int) -> Optional[SyncCheckpoint]:
        pass

    @abstractmethod
    async def list_checkpoints(self, job_id: int) -> List[SyncCheckpoint]:
        pass

    @abstractmethod
    async def claim_checkpoint(self, job_id: int, now: datetime) -> Optional[SyncCheckpoint]:
        """
        Reclama de forma atomica un checkpoint elegible del job.

        Elegible: status pending, o retry con next_retry_at <= now.
        El reclamo es un UPDATE condicional sobre el status leido, asi que
        dos workers no pueden reclamar el mismo checkpoint.

        Returns:
            Optional[SyncCheckpoint]: Checkpoint ya en estado active, o None
        """
        pass

    @abstractmethod
    async def update_checkpoint(self, checkpoint_id: int, values: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def count_open_checkpoints(self, job_id: int) -> int:
        """Checkpoints del job en pending, retry o active."""
        pass

    @abstractmethod
    async def cancel_open_checkpoints(self, job_id: int) -> int:
        """Pasa a cancelled los checkpoints pending/retry del job."""
        pass

    @abstractmethod
    async def reset_active_jobs(self) -> int:
        pass

    @abstractmethod
    async def reset_active_checkpoints(self) -> int:
        pass
