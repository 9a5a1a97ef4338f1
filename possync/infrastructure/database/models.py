"""
Modelos de base de datos (ORM).
"""
from sqlalchemy import (
    Column,
    String,
    Integer,
    BigInteger,
    DateTime,
    Date,
    Text,
    JSON,
    Boolean,
    Numeric,
    ForeignKey,
    UniqueConstraint,
    Index,
)
from sqlalchemy.sql import func

from possync.infrastructure.database.session import Base
from possync.shared.constants.sync_constants import JobStatus, CheckpointStatus


def _money():
    return Column(Numeric(12, 2), nullable=False, default=0)


class LocationModel(Base):
    """Locaciones internas del negocio."""

    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Location(id={self.id}, name={self.name})>"


class PosConfigModel(Base):
    """
    Credenciales POS por merchant externo.
    location_id es el vinculo explicito a una locacion interna (opcional).
    """

    __tablename__ = "pos_configs"

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(String(64), nullable=False, unique=True, index=True)
    merchant_name = Column(String(255), nullable=False)
    api_token = Column(Text, nullable=True)
    base_url = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<PosConfig(id={self.id}, merchant_id={self.merchant_id})>"


class MerchantModel(Base):
    """Identidad canonica de merchants por canal."""

    __tablename__ = "merchants"
    __table_args__ = (
        UniqueConstraint("external_id", "channel", name="uq_merchants_external_channel"),
    )

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String(64), nullable=False)
    channel = Column(String(32), nullable=False)
    name = Column(String(255), nullable=False)
    country = Column(String(8), nullable=True)
    timezone = Column(String(64), nullable=True)
    currency = Column(String(8), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    settings = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class OrderModel(Base):
    """
    Ordenes importadas del POS.
    Los campos subtotal/tip/discount/cogs/margin se recalculan desde los hijos.
    """

    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("merchant_id", "external_order_id", "channel", name="uq_orders_natural_key"),
        Index("ix_orders_merchant_date", "merchant_id", "channel", "order_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=False)
    external_order_id = Column(String(64), nullable=False)
    channel = Column(String(32), nullable=False)
    order_number = Column(String(64), nullable=True)
    created_time = Column(DateTime(timezone=True), nullable=False)
    modified_time = Column(DateTime(timezone=True), nullable=False)
    order_date = Column(Date, nullable=False)
    order_state = Column(String(32), nullable=True)
    payment_state = Column(String(32), nullable=True)
    customer_id = Column(String(64), nullable=True)
    customer_name = Column(String(255), nullable=True)
    employee_id = Column(String(64), nullable=True)
    subtotal = _money()
    tax_amount = _money()
    tip_amount = _money()
    discount_amount = _money()
    refund_amount = _money()
    total = _money()
    order_cogs = _money()
    order_gross_margin = _money()
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Order(id={self.id}, external_order_id={self.external_order_id})>"


class OrderLineItemModel(Base):
    """Lineas de orden. unit_cost_at_sale no se modifica tras el insert."""

    __tablename__ = "order_line_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    external_line_item_id = Column(String(64), nullable=False, unique=True)
    external_item_id = Column(String(64), nullable=True)
    item_name = Column(String(255), nullable=True)
    sku = Column(String(128), nullable=True)
    quantity = Column(Numeric(12, 3), nullable=False, default=1)
    unit_price = _money()
    line_total = _money()
    unit_cost_at_sale = _money()
    line_cogs = _money()
    line_margin = _money()
    discount_amount = _money()
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    external_payment_id = Column(String(64), nullable=False, unique=True)
    amount = _money()
    tip_amount = _money()
    tax_amount = _money()
    cashback_amount = _money()
    payment_method = Column(String(64), nullable=False, default="unknown")
    result = Column(String(32), nullable=True)
    created_time = Column(DateTime(timezone=True), nullable=True)
    card_type = Column(String(32), nullable=True)
    card_last4 = Column(String(8), nullable=True)
    auth_code = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DiscountModel(Base):
    __tablename__ = "discounts"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    external_discount_id = Column(String(64), nullable=False, unique=True)
    discount_name = Column(String(255), nullable=True)
    discount_type = Column(String(32), nullable=False, default="unknown")
    discount_value = Column(Numeric(8, 2), nullable=True)  # porcentaje
    discount_amount = _money()
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RefundModel(Base):
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    external_refund_id = Column(String(64), nullable=False, unique=True)
    refund_amount = _money()
    refund_date = Column(Date, nullable=True)
    created_time = Column(DateTime(timezone=True), nullable=True)
    original_payment_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ItemCostHistoryModel(Base):
    """Historial append-only de costos por item."""

    __tablename__ = "item_cost_history"
    __table_args__ = (
        UniqueConstraint("merchant_id", "external_item_id", "effective_from", name="uq_item_cost_observation"),
    )

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=False)
    external_item_id = Column(String(64), nullable=False, index=True)
    unit_cost = _money()
    effective_from = Column(DateTime(timezone=True), nullable=False)
    source = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class InventoryStockModel(Base):
    """Stock actual por locacion POS e item."""

    __tablename__ = "inventory_stock"
    __table_args__ = (
        UniqueConstraint("pos_config_id", "external_item_id", name="uq_inventory_stock_item"),
    )

    id = Column(Integer, primary_key=True, index=True)
    pos_config_id = Column(Integer, ForeignKey("pos_configs.id"), nullable=False)
    external_item_id = Column(String(64), nullable=False)
    item_name = Column(String(255), nullable=True)
    sku = Column(String(128), nullable=True)
    quantity = Column(Numeric(12, 3), nullable=False, default=0)
    unit_cost = Column(Numeric(12, 2), nullable=True)
    price = Column(Numeric(12, 2), nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)


class DailySalesModel(Base):
    """Agregado diario por merchant/canal/fecha."""

    __tablename__ = "daily_sales"
    __table_args__ = (
        UniqueConstraint("merchant_id", "channel", "sales_date", name="uq_daily_sales_day"),
    )

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=False)
    channel = Column(String(32), nullable=False)
    sales_date = Column(Date, nullable=False)
    order_count = Column(Integer, nullable=False, default=0)
    item_count = Column(Integer, nullable=False, default=0)
    customer_count = Column(Integer, nullable=False, default=0)
    gross_sales = _money()
    discounts = _money()
    net_sales = _money()
    tax_amount = _money()
    tip_amount = _money()
    total_revenue = _money()
    total_cogs = _money()
    gross_margin = _money()
    gross_margin_percent = Column(Numeric(7, 2), nullable=False, default=0)
    refund_count = Column(Integer, nullable=False, default=0)
    refund_amount = _money()
    payments_breakdown = Column(JSON, nullable=True)
    avg_order_value = _money()
    avg_items_per_order = Column(Numeric(10, 2), nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class SyncCursorModel(Base):
    """Cursor incremental por (system, merchant, data_type)."""

    __tablename__ = "sync_cursors"
    __table_args__ = (
        UniqueConstraint("system", "merchant_id", "data_type", name="uq_sync_cursor_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    system = Column(String(32), nullable=False)
    merchant_id = Column(String(64), nullable=False)
    data_type = Column(String(32), nullable=False)
    last_modified_ms = Column(BigInteger, nullable=True)
    batch_size = Column(Integer, nullable=False, default=100)
    sync_frequency = Column(Integer, nullable=True)  # minutos
    error_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    last_run_at = Column(DateTime(timezone=True), nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_success_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)


class SyncJobModel(Base):
    """Jobs de sync historico."""

    __tablename__ = "sync_jobs"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String(32), nullable=False)
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value, index=True)
    requested_by = Column(String(255), nullable=True)
    total_locations = Column(Integer, nullable=False, default=0)
    processed_orders = Column(Integer, nullable=False, default=0)
    total_orders = Column(Integer, nullable=False, default=0)
    job_metadata = Column("metadata", JSON, nullable=True)
    error_log = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<SyncJob(id={self.id}, status={self.status})>"


class SyncCheckpointModel(Base):
    """Checkpoints (una locacion por fila) de un job."""

    __tablename__ = "sync_checkpoints"
    __table_args__ = (
        Index("ix_sync_checkpoints_job_status", "job_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("sync_jobs.id"), nullable=False)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True)
    merchant_id = Column(String(64), nullable=False)
    merchant_name = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=CheckpointStatus.PENDING.value)
    retry_count = Column(Integer, nullable=False, default=0)
    next_retry_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    processed_orders = Column(Integer, nullable=False, default=0)
    total_orders = Column(Integer, nullable=False, default=0)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<SyncCheckpoint(id={self.id}, job_id={self.job_id}, status={self.status})>"
