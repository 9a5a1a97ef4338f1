"""
Entidades de dominio de ventas: ordenes, hijos de orden, costos y agregados diarios.

Todos los montos son Decimal con 2 decimales.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Optional

from possync.shared.utils.money_utils import ZERO


@dataclass
class Order:
    """Orden persistida. Los campos derivados se recalculan desde los hijos."""

    id: Optional[int] = None
    merchant_id: Optional[int] = None
    external_order_id: str = ""
    channel: str = ""
    order_number: Optional[str] = None
    created_time: Optional[datetime] = None
    modified_time: Optional[datetime] = None
    order_date: Optional[date] = None
    order_state: Optional[str] = None
    payment_state: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    employee_id: Optional[str] = None
    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    tip_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    refund_amount: Decimal = ZERO
    total: Decimal = ZERO
    order_cogs: Decimal = ZERO
    order_gross_margin: Decimal = ZERO
    notes: Optional[str] = None


@dataclass
class OrderLineItem:
    """
    Linea de orden. unit_cost_at_sale es un snapshot inmutable tomado
    al insertar la linea por primera vez.
    """

    id: Optional[int] = None
    order_id: Optional[int] = None
    external_line_item_id: str = ""
    external_item_id: Optional[str] = None
    item_name: Optional[str] = None
    sku: Optional[str] = None
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = ZERO
    line_total: Decimal = ZERO
    unit_cost_at_sale: Decimal = ZERO
    line_cogs: Decimal = ZERO
    line_margin: Decimal = ZERO
    discount_amount: Decimal = ZERO
    notes: Optional[str] = None


@dataclass
class Payment:
    id: Optional[int] = None
    order_id: Optional[int] = None
    external_payment_id: str = ""
    amount: Decimal = ZERO
    tip_amount: Decimal = ZERO
    tax_amount: Decimal = ZERO
    cashback_amount: Decimal = ZERO
    payment_method: str = "unknown"
    result: Optional[str] = None
    created_time: Optional[datetime] = None
    card_type: Optional[str] = None
    card_last4: Optional[str] = None
    auth_code: Optional[str] = None


@dataclass
class Discount:
    id: Optional[int] = None
    order_id: Optional[int] = None
    external_discount_id: str = ""
    discount_name: Optional[str] = None
    discount_type: str = "unknown"
    discount_value: Optional[Decimal] = None
    discount_amount: Decimal = ZERO


@dataclass
class Refund:
    id: Optional[int] = None
    order_id: Optional[int] = None
    external_refund_id: str = ""
    refund_amount: Decimal = ZERO
    refund_date: Optional[date] = None
    created_time: Optional[datetime] = None
    original_payment_id: Optional[str] = None


@dataclass
class ItemCostHistory:
    """Observacion de costo (append-only) de un item de un merchant."""

    id: Optional[int] = None
    merchant_id: Optional[int] = None
    external_item_id: str = ""
    unit_cost: Decimal = ZERO
    effective_from: Optional[datetime] = None
    source: Optional[str] = None


@dataclass
class InventoryStock:
    """Nivel de stock actual de un item en una locacion POS."""

    id: Optional[int] = None
    pos_config_id: Optional[int] = None
    external_item_id: str = ""
    item_name: Optional[str] = None
    sku: Optional[str] = None
    quantity: Decimal = ZERO
    unit_cost: Optional[Decimal] = None
    price: Optional[Decimal] = None
    last_synced_at: Optional[datetime] = None


@dataclass
class DailySales:
    """Agregado diario por (merchant, canal, fecha), recalculado desde cero."""

    id: Optional[int] = None
    merchant_id: Optional[int] = None
    channel: str = ""
    sales_date: Optional[date] = None
    order_count: int = 0
    item_count: int = 0
    customer_count: int = 0
    gross_sales: Decimal = ZERO
    discounts: Decimal = ZERO
    net_sales: Decimal = ZERO
    tax_amount: Decimal = ZERO
    tip_amount: Decimal = ZERO
    total_revenue: Decimal = ZERO
    total_cogs: Decimal = ZERO
    gross_margin: Decimal = ZERO
    gross_margin_percent: Decimal = ZERO
    refund_count: int = 0
    refund_amount: Decimal = ZERO
    payments_breakdown: Dict[str, str] = field(default_factory=dict)
    avg_order_value: Decimal = ZERO
    avg_items_per_order: Decimal = ZERO
