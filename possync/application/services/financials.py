"""
Calculos financieros puros (sin I/O) de ordenes y ventas diarias.

Se mantienen libres de I/O para poder testearlos facilmente.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional

from possync.domain.entities.sales import Discount, Order, OrderLineItem, Payment, Refund
from possync.shared.utils.money_utils import ZERO, cents_to_decimal, quantize_money, sum_money

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LineAmounts:
    unit_price: Decimal
    line_total: Decimal
    line_cogs: Decimal
    line_margin: Decimal


def compute_line_amounts(price_cents: int, quantity: Decimal, unit_cost: Decimal) -> LineAmounts:
    """
    Montos de una linea a partir del precio unitario (centavos), la cantidad
    y el costo unitario snapshot.
    """
    unit_price = cents_to_decimal(price_cents)
    line_total = quantize_money(unit_price * quantity)
    line_cogs = quantize_money(quantize_money(unit_cost) * quantity)
    return LineAmounts(
        unit_price=unit_price,
        line_total=line_total,
        line_cogs=line_cogs,
        line_margin=quantize_money(line_total - line_cogs),
    )


def resolve_discount_amount(
    amount_cents: Optional[int],
    percentage: Optional[int],
    line_subtotal: Decimal,
) -> Decimal:
    """
    Monto absoluto de un descuento.

    El upstream reporta descuentos de monto fijo como negativos. Un descuento
    porcentual sin monto se resuelve contra el subtotal de lineas de la orden.
    """
    if amount_cents is not None:
        return abs(cents_to_decimal(amount_cents))
    if percentage is not None:
        return quantize_money(abs(line_subtotal * Decimal(percentage) / HUNDRED))
    return ZERO


def compute_order_financials(
    line_items: Iterable[OrderLineItem],
    payments: Iterable[Payment],
    discounts: Iterable[Discount],
    refunds: Iterable[Refund],
) -> Dict[str, Decimal]:
    """
    Recalcula los campos derivados de una orden desde sus hijos actuales.

    Returns:
        Dict con subtotal, tip_amount, discount_amount, refund_amount,
        order_cogs y order_gross_margin.
    """
    line_items = list(line_items)
    subtotal = sum_money(li.line_total for li in line_items)
    cogs = sum_money(li.line_cogs for li in line_items)
    tips = sum_money(p.tip_amount for p in payments)
    discount_total = sum_money(d.discount_amount for d in discounts)
    refund_total = sum_money(r.refund_amount for r in refunds)

    return {
        "subtotal": subtotal,
        "tip_amount": tips,
        "discount_amount": discount_total,
        "refund_amount": refund_total,
        "order_cogs": cogs,
        "order_gross_margin": quantize_money(subtotal - discount_total - cogs),
    }


def compute_daily_sales(
    orders: List[Order],
    line_items_by_order: Mapping[int, List[OrderLineItem]],
    payments_by_order: Mapping[int, List[Payment]],
    refunds_by_order: Mapping[int, List[Refund]],
) -> Dict[str, object]:
    """
    Metricas del dia a partir de las ordenes de esa fecha y sus hijos.

    net = gross - discounts
    total_revenue = net + tax + tips
    gross_margin = net - cogs
    """
    order_count = len(orders)
    item_count = 0
    customers = set()
    refund_count = 0
    breakdown: Dict[str, Decimal] = {}

    for order in orders:
        if order.customer_id:
            customers.add(order.customer_id)
        item_count += len(line_items_by_order.get(order.id, []))
        for payment in payments_by_order.get(order.id, []):
            method = payment.payment_method or "unknown"
            breakdown[method] = breakdown.get(method, ZERO) + quantize_money(payment.amount)
        refund_count += len(refunds_by_order.get(order.id, []))

    gross = sum_money(o.subtotal for o in orders)
    discounts = sum_money(o.discount_amount for o in orders)
    tax = sum_money(o.tax_amount for o in orders)
    tips = sum_money(o.tip_amount for o in orders)
    cogs = sum_money(o.order_cogs for o in orders)
    refund_amount = sum_money(
        r.refund_amount for o in orders for r in refunds_by_order.get(o.id, [])
    )

    net = quantize_money(gross - discounts)
    total_revenue = quantize_money(net + tax + tips)
    margin = quantize_money(net - cogs)
    margin_pct = quantize_money(margin / net * HUNDRED) if net > 0 else ZERO

    return {
        "order_count": order_count,
        "item_count": item_count,
        "customer_count": len(customers),
        "gross_sales": gross,
        "discounts": discounts,
        "net_sales": net,
        "tax_amount": tax,
        "tip_amount": tips,
        "total_revenue": total_revenue,
        "total_cogs": cogs,
        "gross_margin": margin,
        "gross_margin_percent": margin_pct,
        "refund_count": refund_count,
        "refund_amount": refund_amount,
        "payments_breakdown": {k: str(quantize_money(v)) for k, v in sorted(breakdown.items())},
        "avg_order_value": quantize_money(total_revenue / order_count) if order_count else ZERO,
        "avg_items_per_order": quantize_money(Decimal(item_count) / order_count) if order_count else ZERO,
    }
