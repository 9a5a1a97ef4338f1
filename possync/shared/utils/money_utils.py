"""
Utilidades monetarias.

Los montos del upstream vienen en unidades menores (centavos, enteros).
Se almacenan como Decimal con 2 decimales.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Optional

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def quantize_money(value: Any) -> Decimal:
    """Normaliza cualquier valor numerico a Decimal con 2 decimales."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def cents_to_decimal(cents: Optional[int]) -> Decimal:
    """Convierte unidades menores a Decimal (1999 -> Decimal('19.99'))."""
    if cents is None:
        return ZERO
    return quantize_money(Decimal(cents) / Decimal(100))


def sum_money(values: Iterable[Any]) -> Decimal:
    """Suma montos ignorando None."""
    total = ZERO
    for value in values:
        if value is not None:
            total += quantize_money(value)
    return quantize_money(total)
