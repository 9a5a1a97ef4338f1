"""
Utilidades compartidas (fechas, dinero).
"""
from possync.shared.utils.datetime_utils import utc_now, ensure_utc, ms_to_datetime, datetime_to_ms
from possync.shared.utils.money_utils import cents_to_decimal, quantize_money, sum_money

__all__ = [
    "utc_now",
    "ensure_utc",
    "ms_to_datetime",
    "datetime_to_ms",
    "cents_to_decimal",
    "quantize_money",
    "sum_money",
]
