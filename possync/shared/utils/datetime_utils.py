"""
Utilidades puras de fechas para el motor de sync.

El upstream POS expresa tiempos como epoch en milisegundos; internamente
todo se maneja como datetime aware en UTC.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Retorna la hora actual en UTC, como datetime aware."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normaliza datetime a UTC (aware).

    SQLite devuelve datetimes naive aunque la columna sea timezone=True;
    se asume que todo lo persistido ya estaba en UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def ms_to_datetime(ms: Optional[int]) -> Optional[datetime]:
    """Convierte epoch en milisegundos a datetime UTC."""
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def datetime_to_ms(dt: datetime) -> int:
    """Convierte un datetime a epoch en milisegundos."""
    return int(ensure_utc(dt).timestamp() * 1000)


def utc_date_from_ms(ms: int) -> date:
    """Fecha calendario (UTC) de un timestamp en milisegundos."""
    return ms_to_datetime(ms).date()

