"""
Entidades de dominio: configuracion POS, locaciones y merchants.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class PosConfig:
    """
    Credenciales de un merchant POS (una por locacion fisica).

    merchant_id es el identificador externo del merchant en el POS.
    location_id es el vinculo explicito (opcional) a una Location interna.
    """

    id: Optional[int] = None
    merchant_id: str = ""
    merchant_name: str = ""
    api_token: Optional[str] = None
    base_url: Optional[str] = None
    is_active: bool = True
    location_id: Optional[int] = None
    last_sync_at: Optional[datetime] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.merchant_id and self.api_token)


@dataclass
class Location:
    """Locacion interna del negocio."""

    id: Optional[int] = None
    name: str = ""
    is_active: bool = True


@dataclass
class Merchant:
    """
    Identidad canonica de un merchant.
    Unica por (external_id, channel); se crea por upsert en la primera referencia.
    """

    id: Optional[int] = None
    external_id: str = ""
    channel: str = ""
    name: str = ""
    country: Optional[str] = None
    timezone: Optional[str] = None
    currency: Optional[str] = None
    is_active: bool = True
    settings: Dict[str, Any] = field(default_factory=dict)
