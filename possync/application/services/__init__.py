"""
Servicios de aplicacion.

Contiene la logica de negocio reutilizable que no pertenece
a un caso de uso especifico.
"""
from possync.application.services.merchant_resolver import MerchantResolver
from possync.application.services.pos_sync_service import PosSyncService, calculate_sync_window

__all__ = [
    "MerchantResolver",
    "PosSyncService",
    "calculate_sync_window",
]
