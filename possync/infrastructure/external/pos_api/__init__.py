"""
Integracion con la API del POS (ordenes, stock, items).
"""
from possync.infrastructure.external.pos_api.client import PosApiClient

__all__ = ["PosApiClient"]
