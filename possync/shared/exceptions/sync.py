"""
Excepciones del pipeline de sincronizacion POS -> base de datos.

Taxonomia:
- SyncConfigError: credenciales/configuracion del merchant faltantes.
  Aborta solo la corrida de ese merchant.
- PosApiError: API upstream inalcanzable o respuesta no recuperable.
- OrderPersistenceError: la orden no pudo persistirse o verificarse.
"""
from typing import Optional

from possync.shared.exceptions.base import AppException


class SyncConfigError(AppException):
    """Error de configuración del pipeline."""

    def __init__(self, message: str, pos_config_id: Optional[int] = None):
        super().__init__(
            message=message,
            status_code=422,
            error_code="SYNC_CONFIG_ERROR",
            details={"pos_config_id": pos_config_id} if pos_config_id is not None else None
        )


class PosApiError(AppException):
    """Error de integración con la API POS."""

    def __init__(self, message: str, http_status: Optional[int] = None):
        super().__init__(
            message=message,
            status_code=502,
            error_code="POS_API_ERROR",
            details={"http_status": http_status} if http_status is not None else None
        )
        self.http_status = http_status


class OrderPersistenceError(AppException):
    """La orden no quedo persistida (upsert fallido o verificacion fallida)."""

    def __init__(self, external_order_id: str, reason: str):
        super().__init__(
            message=f"Persistencia de la orden {external_order_id} fallida: {reason}",
            error_code="ORDER_PERSISTENCE_ERROR",
            details={"external_order_id": external_order_id}
        )
