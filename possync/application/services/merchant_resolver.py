"""
Resolucion de la identidad canonica de un merchant a partir de su configuracion POS.
"""
from loguru import logger

from possync.domain.entities.pos import Merchant, PosConfig
from possync.domain.repositories.sync_store import SyncStore
from possync.shared.constants.sync_constants import (
    DEFAULT_MERCHANT_COUNTRY,
    DEFAULT_MERCHANT_CURRENCY,
    DEFAULT_MERCHANT_TIMEZONE,
    POS_CHANNEL,
)


class MerchantResolver:
    """
    Mapea (merchant externo, canal) -> Merchant canonico.

    Idempotente: llamadas repetidas o concurrentes para el mismo merchant
    retornan siempre el mismo registro (la colision la resuelve el upsert).
    """

    def __init__(self, store: SyncStore, channel: str = POS_CHANNEL) -> None:
        self._store = store
        self._channel = channel

    async def resolve(self, pos_config: PosConfig) -> Merchant:
        existing = await self._store.get_merchant_by_external_id(pos_config.merchant_id, self._channel)
        if existing is not None:
            return existing

        merchant = await self._store.upsert_merchant(
            {
                "external_id": pos_config.merchant_id,
                "channel": self._channel,
                "name": pos_config.merchant_name or pos_config.merchant_id,
                "country": DEFAULT_MERCHANT_COUNTRY,
                "timezone": DEFAULT_MERCHANT_TIMEZONE,
                "currency": DEFAULT_MERCHANT_CURRENCY,
                "is_active": True,
                "settings": {"pos_config_id": pos_config.id},
            }
        )
        logger.info(
            f"[merchant] Merchant canonico {merchant.id} resuelto para {pos_config.merchant_name} "
            f"({pos_config.merchant_id})"
        )
        return merchant
