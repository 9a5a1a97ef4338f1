"""
Sincronizacion de niveles de stock desde el POS.

Por cada locacion POS activa: pagina item_stocks (con el item expandido),
hace UPSERT del stock actual y agrega una observacion al historial de
costos cuando el costo del item cambio respecto de la ultima conocida.
Ese historial es el que alimenta el costo al momento de venta de las lineas.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from loguru import logger

from possync.application.services.merchant_resolver import MerchantResolver
from possync.application.services.pos_sync_service import ClientFactory, default_client_factory
from possync.core.config import settings
from possync.domain.entities.pos import PosConfig
from possync.domain.repositories.sync_store import SyncStore
from possync.infrastructure.external.pos_api.types import PosItemStock
from possync.shared.utils.datetime_utils import utc_now
from possync.shared.utils.money_utils import cents_to_decimal

COST_SOURCE_INVENTORY = "inventory_sync"


@dataclass
class InventorySyncSummary:
    locations: int = 0
    succeeded: int = 0
    failed: int = 0
    items_synced: int = 0
    cost_changes: int = 0
    errors: Dict[str, str] = field(default_factory=dict)


class InventorySyncService:
    """Sync de stock por locacion."""

    def __init__(
        self,
        store: SyncStore,
        *,
        client_factory: ClientFactory = default_client_factory,
        resolver: Optional[MerchantResolver] = None,
        batch_size: Optional[int] = None,
    ) -> None:
        self._store = store
        self._client_factory = client_factory
        self._resolver = resolver or MerchantResolver(store)
        self._batch_size = batch_size or settings.SYNC_BATCH_SIZE

    async def sync_all_locations(self) -> InventorySyncSummary:
        """
        Sincroniza todas las locaciones activas.
        Un fallo de una locacion se cuenta y registra, no aborta la pasada.
        """
        summary = InventorySyncSummary()
        for pos_config in await self._store.list_active_pos_configs():
            summary.locations += 1
            if not pos_config.has_credentials:
                summary.failed += 1
                summary.errors[pos_config.merchant_id] = "sin credenciales"
                logger.warning(f"[inventory-sync] {pos_config.merchant_name} sin credenciales, se omite")
                continue
            try:
                items, cost_changes = await self.sync_location(pos_config)
            except Exception as e:
                summary.failed += 1
                summary.errors[pos_config.merchant_id] = str(e)
                logger.error(f"[inventory-sync] Error en {pos_config.merchant_name}: {e}")
                continue
            summary.succeeded += 1
            summary.items_synced += items
            summary.cost_changes += cost_changes
        return summary

    async def sync_location(self, pos_config: PosConfig) -> tuple[int, int]:
        """
        Sincroniza el stock de una locacion.

        Returns:
            tuple: (items sincronizados, observaciones de costo agregadas)
        """
        merchant = await self._resolver.resolve(pos_config)
        items = 0
        cost_changes = 0
        offset = 0

        async with self._client_factory(pos_config) as client:
            while True:
                page: List[PosItemStock] = await client.fetch_item_stocks(limit=self._batch_size, offset=offset)
                for stock in page:
                    if stock.item is None:
                        continue
                    if await self._apply_stock(pos_config, merchant.id, stock):
                        cost_changes += 1
                    items += 1
                if len(page) < self._batch_size:
                    break
                offset += self._batch_size

        logger.info(
            f"[inventory-sync] {pos_config.merchant_name}: {items} items, {cost_changes} cambios de costo"
        )
        return items, cost_changes

    async def _apply_stock(self, pos_config: PosConfig, merchant_id: int, stock: PosItemStock) -> bool:
        item = stock.item
        now = utc_now()
        unit_cost = cents_to_decimal(item.cost) if item.cost is not None else None

        await self._store.upsert_inventory_stock({
            "pos_config_id": pos_config.id,
            "external_item_id": item.id,
            "item_name": item.name,
            "sku": item.sku or item.code,
            "quantity": Decimal(str(stock.level)),
            "unit_cost": unit_cost,
            "price": cents_to_decimal(item.price) if item.price is not None else None,
            "last_synced_at": now,
        })

        if unit_cost is None:
            return False
        latest = await self._store.get_latest_cost(merchant_id, item.id)
        if latest is not None and latest.unit_cost == unit_cost:
            return False

        await self._store.add_cost_observation({
            "merchant_id": merchant_id,
            "external_item_id": item.id,
            "unit_cost": unit_cost,
            "effective_from": now,
            "source": COST_SOURCE_INVENTORY,
        })
        return True
