"""
Entidades del dominio.
"""
from possync.domain.entities.pos import PosConfig, Location, Merchant
from possync.domain.entities.sales import (
    Order,
    OrderLineItem,
    Payment,
    Discount,
    Refund,
    ItemCostHistory,
    InventoryStock,
    DailySales,
)
from possync.domain.entities.sync import (
    SyncCursor,
    SyncJob,
    SyncCheckpoint,
    SyncOptions,
    SyncResult,
    SyncProgress,
    OrderUpsertResult,
)

__all__ = [
    "PosConfig",
    "Location",
    "Merchant",
    "Order",
    "OrderLineItem",
    "Payment",
    "Discount",
    "Refund",
    "ItemCostHistory",
    "InventoryStock",
    "DailySales",
    "SyncCursor",
    "SyncJob",
    "SyncCheckpoint",
    "SyncOptions",
    "SyncResult",
    "SyncProgress",
    "OrderUpsertResult",
]
