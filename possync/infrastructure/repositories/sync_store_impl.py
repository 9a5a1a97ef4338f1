"""
Implementación SQLAlchemy (async) del almacenamiento del motor de sync.

- Cada método abre su propia sesión y hace commit: el motor no comparte
  transacciones entre órdenes, así un fallo no arrastra al resto.
- UPSERT por clave natural con INSERT ... ON CONFLICT DO UPDATE
  (dialecto PostgreSQL en producción, SQLite en tests).
- En PostgreSQL la operación se detecta con RETURNING (xmax = 0);
  en SQLite se consulta la existencia antes del upsert.
"""
from __future__ import annotations

from dataclasses import MISSING, fields
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from sqlalchemy import and_, func, literal_column, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from possync.domain.entities.pos import Location, Merchant, PosConfig
from possync.domain.entities.sales import (
    DailySales,
    Discount,
    InventoryStock,
    ItemCostHistory,
    Order,
    OrderLineItem,
    Payment,
    Refund,
)
from possync.domain.entities.sync import SyncCheckpoint, SyncCursor, SyncJob
from possync.domain.repositories.sync_store import SyncStore
from possync.infrastructure.database.models import (
    DailySalesModel,
    DiscountModel,
    InventoryStockModel,
    ItemCostHistoryModel,
    LocationModel,
    MerchantModel,
    OrderLineItemModel,
    OrderModel,
    PaymentModel,
    PosConfigModel,
    RefundModel,
    SyncCheckpointModel,
    SyncCursorModel,
    SyncJobModel,
)
from possync.shared.constants.sync_constants import (
    CLAIMABLE_CHECKPOINT_STATUSES,
    CheckpointStatus,
    JobStatus,
    OPEN_JOB_STATUSES,
    OrderOperation,
)
from possync.shared.utils.datetime_utils import ensure_utc

E = TypeVar("E")

_OPEN_CHECKPOINT_STATUSES = (
    CheckpointStatus.PENDING.value,
    CheckpointStatus.RETRY.value,
    CheckpointStatus.ACTIVE.value,
)


def _to_entity(entity_cls: Type[E], row: Any) -> E:
    """
    Copia las columnas del modelo ORM a la entidad de dominio.
    Los datetimes se normalizan a UTC aware (SQLite los devuelve naive).
    """
    values: Dict[str, Any] = {}
    for f in fields(entity_cls):
        if not hasattr(row, f.name):
            continue
        value = getattr(row, f.name)
        if value is None and f.default_factory is not MISSING:
            continue
        if isinstance(value, datetime):
            value = ensure_utc(value)
        values[f.name] = value
    return entity_cls(**values)


class SqlAlchemySyncStore(SyncStore):
    """Repositorio del motor de sync sobre SQLAlchemy async."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _insert_for(session: AsyncSession):
        dialect = session.get_bind().dialect.name
        return (pg_insert if dialect == "postgresql" else sqlite_insert), dialect

    async def _upsert(
        self,
        session: AsyncSession,
        model: Any,
        values: Dict[str, Any],
        conflict_cols: Sequence[str],
        immutable_cols: Sequence[str] = (),
    ) -> Tuple[OrderOperation, int]:
        """
        INSERT ... ON CONFLICT (conflict_cols) DO UPDATE.

        Las columnas en immutable_cols solo se escriben en el insert.
        """
        insert_fn, dialect = self._insert_for(session)
        stmt = insert_fn(model).values(**values)
        set_ = {
            key: stmt.excluded[key]
            for key in values
            if key not in conflict_cols and key not in immutable_cols
        }
        if "updated_at" in model.__table__.columns:
            set_["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(index_elements=list(conflict_cols), set_=set_)

        if dialect == "postgresql":
            stmt = stmt.returning(model.id, literal_column("(xmax = 0)").label("is_insert"))
            row = (await session.execute(stmt)).one()
            op = OrderOperation.CREATED if row.is_insert else OrderOperation.UPDATED
            return op, row.id

        existing = await session.execute(
            select(model.id).where(*[getattr(model, c) == values[c] for c in conflict_cols])
        )
        existed = existing.scalar_one_or_none() is not None
        row_id = (await session.execute(stmt.returning(model.id))).scalar_one()
        return (OrderOperation.UPDATED if existed else OrderOperation.CREATED), row_id

    async def _upsert_one(
        self,
        model: Any,
        values: Dict[str, Any],
        conflict_cols: Sequence[str],
        immutable_cols: Sequence[str] = (),
    ) -> Tuple[OrderOperation, int]:
        async with self._session_factory() as session:
            result = await self._upsert(session, model, values, conflict_cols, immutable_cols)
            await session.commit()
            return result

    async def _get(self, model: Any, entity_cls: Type[E], *criteria) -> Optional[E]:
        async with self._session_factory() as session:
            result = await session.execute(select(model).where(*criteria))
            row = result.scalars().first()
            return _to_entity(entity_cls, row) if row else None

    async def _list(self, model: Any, entity_cls: Type[E], *criteria, order_by=None, limit=None) -> List[E]:
        async with self._session_factory() as session:
            stmt = select(model).where(*criteria)
            if order_by is not None:
                stmt = stmt.order_by(*order_by) if isinstance(order_by, (list, tuple)) else stmt.order_by(order_by)
            if limit is not None:
                stmt = stmt.limit(limit)
            result = await session.execute(stmt)
            return [_to_entity(entity_cls, row) for row in result.scalars().all()]

    async def _update(self, model: Any, criteria: Sequence[Any], values: Dict[str, Any]) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                update(model)
                .where(*criteria)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount or 0

    async def _add(self, model_cls: Any, entity_cls: Type[E], values: Dict[str, Any]) -> E:
        async with self._session_factory() as session:
            row = model_cls(**values)
            session.add(row)
            await session.flush()
            await session.refresh(row)
            entity = _to_entity(entity_cls, row)
            await session.commit()
            return entity

    # ------------------------------------------------------------------
    # Configuracion POS y locaciones
    # ------------------------------------------------------------------

    async def get_pos_config(self, pos_config_id: int) -> Optional[PosConfig]:
        return await self._get(PosConfigModel, PosConfig, PosConfigModel.id == pos_config_id)

    async def get_pos_config_by_merchant(self, external_merchant_id: str) -> Optional[PosConfig]:
        return await self._get(PosConfigModel, PosConfig, PosConfigModel.merchant_id == external_merchant_id)

    async def list_active_pos_configs(self) -> List[PosConfig]:
        return await self._list(
            PosConfigModel, PosConfig, PosConfigModel.is_active.is_(True), order_by=PosConfigModel.id
        )

    async def update_pos_config_last_sync(self, pos_config_id: int, synced_at: datetime) -> None:
        await self._update(PosConfigModel, [PosConfigModel.id == pos_config_id], {"last_sync_at": synced_at})

    async def list_active_locations(self) -> List[Location]:
        return await self._list(
            LocationModel, Location, LocationModel.is_active.is_(True), order_by=LocationModel.id
        )

    async def get_location(self, location_id: int) -> Optional[Location]:
        return await self._get(LocationModel, Location, LocationModel.id == location_id)

    # ------------------------------------------------------------------
    # Merchants
    # ------------------------------------------------------------------

    async def get_merchant_by_external_id(self, external_id: str, channel: str) -> Optional[Merchant]:
        return await self._get(
            MerchantModel,
            Merchant,
            MerchantModel.external_id == external_id,
            MerchantModel.channel == channel,
        )

    async def upsert_merchant(self, values: Dict[str, Any]) -> Merchant:
        # En colision solo se refresca el nombre; el resto conserva lo existente
        immutable = [k for k in values if k not in ("external_id", "channel", "name")]
        _, merchant_id = await self._upsert_one(
            MerchantModel, values, ("external_id", "channel"), immutable_cols=immutable
        )
        return await self._get(MerchantModel, Merchant, MerchantModel.id == merchant_id)

    # ------------------------------------------------------------------
    # Ordenes e hijos
    # ------------------------------------------------------------------

    async def upsert_order(self, values: Dict[str, Any]) -> Tuple[OrderOperation, int]:
        return await self._upsert_one(OrderModel, values, ("merchant_id", "external_order_id", "channel"))

    async def get_order_by_external_id(
        self, merchant_id: int, external_order_id: str, channel: str
    ) -> Optional[Order]:
        return await self._get(
            OrderModel,
            Order,
            OrderModel.merchant_id == merchant_id,
            OrderModel.external_order_id == external_order_id,
            OrderModel.channel == channel,
        )

    async def update_order_financials(self, order_id: int, values: Dict[str, Any]) -> None:
        await self._update(OrderModel, [OrderModel.id == order_id], values)

    async def list_orders_by_date(self, merchant_id: int, channel: str, order_date: date) -> List[Order]:
        return await self._list(
            OrderModel,
            Order,
            OrderModel.merchant_id == merchant_id,
            OrderModel.channel == channel,
            OrderModel.order_date == order_date,
            order_by=OrderModel.id,
        )

    async def list_order_dates(
        self, merchant_id: int, channel: str, start_date: date, end_date: date
    ) -> List[date]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(OrderModel.order_date)
                .where(
                    OrderModel.merchant_id == merchant_id,
                    OrderModel.channel == channel,
                    OrderModel.order_date >= start_date,
                    OrderModel.order_date <= end_date,
                )
                .distinct()
                .order_by(OrderModel.order_date)
            )
            return list(result.scalars().all())

    async def get_line_item_by_external_id(self, external_line_item_id: str) -> Optional[OrderLineItem]:
        return await self._get(
            OrderLineItemModel,
            OrderLineItem,
            OrderLineItemModel.external_line_item_id == external_line_item_id,
        )

    async def upsert_line_item(self, values: Dict[str, Any]) -> Tuple[OrderOperation, int]:
        return await self._upsert_one(
            OrderLineItemModel,
            values,
            ("external_line_item_id",),
            immutable_cols=("unit_cost_at_sale",),
        )

    async def upsert_payment(self, values: Dict[str, Any]) -> Tuple[OrderOperation, int]:
        return await self._upsert_one(PaymentModel, values, ("external_payment_id",))

    async def upsert_discount(self, values: Dict[str, Any]) -> Tuple[OrderOperation, int]:
        return await self._upsert_one(DiscountModel, values, ("external_discount_id",))

    async def upsert_refund(self, values: Dict[str, Any]) -> Tuple[OrderOperation, int]:
        return await self._upsert_one(RefundModel, values, ("external_refund_id",))

    async def list_line_items(self, order_id: int) -> List[OrderLineItem]:
        return await self._list(
            OrderLineItemModel, OrderLineItem, OrderLineItemModel.order_id == order_id,
            order_by=OrderLineItemModel.id,
        )

    async def list_payments(self, order_id: int) -> List[Payment]:
        return await self._list(PaymentModel, Payment, PaymentModel.order_id == order_id, order_by=PaymentModel.id)

    async def list_discounts(self, order_id: int) -> List[Discount]:
        return await self._list(
            DiscountModel, Discount, DiscountModel.order_id == order_id, order_by=DiscountModel.id
        )

    async def list_refunds(self, order_id: int) -> List[Refund]:
        return await self._list(RefundModel, Refund, RefundModel.order_id == order_id, order_by=RefundModel.id)

    # ------------------------------------------------------------------
    # Costos, inventario y agregados diarios
    # ------------------------------------------------------------------

    async def get_cost_at(self, merchant_id: int, external_item_id: str, at: datetime) -> Optional[Decimal]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ItemCostHistoryModel.unit_cost)
                .where(
                    ItemCostHistoryModel.merchant_id == merchant_id,
                    ItemCostHistoryModel.external_item_id == external_item_id,
                    ItemCostHistoryModel.effective_from <= at,
                )
                .order_by(ItemCostHistoryModel.effective_from.desc())
                .limit(1)
            )
            return result.scalars().first()

    async def get_latest_cost(self, merchant_id: int, external_item_id: str) -> Optional[ItemCostHistory]:
        rows = await self._list(
            ItemCostHistoryModel,
            ItemCostHistory,
            ItemCostHistoryModel.merchant_id == merchant_id,
            ItemCostHistoryModel.external_item_id == external_item_id,
            order_by=ItemCostHistoryModel.effective_from.desc(),
            limit=1,
        )
        return rows[0] if rows else None

    async def add_cost_observation(self, values: Dict[str, Any]) -> ItemCostHistory:
        async with self._session_factory() as session:
            insert_fn, _ = self._insert_for(session)
            stmt = insert_fn(ItemCostHistoryModel).values(**values).on_conflict_do_nothing(
                index_elements=["merchant_id", "external_item_id", "effective_from"]
            )
            await session.execute(stmt)
            await session.commit()
        return await self._get(
            ItemCostHistoryModel,
            ItemCostHistory,
            ItemCostHistoryModel.merchant_id == values["merchant_id"],
            ItemCostHistoryModel.external_item_id == values["external_item_id"],
            ItemCostHistoryModel.effective_from == values["effective_from"],
        )

    async def upsert_inventory_stock(self, values: Dict[str, Any]) -> InventoryStock:
        _, stock_id = await self._upsert_one(InventoryStockModel, values, ("pos_config_id", "external_item_id"))
        return await self._get(InventoryStockModel, InventoryStock, InventoryStockModel.id == stock_id)

    async def upsert_daily_sales(self, values: Dict[str, Any]) -> DailySales:
        _, row_id = await self._upsert_one(DailySalesModel, values, ("merchant_id", "channel", "sales_date"))
        return await self._get(DailySalesModel, DailySales, DailySalesModel.id == row_id)

    async def get_daily_sales(self, merchant_id: int, channel: str, sales_date: date) -> Optional[DailySales]:
        return await self._get(
            DailySalesModel,
            DailySales,
            DailySalesModel.merchant_id == merchant_id,
            DailySalesModel.channel == channel,
            DailySalesModel.sales_date == sales_date,
        )

    # ------------------------------------------------------------------
    # Cursores
    # ------------------------------------------------------------------

    async def get_cursor(self, system: str, merchant_id: str, data_type: str) -> Optional[SyncCursor]:
        return await self._get(
            SyncCursorModel,
            SyncCursor,
            SyncCursorModel.system == system,
            SyncCursorModel.merchant_id == merchant_id,
            SyncCursorModel.data_type == data_type,
        )

    async def get_or_create_cursor(
        self, system: str, merchant_id: str, data_type: str, batch_size: int
    ) -> SyncCursor:
        async with self._session_factory() as session:
            insert_fn, _ = self._insert_for(session)
            stmt = insert_fn(SyncCursorModel).values(
                system=system,
                merchant_id=merchant_id,
                data_type=data_type,
                batch_size=batch_size,
                error_count=0,
                is_active=True,
            ).on_conflict_do_nothing(index_elements=["system", "merchant_id", "data_type"])
            await session.execute(stmt)
            await session.commit()
        return await self.get_cursor(system, merchant_id, data_type)

    async def update_cursor(self, cursor_id: int, values: Dict[str, Any]) -> None:
        await self._update(SyncCursorModel, [SyncCursorModel.id == cursor_id], values)

    async def advance_cursor_watermark(self, cursor_id: int, candidate_ms: int) -> bool:
        updated = await self._update(
            SyncCursorModel,
            [
                SyncCursorModel.id == cursor_id,
                or_(
                    SyncCursorModel.last_modified_ms.is_(None),
                    SyncCursorModel.last_modified_ms < candidate_ms,
                ),
            ],
            {"last_modified_ms": candidate_ms},
        )
        return updated > 0

    async def record_cursor_error(self, cursor_id: int, error: str) -> None:
        await self._update(
            SyncCursorModel,
            [SyncCursorModel.id == cursor_id],
            {"error_count": SyncCursorModel.error_count + 1, "last_error": error[:2000]},
        )

    # ------------------------------------------------------------------
    # Jobs y checkpoints
    # ------------------------------------------------------------------

    async def create_job(self, values: Dict[str, Any]) -> SyncJob:
        return await self._add(SyncJobModel, SyncJob, values)

    async def get_job(self, job_id: int) -> Optional[SyncJob]:
        return await self._get(SyncJobModel, SyncJob, SyncJobModel.id == job_id)

    async def list_jobs(self, limit: int = 20) -> List[SyncJob]:
        return await self._list(SyncJobModel, SyncJob, order_by=SyncJobModel.id.desc(), limit=limit)

    async def get_oldest_open_job(self) -> Optional[SyncJob]:
        rows = await self._list(
            SyncJobModel,
            SyncJob,
            SyncJobModel.status.in_(OPEN_JOB_STATUSES),
            order_by=(SyncJobModel.created_at.asc(), SyncJobModel.id.asc()),
            limit=1,
        )
        return rows[0] if rows else None

    async def update_job(self, job_id: int, values: Dict[str, Any]) -> None:
        await self._update(SyncJobModel, [SyncJobModel.id == job_id], values)

    async def increment_job_totals(self, job_id: int, processed_orders: int, total_orders: int) -> None:
        await self._update(
            SyncJobModel,
            [SyncJobModel.id == job_id],
            {
                "processed_orders": SyncJobModel.processed_orders + processed_orders,
                "total_orders": SyncJobModel.total_orders + total_orders,
            },
        )

    async def create_checkpoint(self, values: Dict[str, Any]) -> SyncCheckpoint:
        return await self._add(SyncCheckpointModel, SyncCheckpoint, values)

    async def get_checkpoint(self, checkpoint_id: int) -> Optional[SyncCheckpoint]:
        return await self._get(SyncCheckpointModel, SyncCheckpoint, SyncCheckpointModel.id == checkpoint_id)

    async def list_checkpoints(self, job_id: int) -> List[SyncCheckpoint]:
        return await self._list(
            SyncCheckpointModel, SyncCheckpoint, SyncCheckpointModel.job_id == job_id,
            order_by=SyncCheckpointModel.id,
        )

    async def claim_checkpoint(self, job_id: int, now: datetime) -> Optional[SyncCheckpoint]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SyncCheckpointModel.id, SyncCheckpointModel.status)
                .where(
                    SyncCheckpointModel.job_id == job_id,
                    or_(
                        SyncCheckpointModel.status == CheckpointStatus.PENDING.value,
                        and_(
                            SyncCheckpointModel.status == CheckpointStatus.RETRY.value,
                            SyncCheckpointModel.next_retry_at <= now,
                        ),
                    ),
                )
                .order_by(SyncCheckpointModel.id)
            )
            candidates = result.all()

            for candidate in candidates:
                claimed = await session.execute(
                    update(SyncCheckpointModel)
                    .where(
                        SyncCheckpointModel.id == candidate.id,
                        SyncCheckpointModel.status == candidate.status,
                    )
                    .values(status=CheckpointStatus.ACTIVE.value, started_at=now, next_retry_at=None)
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount == 1:
                    await session.commit()
                    return await self.get_checkpoint(candidate.id)

            await session.commit()
        return None

    async def update_checkpoint(self, checkpoint_id: int, values: Dict[str, Any]) -> None:
        await self._update(SyncCheckpointModel, [SyncCheckpointModel.id == checkpoint_id], values)

    async def count_open_checkpoints(self, job_id: int) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(SyncCheckpointModel.id)).where(
                    SyncCheckpointModel.job_id == job_id,
                    SyncCheckpointModel.status.in_(_OPEN_CHECKPOINT_STATUSES),
                )
            )
            return int(result.scalar_one())

    async def cancel_open_checkpoints(self, job_id: int) -> int:
        return await self._update(
            SyncCheckpointModel,
            [
                SyncCheckpointModel.job_id == job_id,
                SyncCheckpointModel.status.in_(CLAIMABLE_CHECKPOINT_STATUSES),
            ],
            {"status": CheckpointStatus.CANCELLED.value},
        )

    async def reset_active_jobs(self) -> int:
        return await self._update(
            SyncJobModel,
            [SyncJobModel.status == JobStatus.ACTIVE.value],
            {"status": JobStatus.PENDING.value},
        )

    async def reset_active_checkpoints(self) -> int:
        return await self._update(
            SyncCheckpointModel,
            [SyncCheckpointModel.status == CheckpointStatus.ACTIVE.value],
            {"status": CheckpointStatus.PENDING.value},
        )
