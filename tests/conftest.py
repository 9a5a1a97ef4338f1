"""
Configuración de fixtures para pytest.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from possync.infrastructure.database.session import Base, build_engine, build_session_factory
from possync.infrastructure.database import models  # noqa: F401  registra las tablas en Base
from possync.infrastructure.database.models import LocationModel, PosConfigModel
from possync.infrastructure.external.pos_api.types import PosItem, PosItemStock, PosOrder
from possync.infrastructure.repositories.sync_store_impl import SqlAlchemySyncStore


# URL de base de datos de prueba
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Session factory sobre una base SQLite en memoria, nueva para cada test."""
    engine = build_engine(TEST_DATABASE_URL)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield build_session_factory(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def store(session_factory) -> SqlAlchemySyncStore:
    return SqlAlchemySyncStore(session_factory)


@pytest.fixture
def add_location(session_factory):
    """Inserta una locacion interna y retorna su id."""
    async def _add(name: str, is_active: bool = True) -> int:
        async with session_factory() as session:
            row = LocationModel(name=name, is_active=is_active)
            session.add(row)
            await session.commit()
            return row.id

    return _add


@pytest.fixture
def add_pos_config(session_factory):
    """Inserta una configuracion POS y retorna su id."""
    async def _add(
        merchant_id: str,
        merchant_name: str,
        api_token: Optional[str] = "token-test",
        location_id: Optional[int] = None,
        is_active: bool = True,
    ) -> int:
        async with session_factory() as session:
            row = PosConfigModel(
                merchant_id=merchant_id,
                merchant_name=merchant_name,
                api_token=api_token,
                base_url="https://pos.test",
                location_id=location_id,
                is_active=is_active,
            )
            session.add(row)
            await session.commit()
            return row.id

    return _add


# =========================================================================
# Payloads del upstream
# =========================================================================


def _elements(items: Optional[List[Dict[str, Any]]]) -> Optional[Dict[str, Any]]:
    return {"elements": items} if items is not None else None


@pytest.fixture
def make_order():
    """Construye un PosOrder a partir de campos en formato del upstream."""
    def _make(
        order_id: str,
        *,
        modified: int,
        created: Optional[int] = None,
        total: int = 0,
        tax: int = 0,
        line_items: Optional[List[Dict[str, Any]]] = None,
        payments: Optional[List[Dict[str, Any]]] = None,
        discounts: Optional[List[Dict[str, Any]]] = None,
        refunds: Optional[List[Dict[str, Any]]] = None,
        customer_id: Optional[str] = None,
    ) -> PosOrder:
        raw: Dict[str, Any] = {
            "id": order_id,
            "createdTime": created if created is not None else modified,
            "modifiedTime": modified,
            "state": "locked",
            "paymentState": "PAID",
            "total": total,
            "taxAmount": tax,
            "lineItems": _elements(line_items),
            "payments": _elements(payments),
            "discounts": _elements(discounts),
            "refunds": _elements(refunds),
        }
        if customer_id:
            raw["customers"] = {"elements": [{"id": customer_id, "firstName": "Ana", "lastName": "Diaz"}]}
        return PosOrder.model_validate(raw)

    return _make


class FakePosClient:
    """Cliente POS en memoria: pagina las listas configuradas por limit/offset."""

    def __init__(self) -> None:
        self.orders: List[PosOrder] = []
        self.stocks: List[PosItemStock] = []
        self.error: Optional[Exception] = None
        self.order_calls: List[Dict[str, int]] = []
        self.items_by_sku: Dict[str, PosItem] = {}
        self.sku_calls: List[str] = []
        self.closed = 0

    def factory(self, pos_config) -> "FakePosClient":
        return self

    async def fetch_orders(self, *, modified_since_ms: int, modified_until_ms: int, limit: int, offset: int = 0):
        self.order_calls.append({
            "modified_since_ms": modified_since_ms,
            "modified_until_ms": modified_until_ms,
            "limit": limit,
            "offset": offset,
        })
        if self.error is not None:
            raise self.error
        return self.orders[offset:offset + limit]

    async def fetch_item_stocks(self, *, limit: int, offset: int = 0):
        if self.error is not None:
            raise self.error
        return self.stocks[offset:offset + limit]

    async def find_item_by_sku(self, sku: str) -> Optional[PosItem]:
        self.sku_calls.append(sku)
        return self.items_by_sku.get(sku)

    async def aclose(self) -> None:
        self.closed += 1

    async def __aenter__(self) -> "FakePosClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


@pytest.fixture
def pos_api() -> FakePosClient:
    return FakePosClient()


class HeldPosClient(FakePosClient):
    """
    FakePosClient que retiene las llamadas a fetch_orders indicadas (indice
    desde 0) hasta que el test las libera.
    """

    def __init__(self, held_calls=(0,)) -> None:
        super().__init__()
        self._calls = 0
        self.entered = {i: asyncio.Event() for i in held_calls}
        self.released = {i: asyncio.Event() for i in held_calls}

    async def fetch_orders(self, **kwargs):
        call = self._calls
        self._calls += 1
        if call in self.entered:
            self.entered[call].set()
            await self.released[call].wait()
        return await super().fetch_orders(**kwargs)


@pytest.fixture
def held_pos_api():
    """Factory de HeldPosClient: held_pos_api(0, 2) retiene la primera y la tercera llamada."""
    def _make(*held_calls: int) -> HeldPosClient:
        return HeldPosClient(held_calls or (0,))

    return _make


class FakeClock:
    """Reloj controlable para backoff y schedulers."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 12, 8, 0, tzinfo=timezone.utc))
