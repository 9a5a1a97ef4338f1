"""
Tests unitarios de los endpoints del motor de sync.

Verifica el contrato HTTP:
- Crear un job historico retorna 202 para polling.
- Las excepciones de la aplicacion se traducen a su status y payload.
- Los schedulers exponen disparo manual y estado.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from possync.api.v1.dependencies.use_case_deps import (
    get_inventory_scheduler,
    get_orchestrator,
    get_order_scheduler,
    get_sync_store,
)
from possync.application.dto.sync_dto import JobProgressDTO, JobStatusDTO
from possync.domain.entities.pos import Merchant
from possync.domain.entities.sales import DailySales
from possync.domain.entities.sync import SyncCursor, SyncJob
from possync.shared.constants.sync_constants import POS_CHANNEL
from possync.shared.exceptions.domain import EntityNotFoundException, NoActiveLocationsException


def _job(status: str = "pending") -> SyncJob:
    return SyncJob(
        id=12,
        type="historical",
        status=status,
        requested_by="ops",
        total_locations=3,
        created_at=datetime(2026, 3, 12, 8, tzinfo=timezone.utc),
    )


@pytest.fixture
def mock_orchestrator() -> AsyncMock:
    orchestrator = AsyncMock()
    orchestrator.start_historical_sync = AsyncMock(return_value=_job())
    orchestrator.cancel_job = AsyncMock(return_value=_job("cancelled"))
    return orchestrator


@pytest.fixture
def mock_store() -> AsyncMock:
    store = AsyncMock()
    store.get_cursor = AsyncMock(return_value=None)
    store.get_merchant_by_external_id = AsyncMock(return_value=Merchant(id=7, name="Tienda Centro"))
    store.get_daily_sales = AsyncMock(return_value=None)
    return store


@pytest.fixture
def mock_inventory_scheduler() -> MagicMock:
    scheduler = MagicMock()
    scheduler.trigger_manual_sync = AsyncMock(return_value={"success": True, "message": "ok"})
    scheduler.get_status.return_value = {
        "enabled": True,
        "running": True,
        "syncing": False,
        "interval_minutes": 15,
        "last_sync_at": None,
        "next_sync_at": None,
        "last_error": None,
    }
    return scheduler


@pytest.fixture
def mock_order_scheduler() -> MagicMock:
    scheduler = MagicMock()
    scheduler.trigger_manual_sync = AsyncMock(return_value={"success": False, "message": "Ya hay una sincronizacion en curso"})
    scheduler.get_status.return_value = {
        "enabled": True,
        "running": True,
        "syncing": False,
        "interval_minutes": 15,
        "business_hours_active": False,
        "full_sync_hour": 3,
        "last_full_sync_date": date(2026, 3, 12),
    }
    return scheduler


@pytest.fixture
def app_with_mock(mock_orchestrator, mock_store, mock_inventory_scheduler, mock_order_scheduler):
    """Crea la app FastAPI con los servicios mockeados via dependency_overrides."""
    from main import create_application
    app = create_application()
    app.dependency_overrides[get_orchestrator] = lambda: mock_orchestrator
    app.dependency_overrides[get_sync_store] = lambda: mock_store
    app.dependency_overrides[get_inventory_scheduler] = lambda: mock_inventory_scheduler
    app.dependency_overrides[get_order_scheduler] = lambda: mock_order_scheduler
    yield app
    app.dependency_overrides.clear()


async def _request(app, method: str, url: str, **kwargs):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.request(method, url, **kwargs)


@pytest.mark.asyncio
async def test_start_historical_sync_returns_202(app_with_mock, mock_orchestrator) -> None:
    response = await _request(
        app_with_mock,
        "POST",
        "/api/v1/sync/jobs/historical",
        json={"start_date": "2025-01-01T00:00:00Z", "requested_by": "ops"},
    )

    assert response.status_code == 202
    data = response.json()
    assert data["job_id"] == 12
    assert data["status"] == "pending"
    assert data["total_locations"] == 3

    dto = mock_orchestrator.start_historical_sync.call_args.args[0]
    assert dto.start_date == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert dto.requested_by == "ops"


@pytest.mark.asyncio
async def test_start_historical_sync_rejects_inverted_window(app_with_mock, mock_orchestrator) -> None:
    response = await _request(
        app_with_mock,
        "POST",
        "/api/v1/sync/jobs/historical",
        json={"start_date": "2025-02-01T00:00:00Z", "end_date": "2025-01-01T00:00:00Z"},
    )

    assert response.status_code == 422
    mock_orchestrator.start_historical_sync.assert_not_called()


@pytest.mark.asyncio
async def test_no_active_locations_maps_to_400(app_with_mock, mock_orchestrator) -> None:
    mock_orchestrator.start_historical_sync.side_effect = NoActiveLocationsException()

    response = await _request(app_with_mock, "POST", "/api/v1/sync/jobs/historical", json={})

    assert response.status_code == 400
    assert response.json()["error"] == "NO_ACTIVE_LOCATIONS"


@pytest.mark.asyncio
async def test_get_job_status(app_with_mock, mock_orchestrator) -> None:
    mock_orchestrator.get_job_status = AsyncMock(return_value=JobStatusDTO(
        id=12,
        type="historical",
        status="active",
        progress=JobProgressDTO(total_locations=3, total_orders=10, processed_orders=5, percent_complete=50),
    ))

    response = await _request(app_with_mock, "GET", "/api/v1/sync/jobs/12")

    assert response.status_code == 200
    assert response.json()["progress"]["percent_complete"] == 50
    mock_orchestrator.get_job_status.assert_awaited_once_with(12)


@pytest.mark.asyncio
async def test_unknown_job_returns_404_payload(app_with_mock, mock_orchestrator) -> None:
    mock_orchestrator.get_job_status = AsyncMock(side_effect=EntityNotFoundException("SyncJob", 99))

    response = await _request(app_with_mock, "GET", "/api/v1/sync/jobs/99")

    assert response.status_code == 404
    assert response.json() == {
        "error": "ENTITY_NOT_FOUND",
        "message": "SyncJob con ID 99 no encontrado",
        "details": {"entity": "SyncJob", "id": "99"},
    }


@pytest.mark.asyncio
async def test_cancel_job(app_with_mock, mock_orchestrator) -> None:
    response = await _request(app_with_mock, "POST", "/api/v1/sync/jobs/12/cancel")

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    mock_orchestrator.cancel_job.assert_awaited_once_with(12)


@pytest.mark.asyncio
async def test_missing_cursor_returns_404(app_with_mock) -> None:
    response = await _request(app_with_mock, "GET", "/api/v1/sync/merchants/M-1/cursor")

    assert response.status_code == 404
    assert response.json()["details"]["entity"] == "SyncCursor"


@pytest.mark.asyncio
async def test_cursor_is_returned(app_with_mock, mock_store) -> None:
    mock_store.get_cursor.return_value = SyncCursor(
        id=1, system="pos", merchant_id="M-1", data_type="orders", last_modified_ms=1700000000000
    )

    response = await _request(app_with_mock, "GET", "/api/v1/sync/merchants/M-1/cursor")

    assert response.status_code == 200
    assert response.json()["last_modified_ms"] == 1700000000000
    mock_store.get_cursor.assert_awaited_once_with("pos", "M-1", "orders")


@pytest.mark.asyncio
async def test_inventory_trigger_and_status(app_with_mock, mock_inventory_scheduler) -> None:
    trigger = await _request(app_with_mock, "POST", "/api/v1/sync/inventory/trigger")
    status = await _request(app_with_mock, "GET", "/api/v1/sync/inventory/status")

    assert trigger.json() == {"success": True, "message": "ok"}
    assert status.status_code == 200
    assert status.json()["interval_minutes"] == 15


@pytest.mark.asyncio
async def test_order_trigger_forwards_full_flag(app_with_mock, mock_order_scheduler) -> None:
    response = await _request(app_with_mock, "POST", "/api/v1/sync/orders/trigger?full=true")

    assert response.status_code == 200
    assert response.json()["success"] is False
    mock_order_scheduler.trigger_manual_sync.assert_awaited_once_with(full=True)


@pytest.mark.asyncio
async def test_health_without_startup_reports_empty_engine(app_with_mock) -> None:
    response = await _request(app_with_mock, "GET", "/health")

    assert response.status_code == 200
    assert response.json()["sync_engine"] == {}


@pytest.mark.asyncio
async def test_order_status_includes_business_hours(app_with_mock) -> None:
    response = await _request(app_with_mock, "GET", "/api/v1/sync/orders/status")

    assert response.status_code == 200
    data = response.json()
    assert data["business_hours_active"] is False
    assert data["full_sync_hour"] == 3
    assert data["last_full_sync_date"] == "2026-03-12"


@pytest.mark.asyncio
async def test_daily_sales_is_returned(app_with_mock, mock_store) -> None:
    mock_store.get_daily_sales.return_value = DailySales(
        id=1,
        merchant_id=7,
        channel=POS_CHANNEL,
        sales_date=date(2026, 3, 10),
        order_count=2,
        gross_sales=Decimal("24.98"),
        net_sales=Decimal("24.98"),
        total_revenue=Decimal("24.98"),
    )

    response = await _request(app_with_mock, "GET", "/api/v1/sync/merchants/M-1/daily-sales?sales_date=2026-03-10")

    assert response.status_code == 200
    data = response.json()
    assert data["order_count"] == 2
    assert Decimal(data["gross_sales"]) == Decimal("24.98")
    mock_store.get_merchant_by_external_id.assert_awaited_once_with("M-1", POS_CHANNEL)
    mock_store.get_daily_sales.assert_awaited_once_with(7, POS_CHANNEL, date(2026, 3, 10))


@pytest.mark.asyncio
async def test_missing_daily_sales_returns_404(app_with_mock) -> None:
    response = await _request(app_with_mock, "GET", "/api/v1/sync/merchants/M-1/daily-sales?sales_date=2026-03-10")

    assert response.status_code == 404
    assert response.json()["details"]["entity"] == "DailySales"
