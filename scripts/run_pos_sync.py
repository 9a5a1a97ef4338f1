"""
CLI: sync de ordenes / inventario POS fuera del API.

Uso recomendado:
  - Backfills puntuales o ejecucion como job (cron/systemd timer).
  - El API sigue siendo el dueño del worker de jobs; este script solo
    procesa en linea lo que se le pide.

Ejecución:
  python scripts/run_pos_sync.py --merchant 3
  python scripts/run_pos_sync.py --all
  python scripts/run_pos_sync.py --all --full
  python scripts/run_pos_sync.py --inventory
  python scripts/run_pos_sync.py --historical --start 2025-01-01 --drain
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

from loguru import logger
from dotenv import load_dotenv

# Permite ejecutar este script desde cualquier cwd sin configurar PYTHONPATH.
_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

load_dotenv(_ROOT / ".env", override=False)

from possync.application.dto.sync_dto import HistoricalSyncRequestDTO
from possync.application.services.inventory_sync_service import InventorySyncService
from possync.application.services.pos_sync_service import PosSyncService
from possync.application.use_cases.historical_sync_use_cases import SyncJobOrchestrator
from possync.domain.entities.sync import SyncOptions, SyncResult
from possync.infrastructure.database.session import AsyncSessionLocal, init_db, close_db
from possync.infrastructure.repositories.sync_store_impl import SqlAlchemySyncStore
from possync.shared.constants.sync_constants import OPEN_JOB_STATUSES


def _parse_date(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Fecha invalida (usar ISO 8601): {value}")


def _log_result(label: str, result: SyncResult) -> None:
    logger.info(
        f"{label}: success={result.success} procesadas={result.orders_processed} "
        f"creadas={result.orders_created} actualizadas={result.orders_updated} "
        f"errores={len(result.errors)} duracion={result.duration_ms}ms"
    )
    if result.errors:
        logger.warning(f"{label}: {result.error_summary()}")


async def _drain_job(orchestrator: SyncJobOrchestrator, store: SqlAlchemySyncStore, job_id: int) -> None:
    """Corre ticks hasta que el job termina o solo quedan reintentos con backoff."""
    while True:
        progressed = await orchestrator.run_tick()
        job = await store.get_job(job_id)
        if job is None or job.status not in OPEN_JOB_STATUSES:
            break
        if not progressed:
            logger.warning(f"Job {job_id}: quedan checkpoints en backoff, los retomara el worker del API")
            break

    status = await orchestrator.get_job_status(job_id)
    logger.info(
        f"Job {job_id}: {status.status.value} "
        f"{status.progress.processed_orders}/{status.progress.total_orders} ordenes "
        f"({status.progress.percent_complete}%)"
    )


async def _run(args: argparse.Namespace) -> int:
    await init_db()
    store = SqlAlchemySyncStore(AsyncSessionLocal)
    sync_service = PosSyncService(store)
    try:
        if args.inventory:
            summary = await InventorySyncService(store).sync_all_locations()
            logger.info(
                f"Inventario: {summary.succeeded}/{summary.locations} locaciones, "
                f"{summary.items_synced} items, {summary.cost_changes} cambios de costo"
            )
            return 1 if summary.failed else 0

        if args.historical:
            orchestrator = SyncJobOrchestrator(store, sync_service)
            job = await orchestrator.start_historical_sync(HistoricalSyncRequestDTO(
                start_date=args.start,
                end_date=args.end,
                force_full_sync=args.full,
                requested_by="cli",
            ))
            logger.info(f"Job {job.id} creado con {job.total_locations} locaciones")
            if args.drain:
                await _drain_job(orchestrator, store, job.id)
            return 0

        options = SyncOptions(start_date=args.start, end_date=args.end, force_full_sync=args.full)
        if args.merchant is not None:
            result = await sync_service.sync_merchant(args.merchant, options)
            _log_result(f"pos_config {args.merchant}", result)
            return 0 if result.success else 1

        results = await sync_service.sync_all_merchants(options)
        for merchant_id, result in results.items():
            _log_result(merchant_id, result)
        return 0 if all(r.success for r in results.values()) else 1
    finally:
        await close_db()


def main() -> int:
    parser = argparse.ArgumentParser(description="Sync POS -> Postgres")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--merchant", type=int, help="ID de pos_config a sincronizar")
    target.add_argument("--all", action="store_true", help="Todos los merchants activos")
    target.add_argument("--inventory", action="store_true", help="Sync de inventario de todas las locaciones")
    target.add_argument("--historical", action="store_true", help="Crea un job historico")
    parser.add_argument("--full", action="store_true", help="Ignora la marca de agua del cursor")
    parser.add_argument("--start", type=_parse_date, default=None, help="Inicio de la ventana (ISO 8601)")
    parser.add_argument("--end", type=_parse_date, default=None, help="Fin de la ventana (ISO 8601)")
    parser.add_argument(
        "--drain",
        action="store_true",
        help="Con --historical: procesa el job en linea en lugar de dejarlo al worker",
    )
    args = parser.parse_args()

    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
