"""
Manejadores de eventos de inicio y cierre de la aplicacion.

El startup arma el grafo de servicios del motor de sync y lo deja en
app.state para que lo usen los endpoints:
    app.state.scheduler            AsyncIOScheduler compartido
    app.state.store                SqlAlchemySyncStore
    app.state.sync_service         PosSyncService
    app.state.orchestrator         SyncJobOrchestrator (worker de jobs)
    app.state.inventory_scheduler  InventorySyncScheduler
    app.state.order_scheduler      OrderSyncScheduler
"""
from typing import Callable
from fastapi import FastAPI
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from possync.core.config import settings
from possync.infrastructure.database.session import AsyncSessionLocal, init_db, close_db
from possync.infrastructure.repositories.sync_store_impl import SqlAlchemySyncStore
from possync.application.services.inventory_sync_service import InventorySyncService
from possync.application.services.pos_sync_service import PosSyncService
from possync.application.use_cases.historical_sync_use_cases import SyncJobOrchestrator
from possync.application.use_cases.inventory_sync_use_cases import InventorySyncScheduler
from possync.application.use_cases.order_sync_use_cases import OrderSyncScheduler


def startup_handler(app: FastAPI) -> Callable:
    """
    Manejador de eventos de inicio de la aplicacion.

    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Funcion asincrona de inicio
    """
    async def startup() -> None:
        """Inicializa recursos al inicio de la aplicacion."""
        try:
            logger.info(f"Iniciando {settings.APP_NAME} v{settings.APP_VERSION}")
            logger.info(f"Entorno: {settings.ENVIRONMENT}")

            _validate_config()

            # Inicializar base de datos (crea tablas si no existen)
            await init_db()
            logger.info("Base de datos inicializada")

            # Configurar logging adicional
            logger.add(
                settings.LOG_FILE,
                rotation="500 MB",
                retention="10 days",
                level=settings.LOG_LEVEL
            )

            await _start_sync_engine(app)

            logger.success("Aplicacion iniciada correctamente")

            if settings.is_development:
                _print_available_urls()

        except Exception as e:
            logger.error(f"Error durante startup: {e}")
            logger.exception("Detalle del error:")
            raise

    return startup


async def _start_sync_engine(app: FastAPI) -> None:
    """Crea servicios y schedulers; recupera jobs atascados antes de arrancar el worker."""
    scheduler = AsyncIOScheduler(timezone="UTC")
    store = SqlAlchemySyncStore(AsyncSessionLocal)
    sync_service = PosSyncService(store)
    orchestrator = SyncJobOrchestrator(store, sync_service)
    inventory_scheduler = InventorySyncScheduler(InventorySyncService(store))
    order_scheduler = OrderSyncScheduler(sync_service)

    app.state.scheduler = scheduler
    app.state.store = store
    app.state.sync_service = sync_service
    app.state.orchestrator = orchestrator
    app.state.inventory_scheduler = inventory_scheduler
    app.state.order_scheduler = order_scheduler

    recovered = await orchestrator.recover_stuck_jobs()
    logger.info(
        f"Recuperacion de jobs: {recovered['jobs']} jobs, {recovered['checkpoints']} checkpoints"
    )

    if settings.SYNC_JOB_WORKER_ENABLED:
        orchestrator.start_worker(scheduler)
    else:
        logger.info("Worker de jobs historicos deshabilitado por configuracion")

    inventory_scheduler.start(scheduler)
    order_scheduler.start(scheduler)

    scheduler.start()
    logger.info("Scheduler de sync iniciado")


def _validate_config() -> None:
    """Valida que la configuracion critica este presente."""
    warnings = []

    if not settings.DATABASE_URL and settings.DATABASE_PASSWORD == "pos_pass":
        warnings.append("DATABASE_PASSWORD por defecto - configurar credenciales reales")
    if settings.SYNC_JOB_MAX_RETRIES < 1:
        warnings.append("SYNC_JOB_MAX_RETRIES < 1 - los checkpoints fallaran sin reintento")

    for warning in warnings:
        logger.warning(f"CONFIG: {warning}")


def _print_available_urls() -> None:
    """Imprime las URLs disponibles de la aplicacion."""
    if settings.HOST == "0.0.0.0":
        access_host = "localhost"
    else:
        access_host = settings.HOST

    base_url = f"http://{access_host}:{settings.PORT}"

    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")
    logger.opt(colors=True).info("<bold><green>URLS DISPONIBLES:</green></bold>")
    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")
    logger.opt(colors=True).info(f"<cyan>  Swagger UI:  {base_url}/docs</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Sync jobs:   {base_url}/api/v1/sync/jobs</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Sync status: {base_url}/api/v1/sync/status</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Health:      {base_url}/health</cyan>")
    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")


def shutdown_handler(app: FastAPI) -> Callable:
    """
    Manejador de eventos de cierre de la aplicacion.

    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Funcion asincrona de cierre
    """
    async def shutdown() -> None:
        """Libera recursos al cerrar la aplicacion."""
        logger.info("Cerrando aplicacion...")

        state = app.state
        if getattr(state, "orchestrator", None) is not None:
            state.orchestrator.stop_worker()
        if getattr(state, "inventory_scheduler", None) is not None:
            state.inventory_scheduler.stop()
        if getattr(state, "order_scheduler", None) is not None:
            state.order_scheduler.stop()

        scheduler = getattr(state, "scheduler", None)
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)
            logger.info("Scheduler detenido")

        # Cerrar conexiones de base de datos
        await close_db()
        logger.info("Conexiones de base de datos cerradas")

        logger.success("Aplicacion cerrada correctamente")

    return shutdown
