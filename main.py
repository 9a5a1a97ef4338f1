"""
Punto de entrada del API de operacion del motor de sync POS.

El API expone jobs historicos, cursores y schedulers; el trabajo lo hacen
el worker de jobs y los schedulers que se levantan en el startup.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from possync.core.config import settings, get_cors_origins
from possync.core.events import startup_handler, shutdown_handler
from possync.api.v1.router import api_router
from possync.api.middlewares.error_handler import ErrorHandlerMiddleware
from possync.shared.exceptions.base import AppException


def _engine_status(app: FastAPI) -> dict:
    """Estado del worker y los schedulers (vacio si el startup no corrio)."""
    state = app.state
    orchestrator = getattr(state, "orchestrator", None)
    if orchestrator is None:
        return {}
    return {
        "job_worker": orchestrator.is_worker_running,
        "job_tick_busy": orchestrator.is_busy,
        "inventory_scheduler": state.inventory_scheduler.is_running,
        "order_scheduler": state.order_scheduler.is_running,
    }


def create_application() -> FastAPI:
    """
    Factory para crear y configurar la aplicación FastAPI.

    Returns:
        FastAPI: Instancia configurada de la aplicación
    """
    application = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Motor de sincronizacion de ordenes e inventario POS",
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(settings.CORS_ORIGINS),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(ErrorHandlerMiddleware)

    application.add_event_handler("startup", startup_handler(application))
    application.add_event_handler("shutdown", shutdown_handler(application))

    application.include_router(api_router, prefix="/api")

    @application.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @application.get("/health", tags=["Health"])
    async def health_check(request: Request):
        return {
            "status": "healthy",
            "app_name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "sync_engine": _engine_status(request.app),
        }

    return application


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
