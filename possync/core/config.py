"""
Configuracion central de la aplicacion.
Gestiona variables de entorno y configuraciones globales del motor de sync POS.
"""
import json
from typing import List
from pydantic_settings import BaseSettings
from pydantic import Field, computed_field


class Settings(BaseSettings):
    """
    Clase de configuracion de la aplicacion.
    Lee variables de entorno y proporciona valores por defecto.

    Bloques principales:
    - Base de datos (URL completa o por componentes)
    - Cliente de la API POS (timeouts, reintentos)
    - Motor de sync (tamaño de lote, buffer incremental, profundidad historica)
    - Worker de jobs historicos (intervalo, reintentos, backoff)
    - Schedulers de inventario y de sync incremental
    """

    # Configuracion de la aplicacion
    APP_NAME: str = Field(default="POS Sync Engine")
    APP_VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="production")

    # Configuracion del servidor
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)

    # Base de datos - Componentes separados
    DATABASE_HOST: str = Field(default="localhost")
    DATABASE_PORT: int = Field(default=5432)
    DATABASE_USER: str = Field(default="pos_user")
    DATABASE_PASSWORD: str = Field(default="pos_pass")
    DATABASE_NAME: str = Field(default="pos_db")

    # Base de datos - URL completa (override de componentes si se proporciona)
    DATABASE_URL: str = Field(default="")
    DB_POOL_SIZE: int = Field(default=5)
    DB_MAX_OVERFLOW: int = Field(default=10)

    # CORS (acepta lista JSON, lista separada por comas o "*")
    CORS_ORIGINS: str = Field(default="*")

    # API POS upstream
    POS_DEFAULT_BASE_URL: str = Field(default="https://api.clover.com")
    POS_HTTP_TIMEOUT_SECONDS: float = Field(default=30.0)
    POS_HTTP_MAX_RETRIES: int = Field(default=3)
    POS_HTTP_MIN_BACKOFF_SECONDS: float = Field(default=1.0)
    POS_HTTP_MAX_BACKOFF_SECONDS: float = Field(default=30.0)

    # Motor de sincronizacion de ordenes
    SYNC_BATCH_SIZE: int = Field(default=100)
    SYNC_BATCH_DELAY_MS: int = Field(default=100)
    SYNC_INCREMENTAL_BUFFER_MINUTES: int = Field(default=60)
    SYNC_HISTORICAL_DEPTH_DAYS: int = Field(default=365)

    # Worker de jobs historicos
    SYNC_JOB_WORKER_ENABLED: bool = Field(default=True)
    SYNC_JOB_WORKER_INTERVAL_SECONDS: int = Field(default=5)
    SYNC_JOB_MAX_RETRIES: int = Field(default=5)
    SYNC_JOB_BACKOFF_BASE_SECONDS: int = Field(default=30)
    SYNC_JOB_BATCH_SIZE: int = Field(default=100)

    # Scheduler de inventario
    INVENTORY_SYNC_ENABLED: bool = Field(default=True)
    INVENTORY_SYNC_INTERVAL_MINUTES: int = Field(default=15)
    INVENTORY_SYNC_INITIAL_DELAY_SECONDS: int = Field(default=30)

    # Scheduler de sync incremental de ordenes
    AUTO_SYNC_ENABLED: bool = Field(default=False)
    INCREMENTAL_SYNC_INTERVAL_MINUTES: int = Field(default=15)
    FULL_SYNC_HOUR: int = Field(default=3, ge=0, le=23)
    BUSINESS_START_HOUR: int = Field(default=6, ge=0, le=23)
    BUSINESS_END_HOUR: int = Field(default=22, ge=1, le=24)
    BUSINESS_TIMEZONE: str = Field(default="America/Chicago")
    SKIP_WEEKEND_SYNC: bool = Field(default=False)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: str = Field(default="logs/app.log")

    @computed_field
    @property
    def effective_database_url(self) -> str:
        """
        Retorna la URL de base de datos efectiva.
        Si DATABASE_URL esta definida, la usa directamente.
        Si no, construye la URL desde los componentes individuales.
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}"
            f"@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"
        )

    @computed_field
    @property
    def is_development(self) -> bool:
        """Indica si el entorno es de desarrollo."""
        return self.ENVIRONMENT.lower() == "development"

    class Config:
        """Configuracion de Pydantic."""
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


def get_cors_origins(cors_string: str) -> List[str]:
    """Parsea CORS_ORIGINS: "*", lista JSON o valores separados por comas."""
    if cors_string == "*":
        return ["*"]
    try:
        return json.loads(cors_string)
    except json.JSONDecodeError:
        return [origin.strip() for origin in cors_string.split(",") if origin.strip()]


# Instancia global de configuracion
settings = Settings()
