"""
Engine y sesiones de base de datos.

El store de sync abre una sesion corta por operacion, por eso aqui solo se
exponen el engine del proceso y su session factory.
"""
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from possync.core.config import settings


# Base para modelos de SQLAlchemy
Base = declarative_base()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Crea el engine segun el tipo de base de datos.

    PostgreSQL usa pool de conexiones. SQLite en memoria necesita una unica
    conexion compartida (StaticPool) para que todas las sesiones vean las
    mismas tablas.
    """
    args = {"echo": echo}

    if "postgresql" in database_url:
        args.update({
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_pre_ping": True,
        })
    elif database_url.startswith("sqlite"):
        args["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url:
            args["poolclass"] = StaticPool

    return create_async_engine(database_url, **args)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False, autoflush=False)


engine = build_engine(settings.effective_database_url, echo=settings.DEBUG)
AsyncSessionLocal = build_session_factory(engine)


async def init_db() -> None:
    """Crea las tablas que falten (en produccion el esquema lo maneja Alembic)."""
    from possync.infrastructure.database import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
