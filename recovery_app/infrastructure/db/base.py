# caminho: recovery_app/infrastructure/db/base.py
# Funções:
# - create_async_engine_settings(): configura engine async do SQLAlchemy
# - get_engine()/get_session_factory(): criação preguiçosa (primeiro uso)
# - get_session(): fornece AsyncSession via FastAPI Depends

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import registry

from recovery_app.config import get_settings

mapper_registry = registry()
Base = mapper_registry.generate_base()

_ENGINE: Optional[AsyncEngine] = None
_SESSION_FACTORY: Optional[async_sessionmaker[AsyncSession]] = None


def create_async_engine_settings() -> AsyncEngine:
    settings = get_settings()

    # sqlite+aiosqlite (execução local) não aceita os parâmetros de pool
    if settings.DATABASE_URL.startswith('sqlite'):
        return create_async_engine(settings.DATABASE_URL)

    # Timeout de conexão/comando repassado ao asyncpg
    connect_args = {
        "timeout": 60,
    }

    return create_async_engine(
        settings.DATABASE_URL,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT_S,
        # Verifica a conexão antes de usar, reabrindo se tiver caído
        pool_pre_ping=True,
        pool_recycle=1800,
        connect_args=connect_args,
    )


def get_engine() -> AsyncEngine:
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = create_async_engine_settings()
    return _ENGINE


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _SESSION_FACTORY
    if _SESSION_FACTORY is None:
        _SESSION_FACTORY = async_sessionmaker(bind=get_engine(), class_=AsyncSession, expire_on_commit=False)
    return _SESSION_FACTORY


async def dispose_engine() -> None:
    global _ENGINE, _SESSION_FACTORY
    if _ENGINE is not None:
        await _ENGINE.dispose()
    _ENGINE = None
    _SESSION_FACTORY = None


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
