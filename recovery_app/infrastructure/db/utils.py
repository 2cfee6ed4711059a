# caminho: recovery_app/infrastructure/db/utils.py
# Funções:
# - try_commit(): commit com rollback seguro
# - as_utc(): normaliza datetimes lidos do banco (sqlite devolve sem fuso)
# - create_schema(): cria as tabelas (execução local/testes)

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from recovery_app.infrastructure.db.base import Base


async def try_commit(session: AsyncSession) -> None:
    try:
        await session.commit()
    except (DBAPIError, SQLAlchemyError):
        await session.rollback()
        raise


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
