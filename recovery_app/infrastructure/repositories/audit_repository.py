# caminho: recovery_app/infrastructure/repositories/audit_repository.py
# Funções:
# - AuditEventRepositoryImpl: inclusão e consulta de eventos (sem update/delete)

from __future__ import annotations

from typing import Any, Optional, Sequence

from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from recovery_app.domain.audit.entities import AuditEvent
from recovery_app.domain.audit.repositories import AuditEventRepository
from recovery_app.infrastructure.db.models import AuditEventModel
from recovery_app.infrastructure.db.utils import as_utc, try_commit

_EVENT_COLUMNS = tuple(AuditEventModel.__table__.c)


def _to_domain_event(row: Any) -> AuditEvent:
    return AuditEvent(
        id=row.id,
        event_type=row.event_type,
        category=row.category,
        success=bool(row.success),
        actor_id=row.actor_id,
        target_user_id=row.target_user_id,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        data=dict(row.data or {}),
        created_at=as_utc(row.created_at),
    )


class AuditEventRepositoryImpl(AuditEventRepository):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(self, event: AuditEvent) -> AuditEvent:
        model = AuditEventModel(
            id=event.id,
            event_type=event.event_type,
            category=event.category,
            success=event.success,
            actor_id=event.actor_id,
            target_user_id=event.target_user_id,
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            data=jsonable_encoder(event.data),
            created_at=event.created_at,
        )
        self._session.add(model)
        await try_commit(self._session)
        return event

    async def list(
        self,
        *,
        target_user_id: Optional[str] = None,
        category: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> Sequence[AuditEvent]:
        stmt = select(*_EVENT_COLUMNS).order_by(AuditEventModel.created_at.desc(), AuditEventModel.id)
        if target_user_id is not None:
            stmt = stmt.where(AuditEventModel.target_user_id == target_user_id)
        if category is not None:
            stmt = stmt.where(AuditEventModel.category == category)
        stmt = stmt.offset(offset).limit(limit)
        result = await self._session.execute(stmt)
        return [_to_domain_event(row) for row in result.all()]
