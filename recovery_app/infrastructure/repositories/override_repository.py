# caminho: recovery_app/infrastructure/repositories/override_repository.py
# Funções:
# - AdminOverrideRepositoryImpl: implementação SQLAlchemy do protocolo AdminOverrideRepository
# - RoleLookupImpl: papéis da equipe (consulta e concessão)

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from recovery_app.domain.overrides.entities import AdminOverride
from recovery_app.domain.overrides.repositories import AdminOverrideRepository, RoleLookup
from recovery_app.infrastructure.db.models import AdminOverrideModel, UserRoleModel
from recovery_app.infrastructure.db.utils import as_utc, try_commit

_OVERRIDE_COLUMNS = tuple(AdminOverrideModel.__table__.c)


def _to_domain_override(row: Any) -> AdminOverride:
    return AdminOverride(
        id=row.id,
        target_user_id=row.target_user_id,
        override_type=row.override_type,
        requested_by=row.requested_by,
        reason=row.reason,
        emergency_justification=row.emergency_justification,
        requires_approval=bool(row.requires_approval),
        is_active=bool(row.is_active),
        approved_by=row.approved_by,
        approved_at=as_utc(row.approved_at),
        approval_notes=row.approval_notes,
        expires_at=as_utc(row.expires_at),
        revoked_at=as_utc(row.revoked_at),
        revoked_by=row.revoked_by,
        revoke_reason=row.revoke_reason,
        times_used=row.times_used,
        last_used_at=as_utc(row.last_used_at),
        created_at=as_utc(row.created_at),
    )


def _effective(now: datetime):
    return (
        AdminOverrideModel.is_active.is_(True),
        AdminOverrideModel.revoked_at.is_(None),
        AdminOverrideModel.expires_at > now,
    )


class AdminOverrideRepositoryImpl(AdminOverrideRepository):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, override: AdminOverride) -> AdminOverride:
        model = AdminOverrideModel(
            id=override.id,
            target_user_id=override.target_user_id,
            override_type=override.override_type,
            requested_by=override.requested_by,
            reason=override.reason,
            emergency_justification=override.emergency_justification,
            requires_approval=override.requires_approval,
            is_active=override.is_active,
            expires_at=override.expires_at,
            times_used=override.times_used,
            created_at=override.created_at or datetime.now(timezone.utc),
        )
        self._session.add(model)
        await try_commit(self._session)
        override.created_at = model.created_at
        return override

    async def get_by_id(self, override_id: str) -> Optional[AdminOverride]:
        stmt = select(*_OVERRIDE_COLUMNS).where(AdminOverrideModel.id == override_id)
        result = await self._session.execute(stmt)
        row = result.first()
        return _to_domain_override(row) if row else None

    async def remove(self, override_id: str) -> bool:
        stmt = delete(AdminOverrideModel).where(AdminOverrideModel.id == override_id)
        result = await self._session.execute(stmt, execution_options={'synchronize_session': False})
        await try_commit(self._session)
        return bool(result.rowcount)

    async def list_by_target(self, target_user_id: str) -> Sequence[AdminOverride]:
        stmt = (
            select(*_OVERRIDE_COLUMNS)
            .where(AdminOverrideModel.target_user_id == target_user_id)
            .order_by(AdminOverrideModel.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return [_to_domain_override(row) for row in result.all()]

    async def approve(
        self,
        override_id: str,
        *,
        approver_id: str,
        notes: Optional[str],
        now: datetime,
    ) -> Optional[AdminOverride]:
        stmt = (
            update(AdminOverrideModel)
            .where(
                AdminOverrideModel.id == override_id,
                AdminOverrideModel.requires_approval.is_(True),
                AdminOverrideModel.approved_by.is_(None),
                AdminOverrideModel.revoked_at.is_(None),
                AdminOverrideModel.expires_at > now,
            )
            .values(approved_by=approver_id, approved_at=now, approval_notes=notes, is_active=True)
            .returning(*_OVERRIDE_COLUMNS)
        )
        return await self._execute_one(stmt)

    async def revoke(
        self,
        override_id: str,
        *,
        revoked_by: str,
        reason: str,
        now: datetime,
    ) -> Optional[AdminOverride]:
        stmt = (
            update(AdminOverrideModel)
            .where(AdminOverrideModel.id == override_id, AdminOverrideModel.revoked_at.is_(None))
            .values(is_active=False, revoked_at=now, revoked_by=revoked_by, revoke_reason=reason)
            .returning(*_OVERRIDE_COLUMNS)
        )
        return await self._execute_one(stmt)

    async def find_effective(
        self,
        target_user_id: str,
        override_type: str,
        now: datetime,
    ) -> Optional[AdminOverride]:
        stmt = (
            select(*_OVERRIDE_COLUMNS)
            .where(
                AdminOverrideModel.target_user_id == target_user_id,
                AdminOverrideModel.override_type == override_type,
                *_effective(now),
            )
            .order_by(AdminOverrideModel.expires_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        row = result.first()
        return _to_domain_override(row) if row else None

    async def register_use(self, override_id: str, now: datetime) -> Optional[AdminOverride]:
        stmt = (
            update(AdminOverrideModel)
            .where(AdminOverrideModel.id == override_id, *_effective(now))
            .values(times_used=AdminOverrideModel.times_used + 1, last_used_at=now)
            .returning(*_OVERRIDE_COLUMNS)
        )
        return await self._execute_one(stmt)

    async def deactivate_expired(self, now: datetime) -> Sequence[AdminOverride]:
        stmt = (
            update(AdminOverrideModel)
            .where(AdminOverrideModel.is_active.is_(True), AdminOverrideModel.expires_at <= now)
            .values(is_active=False)
            .returning(*_OVERRIDE_COLUMNS)
        )
        result = await self._session.execute(stmt, execution_options={'synchronize_session': False})
        rows = result.all()
        await try_commit(self._session)
        return [_to_domain_override(row) for row in rows]

    async def _execute_one(self, stmt) -> Optional[AdminOverride]:
        result = await self._session.execute(stmt, execution_options={'synchronize_session': False})
        row = result.first()
        await try_commit(self._session)
        return _to_domain_override(row) if row else None


class RoleLookupImpl(RoleLookup):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def roles_of(self, user_id: str) -> set[str]:
        stmt = select(UserRoleModel.role).where(UserRoleModel.user_id == user_id, UserRoleModel.is_active.is_(True))
        result = await self._session.execute(stmt)
        return {role.lower() for role in result.scalars().all()}

    async def grant(self, user_id: str, role: str, *, granted_by: Optional[str] = None) -> bool:
        """Concede (ou reativa) o papel; retorna False quando já estava ativo."""
        stmt = select(UserRoleModel).where(UserRoleModel.user_id == user_id, UserRoleModel.role == role)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        if model is not None and model.is_active:
            return False

        if model is None:
            self._session.add(
                UserRoleModel(
                    user_id=user_id,
                    role=role,
                    is_active=True,
                    granted_by=granted_by,
                    created_at=datetime.now(timezone.utc),
                )
            )
        else:
            model.is_active = True
            model.granted_by = granted_by
        await try_commit(self._session)
        return True
