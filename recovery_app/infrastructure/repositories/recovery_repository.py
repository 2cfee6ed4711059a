# caminho: recovery_app/infrastructure/repositories/recovery_repository.py
# Funções:
# - RecoveryRequestRepositoryImpl: implementação SQLAlchemy do protocolo RecoveryRequestRepository
# - TemporaryAccessRepositoryImpl: implementação para acessos temporários
#
# Transições são UPDATE ... WHERE <estado esperado> RETURNING; nenhuma linha
# retornada significa que outra chamada chegou antes.

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from recovery_app.config.constants import PENDING_SLOT_RETRIES
from recovery_app.domain.recovery.entities import RecoveryRequest, TemporaryAccessGrant
from recovery_app.domain.recovery.enums import RECOVERY_TERMINAL_STATUSES, is_terminal_status
from recovery_app.domain.recovery.repositories import RecoveryRequestRepository, TemporaryAccessRepository
from recovery_app.infrastructure.db.models import RecoveryRequestModel, TemporaryAccessGrantModel
from recovery_app.infrastructure.db.utils import as_utc, try_commit
from recovery_app.shared.logging import log_warning

_REQUEST_COLUMNS = tuple(RecoveryRequestModel.__table__.c)
_GRANT_COLUMNS = tuple(TemporaryAccessGrantModel.__table__.c)


def _to_domain_request(row: Any) -> RecoveryRequest:
    return RecoveryRequest(
        id=row.id,
        user_id=row.user_id,
        method=row.method,
        status=row.status,
        secret_hash=row.secret_hash,
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        expires_at=as_utc(row.expires_at),
        contact_info=row.contact_info,
        identity_documents=list(row.identity_documents or []),
        identity_review_status=row.identity_review_status,
        emergency_details=row.emergency_details,
        request_ip=row.request_ip,
        user_agent=row.user_agent,
        processed_by=row.processed_by,
        processing_notes=row.processing_notes,
        rejection_reason=row.rejection_reason,
        pending_slot=row.pending_slot,
        created_at=as_utc(row.created_at),
        completed_at=as_utc(row.completed_at),
    )


def _to_domain_grant(row: Any) -> TemporaryAccessGrant:
    return TemporaryAccessGrant(
        id=row.id,
        user_id=row.user_id,
        source=row.source,
        source_id=row.source_id,
        expires_at=as_utc(row.expires_at),
        revoked_at=as_utc(row.revoked_at),
        revoked_by=row.revoked_by,
        revoke_reason=row.revoke_reason,
        created_at=as_utc(row.created_at),
    )


class RecoveryRequestRepositoryImpl(RecoveryRequestRepository):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, request: RecoveryRequest, *, max_pending: int) -> Optional[RecoveryRequest]:
        for _ in range(PENDING_SLOT_RETRIES):
            occupied = await self._occupied_slots(request.user_id)
            slot = next((candidate for candidate in range(1, max_pending + 1) if candidate not in occupied), None)
            if slot is None:
                return None

            model = RecoveryRequestModel(
                id=request.id,
                user_id=request.user_id,
                method=request.method,
                status=request.status,
                secret_hash=request.secret_hash,
                attempts=request.attempts,
                max_attempts=request.max_attempts,
                expires_at=request.expires_at,
                contact_info=request.contact_info,
                identity_documents=list(request.identity_documents),
                identity_review_status=request.identity_review_status,
                emergency_details=request.emergency_details,
                request_ip=request.request_ip,
                user_agent=request.user_agent,
                pending_slot=slot,
                created_at=request.created_at or datetime.now(timezone.utc),
            )
            self._session.add(model)
            try:
                await self._session.commit()
            except IntegrityError:
                # outra requisição ocupou o mesmo slot entre a leitura e o INSERT
                await self._session.rollback()
                log_warning('RECOVERY_PENDING_SLOT_CONFLICT', {'user_id': request.user_id, 'slot': slot})
                continue
            request.pending_slot = slot
            request.created_at = model.created_at
            return request
        return None

    async def get_by_id(self, request_id: str) -> Optional[RecoveryRequest]:
        stmt = select(*_REQUEST_COLUMNS).where(RecoveryRequestModel.id == request_id)
        result = await self._session.execute(stmt)
        row = result.first()
        return _to_domain_request(row) if row else None

    async def remove(self, request_id: str) -> bool:
        stmt = delete(RecoveryRequestModel).where(RecoveryRequestModel.id == request_id)
        result = await self._session.execute(stmt, execution_options={'synchronize_session': False})
        await try_commit(self._session)
        return bool(result.rowcount)

    async def list_by_user(self, user_id: str) -> Sequence[RecoveryRequest]:
        stmt = (
            select(*_REQUEST_COLUMNS)
            .where(RecoveryRequestModel.user_id == user_id)
            .order_by(RecoveryRequestModel.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return [_to_domain_request(row) for row in result.all()]

    async def register_attempt(
        self,
        request_id: str,
        *,
        succeeded: bool,
        now: datetime,
    ) -> Optional[RecoveryRequest]:
        values: dict[str, Any] = {'attempts': RecoveryRequestModel.attempts + 1}
        if succeeded:
            values.update(status='completed', completed_at=now, pending_slot=None)

        stmt = (
            update(RecoveryRequestModel)
            .where(
                RecoveryRequestModel.id == request_id,
                RecoveryRequestModel.status == 'pending',
                RecoveryRequestModel.attempts < RecoveryRequestModel.max_attempts,
            )
            .values(**values)
            .returning(*_REQUEST_COLUMNS)
        )
        return await self._execute_one(stmt)

    async def transition(
        self,
        request_id: str,
        *,
        to_status: str,
        now: datetime,
        processed_by: Optional[str] = None,
        processing_notes: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> Optional[RecoveryRequest]:
        values: dict[str, Any] = {'status': to_status}
        if is_terminal_status(to_status):
            values.update(pending_slot=None, completed_at=now)
        if processed_by is not None:
            values['processed_by'] = processed_by
        if processing_notes is not None:
            values['processing_notes'] = processing_notes
        if rejection_reason is not None:
            values['rejection_reason'] = rejection_reason

        stmt = (
            update(RecoveryRequestModel)
            .where(RecoveryRequestModel.id == request_id, RecoveryRequestModel.status == 'pending')
            .values(**values)
            .returning(*_REQUEST_COLUMNS)
        )
        return await self._execute_one(stmt)

    async def set_identity_review(
        self,
        request_id: str,
        *,
        review_status: str,
        reviewer_id: str,
        notes: Optional[str] = None,
    ) -> Optional[RecoveryRequest]:
        values: dict[str, Any] = {'identity_review_status': review_status, 'processed_by': reviewer_id}
        if notes is not None:
            values['processing_notes'] = notes

        stmt = (
            update(RecoveryRequestModel)
            .where(
                RecoveryRequestModel.id == request_id,
                RecoveryRequestModel.status == 'pending',
                RecoveryRequestModel.method == 'identity_verification',
            )
            .values(**values)
            .returning(*_REQUEST_COLUMNS)
        )
        return await self._execute_one(stmt)

    async def expire_pending(self, now: datetime, *, user_id: Optional[str] = None) -> Sequence[RecoveryRequest]:
        stmt = update(RecoveryRequestModel).where(
            RecoveryRequestModel.status == 'pending',
            RecoveryRequestModel.expires_at < now,
        )
        if user_id is not None:
            stmt = stmt.where(RecoveryRequestModel.user_id == user_id)
        stmt = stmt.values(status='expired', pending_slot=None, completed_at=now).returning(*_REQUEST_COLUMNS)

        result = await self._session.execute(stmt, execution_options={'synchronize_session': False})
        rows = result.all()
        await try_commit(self._session)
        return [_to_domain_request(row) for row in rows]

    async def purge_terminal(self, expired_before: datetime) -> int:
        stmt = delete(RecoveryRequestModel).where(
            RecoveryRequestModel.status.in_(sorted(RECOVERY_TERMINAL_STATUSES)),
            RecoveryRequestModel.expires_at < expired_before,
        )
        result = await self._session.execute(stmt, execution_options={'synchronize_session': False})
        await try_commit(self._session)
        return int(result.rowcount or 0)

    async def _occupied_slots(self, user_id: str) -> set[int]:
        stmt = select(RecoveryRequestModel.pending_slot).where(
            RecoveryRequestModel.user_id == user_id,
            RecoveryRequestModel.pending_slot.is_not(None),
        )
        result = await self._session.execute(stmt)
        return {slot for slot in result.scalars().all() if slot is not None}

    async def _execute_one(self, stmt) -> Optional[RecoveryRequest]:
        result = await self._session.execute(stmt, execution_options={'synchronize_session': False})
        row = result.first()
        await try_commit(self._session)
        return _to_domain_request(row) if row else None


class TemporaryAccessRepositoryImpl(TemporaryAccessRepository):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, grant: TemporaryAccessGrant) -> TemporaryAccessGrant:
        model = TemporaryAccessGrantModel(
            id=grant.id,
            user_id=grant.user_id,
            source=grant.source,
            source_id=grant.source_id,
            expires_at=grant.expires_at,
            created_at=grant.created_at or datetime.now(timezone.utc),
        )
        self._session.add(model)
        await try_commit(self._session)
        grant.created_at = model.created_at
        return grant

    async def get_by_id(self, grant_id: str) -> Optional[TemporaryAccessGrant]:
        stmt = select(*_GRANT_COLUMNS).where(TemporaryAccessGrantModel.id == grant_id)
        result = await self._session.execute(stmt)
        row = result.first()
        return _to_domain_grant(row) if row else None

    async def revoke(
        self,
        grant_id: str,
        *,
        revoked_by: str,
        reason: str,
        now: datetime,
    ) -> Optional[TemporaryAccessGrant]:
        stmt = (
            update(TemporaryAccessGrantModel)
            .where(TemporaryAccessGrantModel.id == grant_id, TemporaryAccessGrantModel.revoked_at.is_(None))
            .values(revoked_at=now, revoked_by=revoked_by, revoke_reason=reason)
            .returning(*_GRANT_COLUMNS)
        )
        result = await self._session.execute(stmt, execution_options={'synchronize_session': False})
        row = result.first()
        await try_commit(self._session)
        return _to_domain_grant(row) if row else None

    async def list_active(self, user_id: str, now: datetime) -> Sequence[TemporaryAccessGrant]:
        stmt = (
            select(*_GRANT_COLUMNS)
            .where(
                TemporaryAccessGrantModel.user_id == user_id,
                TemporaryAccessGrantModel.revoked_at.is_(None),
                TemporaryAccessGrantModel.expires_at > now,
            )
            .order_by(TemporaryAccessGrantModel.expires_at.desc())
        )
        result = await self._session.execute(stmt)
        return [_to_domain_grant(row) for row in result.all()]
