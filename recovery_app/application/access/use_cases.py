# caminho: recovery_app/application/access/use_cases.py
# Funções:
# - TemporaryAccessIssuer: emite, inspeciona, lista e revoga acessos temporários pós-recuperação

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from http import HTTPStatus
from typing import Optional

from jwt import ExpiredSignatureError, InvalidTokenError

from recovery_app.application.access.dto import (
    AccessInspectResult,
    AccessRevokeInput,
    TemporaryAccessGrantListResponse,
    TemporaryAccessGrantOutput,
)
from recovery_app.config.constants import AUDIT_CATEGORY_ACCESS
from recovery_app.config.policy import RecoveryPolicy
from recovery_app.domain.audit.entities import RequestContext
from recovery_app.domain.overrides.enums import has_required_role
from recovery_app.domain.overrides.repositories import RoleLookup
from recovery_app.domain.recovery.entities import TemporaryAccessGrant
from recovery_app.domain.recovery.repositories import TemporaryAccessRepository
from recovery_app.infrastructure.security.jwt import TEMPORARY_ACCESS_SCOPE, JWTService
from recovery_app.shared.audit_log import AuditLog
from recovery_app.shared.clock import Clock, utcnow
from recovery_app.shared.errors import http_error
from recovery_app.shared.logging import log_info, log_warning


@dataclass(slots=True, frozen=True)
class IssuedAccess:
    token: str
    grant_id: str
    expires_at: datetime


class TemporaryAccessIssuer:
    """Credencial de uso único equivalente a "passou no MFA uma vez" por um prazo curto.

    Cada emissão grava um registro (grant) que pode ser inspecionado ou revogado
    independentemente das sessões normais; o token JWT carrega apenas o id do grant.
    """

    def __init__(
        self,
        grants: TemporaryAccessRepository,
        jwt_service: JWTService,
        policy: RecoveryPolicy,
        *,
        audit: AuditLog,
        roles: RoleLookup,
        clock: Clock = utcnow,
    ) -> None:
        self._grants = grants
        self._jwt = jwt_service
        self._policy = policy
        self._audit = audit
        self._roles = roles
        self._clock = clock

    async def issue(self, user_id: str, *, source: str = 'mfa_recovery', source_id: Optional[str] = None) -> IssuedAccess:
        now = self._clock()
        grant = await self._grants.add(
            TemporaryAccessGrant(
                user_id=user_id,
                expires_at=now + self._policy.temporary_access_ttl,
                source=source,
                source_id=source_id,
                created_at=now,
            )
        )
        token = self._jwt.create_temporary_access_token(
            user_id,
            grant.id,
            issued_at=now,
            expires_at=grant.expires_at,
        )
        log_info('TEMPORARY_ACCESS_ISSUED', {'user_id': user_id, 'grant_id': grant.id, 'source': source})
        return IssuedAccess(token=token, grant_id=grant.id, expires_at=grant.expires_at)

    async def inspect(self, token: str) -> AccessInspectResult:
        now = self._clock()
        try:
            payload = self._jwt.decode_temporary_access_token(token, now=now)
        except ExpiredSignatureError:
            return AccessInspectResult(valid=False, reason='expired')
        except InvalidTokenError:
            return AccessInspectResult(valid=False, reason='invalid_token')

        if payload.scope != TEMPORARY_ACCESS_SCOPE:
            return AccessInspectResult(valid=False, reason='invalid_scope')

        grant = await self._grants.get_by_id(payload.grant_id)
        if grant is None or grant.user_id != payload.subject:
            return AccessInspectResult(valid=False, reason='unknown_grant')
        if grant.revoked_at is not None:
            return AccessInspectResult(valid=False, user_id=grant.user_id, grant_id=grant.id, reason='revoked')
        if not grant.is_active(now):
            return AccessInspectResult(valid=False, user_id=grant.user_id, grant_id=grant.id, reason='expired')

        return AccessInspectResult(valid=True, user_id=grant.user_id, grant_id=grant.id, expires_at=grant.expires_at)

    async def list_active(self, acting_user_id: str, user_id: str) -> TemporaryAccessGrantListResponse:
        await self._ensure_manager(acting_user_id, action='list')
        grants = await self._grants.list_active(user_id, self._clock())
        return TemporaryAccessGrantListResponse(
            user_id=user_id,
            items=[TemporaryAccessGrantOutput.model_validate(grant) for grant in grants],
        )

    async def revoke(
        self,
        acting_user_id: str,
        grant_id: str,
        payload: AccessRevokeInput,
        context: Optional[RequestContext] = None,
    ) -> TemporaryAccessGrantOutput:
        await self._ensure_manager(acting_user_id, action='revoke', context=context, grant_id=grant_id)

        now = self._clock()
        revoked = await self._grants.revoke(grant_id, revoked_by=acting_user_id, reason=payload.reason, now=now)
        if revoked is None:
            current = await self._grants.get_by_id(grant_id)
            code = 'GRANT_NOT_FOUND' if current is None else 'GRANT_ALREADY_REVOKED'
            await self._audit.record(
                'temporary_access_revoked',
                category=AUDIT_CATEGORY_ACCESS,
                success=False,
                actor_id=acting_user_id,
                target_user_id=current.user_id if current else None,
                context=context,
                grant_id=grant_id,
                error=code,
            )
            status = HTTPStatus.NOT_FOUND if current is None else HTTPStatus.CONFLICT
            raise http_error(status, code)

        await self._audit.record(
            'temporary_access_revoked',
            category=AUDIT_CATEGORY_ACCESS,
            success=True,
            actor_id=acting_user_id,
            target_user_id=revoked.user_id,
            context=context,
            grant_id=grant_id,
            reason=payload.reason,
        )
        return TemporaryAccessGrantOutput.model_validate(revoked)

    async def discard(self, grant_id: str, *, reason: str) -> None:
        """Revoga sem checar papéis; usado para desfazer uma emissão cuja conclusão falhou."""
        revoked = await self._grants.revoke(grant_id, revoked_by='system', reason=reason, now=self._clock())
        log_warning('TEMPORARY_ACCESS_DISCARDED', {'grant_id': grant_id, 'reason': reason, 'revoked': revoked is not None})

    async def _ensure_manager(
        self,
        acting_user_id: str,
        *,
        action: str,
        context: Optional[RequestContext] = None,
        grant_id: Optional[str] = None,
    ) -> None:
        roles = await self._roles.roles_of(acting_user_id)
        if has_required_role(roles, self._policy.manage_role):
            return
        await self._audit.record(
            f'temporary_access_{action}_denied',
            category=AUDIT_CATEGORY_ACCESS,
            success=False,
            actor_id=acting_user_id,
            context=context,
            grant_id=grant_id,
            error='UNAUTHORIZED',
        )
        raise http_error(HTTPStatus.FORBIDDEN, 'UNAUTHORIZED', required_role=self._policy.manage_role)
