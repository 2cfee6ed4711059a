# caminho: recovery_app/application/overrides/use_cases.py
# Funções:
# - AdminOverrideManager: criar, aprovar, revogar, consultar e expirar overrides administrativos de MFA

from __future__ import annotations

from datetime import datetime, timedelta
from http import HTTPStatus
from typing import Any, NoReturn, Optional

from fastapi import HTTPException

from recovery_app.application.overrides.dto import (
    OverrideApproveInput,
    OverrideCreateInput,
    OverrideCreateResult,
    OverrideListResponse,
    OverrideOutput,
    OverrideRevokeInput,
)
from recovery_app.config.constants import AUDIT_CATEGORY_OVERRIDE
from recovery_app.config.policy import OVERRIDE_RATE_LIMIT_ACTION, RecoveryPolicy
from recovery_app.domain.audit.entities import RequestContext
from recovery_app.domain.overrides.entities import AdminOverride
from recovery_app.domain.overrides.enums import has_required_role
from recovery_app.domain.overrides.repositories import AdminOverrideRepository, RoleLookup
from recovery_app.shared.audit_log import AuditLog
from recovery_app.shared.clock import Clock, utcnow
from recovery_app.shared.errors import http_error
from recovery_app.shared.logging import log_error, log_info, log_warning
from recovery_app.shared.rate_limit import RecoveryRateLimiter


class AdminOverrideManager:
    """Fluxo de overrides administrativos, paralelo à recuperação.

    A autorização vem sempre do ``RoleLookup``. Aprovação e revogação são
    UPDATEs condicionais: entre duas chamadas concorrentes, só a primeira vence.
    """

    def __init__(
        self,
        overrides: AdminOverrideRepository,
        roles: RoleLookup,
        policy: RecoveryPolicy,
        *,
        audit: AuditLog,
        rate_limiter: RecoveryRateLimiter,
        clock: Clock = utcnow,
    ) -> None:
        self._overrides = overrides
        self._roles = roles
        self._policy = policy
        self._audit = audit
        self._rate_limiter = rate_limiter
        self._clock = clock

    # -- Casos de Uso ---------------------------------------------------------

    async def create(
        self,
        admin_user_id: str,
        payload: OverrideCreateInput,
        context: Optional[RequestContext] = None,
    ) -> OverrideCreateResult:
        now = self._clock()
        override_type = payload.override_type.strip().lower()
        audit_base = {
            'actor_id': admin_user_id,
            'target_user_id': payload.target_user_id,
            'context': context,
            'override_type': override_type,
        }

        type_policy = self._policy.overrides.get(override_type)
        if type_policy is None:
            await self._fail('admin_override_created', HTTPStatus.BAD_REQUEST, 'UNSUPPORTED_OVERRIDE_TYPE', audit_base)

        roles = await self._roles.roles_of(admin_user_id)
        if not has_required_role(roles, type_policy.create_role):
            await self._fail(
                'admin_override_created',
                HTTPStatus.FORBIDDEN,
                'UNAUTHORIZED',
                audit_base,
                required_role=type_policy.create_role,
            )

        if payload.target_user_id == admin_user_id:
            await self._fail('admin_override_created', HTTPStatus.FORBIDDEN, 'OVERRIDE_SELF_TARGET_FORBIDDEN', audit_base)

        max_hours = type_policy.max_duration.total_seconds() / 3600
        if payload.duration_hours <= 0 or payload.duration_hours > max_hours:
            await self._fail(
                'admin_override_created',
                HTTPStatus.BAD_REQUEST,
                'OVERRIDE_INVALID_DURATION',
                audit_base,
                max_hours=max_hours,
            )

        reason = payload.reason.strip()
        if type_policy.requires_justification and not reason:
            await self._fail('admin_override_created', HTTPStatus.BAD_REQUEST, 'OVERRIDE_JUSTIFICATION_REQUIRED', audit_base)

        decision = await self._rate_limiter.acquire(admin_user_id, OVERRIDE_RATE_LIMIT_ACTION)
        if not decision.allowed:
            await self._fail(
                'admin_override_created',
                HTTPStatus.TOO_MANY_REQUESTS,
                'RATE_LIMITED',
                audit_base,
                cooldown_until=decision.cooldown_until.isoformat() if decision.cooldown_until else None,
                retry_in_seconds=decision.retry_in_seconds(now),
            )

        requires_approval = type_policy.requires_approval
        override = await self._overrides.add(
            AdminOverride(
                target_user_id=payload.target_user_id,
                override_type=override_type,
                requested_by=admin_user_id,
                reason=reason,
                emergency_justification=payload.emergency_justification,
                expires_at=now + timedelta(hours=payload.duration_hours),
                requires_approval=requires_approval,
                is_active=not requires_approval,
                created_at=now,
            )
        )

        try:
            await self._audit.record(
                'admin_override_created',
                category=AUDIT_CATEGORY_OVERRIDE,
                success=True,
                actor_id=admin_user_id,
                target_user_id=override.target_user_id,
                context=context,
                override_id=override.id,
                override_type=override_type,
                requires_approval=requires_approval,
                expires_at=override.expires_at.isoformat(),
            )
        except HTTPException:
            await self._overrides.remove(override.id)
            raise

        if requires_approval:
            # aprovadores são notificados fora deste serviço (painel administrativo)
            log_info('ADMIN_OVERRIDE_APPROVAL_REQUESTED', {'override_id': override.id, 'override_type': override_type})
        log_info(
            'ADMIN_OVERRIDE_CREATED',
            {'override_id': override.id, 'override_type': override_type, 'admin_user_id': admin_user_id},
        )

        return OverrideCreateResult(
            override_id=override.id,
            override_type=override_type,
            expires_at=override.expires_at,
            requires_approval=requires_approval,
            is_active=override.is_effective(now),
        )

    async def approve(
        self,
        approver_user_id: str,
        override_id: str,
        payload: Optional[OverrideApproveInput] = None,
        context: Optional[RequestContext] = None,
    ) -> OverrideOutput:
        now = self._clock()
        notes = payload.notes if payload else None
        audit_base: dict[str, Any] = {'actor_id': approver_user_id, 'context': context, 'override_id': override_id}

        override = await self._overrides.get_by_id(override_id)
        if override is None:
            await self._fail('admin_override_approved', HTTPStatus.NOT_FOUND, 'OVERRIDE_NOT_FOUND', audit_base)
        audit_base['target_user_id'] = override.target_user_id

        type_policy = self._policy.overrides[override.override_type]
        roles = await self._roles.roles_of(approver_user_id)
        if not has_required_role(roles, type_policy.approve_role):
            await self._fail(
                'admin_override_approved',
                HTTPStatus.FORBIDDEN,
                'UNAUTHORIZED',
                audit_base,
                required_role=type_policy.approve_role,
            )

        if approver_user_id == override.requested_by:
            await self._fail('admin_override_approved', HTTPStatus.FORBIDDEN, 'OVERRIDE_SELF_APPROVAL_FORBIDDEN', audit_base)

        conflict = self._approval_conflict(override, now)
        if conflict is not None:
            await self._fail('admin_override_approved', conflict[0], conflict[1], audit_base)

        approved = await self._overrides.approve(override_id, approver_id=approver_user_id, notes=notes, now=now)
        if approved is None:
            # outra aprovação (ou revogação) chegou primeiro
            current = await self._overrides.get_by_id(override_id)
            if current is None:
                await self._fail('admin_override_approved', HTTPStatus.NOT_FOUND, 'OVERRIDE_NOT_FOUND', audit_base)
            status, code = self._approval_conflict(current, now) or (HTTPStatus.CONFLICT, 'OVERRIDE_ALREADY_APPROVED')
            await self._fail('admin_override_approved', status, code, audit_base)

        await self._record_transition(
            'admin_override_approved',
            approved,
            actor_id=approver_user_id,
            context=context,
            notes=notes,
        )
        log_info('ADMIN_OVERRIDE_APPROVED', {'override_id': override_id, 'approver_user_id': approver_user_id})
        return self._to_output(approved, now)

    async def revoke(
        self,
        admin_user_id: str,
        override_id: str,
        payload: OverrideRevokeInput,
        context: Optional[RequestContext] = None,
    ) -> OverrideOutput:
        now = self._clock()
        audit_base: dict[str, Any] = {'actor_id': admin_user_id, 'context': context, 'override_id': override_id}

        roles = await self._roles.roles_of(admin_user_id)
        if not has_required_role(roles, self._policy.manage_role):
            await self._fail(
                'admin_override_revoked',
                HTTPStatus.FORBIDDEN,
                'UNAUTHORIZED',
                audit_base,
                required_role=self._policy.manage_role,
            )

        revoked = await self._overrides.revoke(override_id, revoked_by=admin_user_id, reason=payload.reason, now=now)
        if revoked is None:
            current = await self._overrides.get_by_id(override_id)
            if current is None:
                await self._fail('admin_override_revoked', HTTPStatus.NOT_FOUND, 'OVERRIDE_NOT_FOUND', audit_base)
            audit_base['target_user_id'] = current.target_user_id
            await self._fail('admin_override_revoked', HTTPStatus.CONFLICT, 'OVERRIDE_ALREADY_REVOKED', audit_base)

        await self._record_transition(
            'admin_override_revoked',
            revoked,
            actor_id=admin_user_id,
            context=context,
            reason=payload.reason,
        )
        log_info('ADMIN_OVERRIDE_REVOKED', {'override_id': override_id, 'admin_user_id': admin_user_id})
        return self._to_output(revoked, now)

    async def get(self, acting_user_id: str, override_id: str) -> OverrideOutput:
        await self._ensure_manager(acting_user_id, 'admin_override_read')
        override = await self._overrides.get_by_id(override_id)
        if override is None:
            raise http_error(HTTPStatus.NOT_FOUND, 'OVERRIDE_NOT_FOUND')
        return self._to_output(override, self._clock())

    async def list_for_user(
        self,
        acting_user_id: str,
        target_user_id: str,
        *,
        active_only: bool = False,
    ) -> OverrideListResponse:
        await self._ensure_manager(acting_user_id, 'admin_override_read')
        now = self._clock()
        overrides = await self._overrides.list_by_target(target_user_id)
        if active_only:
            overrides = [item for item in overrides if item.is_effective(now)]
        return OverrideListResponse(
            target_user_id=target_user_id,
            items=[self._to_output(item, now) for item in overrides],
        )

    async def find_effective(self, target_user_id: str, override_type: str) -> Optional[AdminOverride]:
        """Expiração preguiçosa: um override vencido nunca é retornado, mesmo com `is_active` gravado."""
        return await self._overrides.find_effective(target_user_id, override_type, self._clock())

    async def expire_lapsed_overrides(self) -> int:
        lapsed = await self._overrides.deactivate_expired(self._clock())
        for override in lapsed:
            await self._audit.record(
                'admin_override_expired',
                category=AUDIT_CATEGORY_OVERRIDE,
                success=True,
                actor_id='system',
                target_user_id=override.target_user_id,
                override_id=override.id,
                override_type=override.override_type,
            )
        if lapsed:
            log_info('ADMIN_OVERRIDE_SWEEP', {'deactivated': len(lapsed)})
        return len(lapsed)

    # -- Auxiliares -----------------------------------------------------------

    def _approval_conflict(self, override: AdminOverride, now: datetime) -> Optional[tuple[HTTPStatus, str]]:
        if not override.requires_approval:
            return HTTPStatus.CONFLICT, 'OVERRIDE_APPROVAL_NOT_REQUIRED'
        if override.is_revoked:
            return HTTPStatus.CONFLICT, 'OVERRIDE_ALREADY_REVOKED'
        if override.approved_by is not None:
            return HTTPStatus.CONFLICT, 'OVERRIDE_ALREADY_APPROVED'
        if override.expires_at <= now:
            return HTTPStatus.GONE, 'OVERRIDE_EXPIRED'
        return None

    async def _ensure_manager(self, acting_user_id: str, event_type: str) -> None:
        roles = await self._roles.roles_of(acting_user_id)
        if has_required_role(roles, self._policy.manage_role):
            return
        await self._fail(
            event_type,
            HTTPStatus.FORBIDDEN,
            'UNAUTHORIZED',
            {'actor_id': acting_user_id},
            required_role=self._policy.manage_role,
        )

    async def _record_transition(
        self,
        event_type: str,
        override: AdminOverride,
        *,
        actor_id: str,
        context: Optional[RequestContext],
        **data: Any,
    ) -> None:
        # a transição já foi gravada e não é desfeita (revogação é terminal);
        # a operação falha com AUDIT_UNAVAILABLE para o chamador
        try:
            await self._audit.record(
                event_type,
                category=AUDIT_CATEGORY_OVERRIDE,
                success=True,
                actor_id=actor_id,
                target_user_id=override.target_user_id,
                context=context,
                override_id=override.id,
                override_type=override.override_type,
                **data,
            )
        except HTTPException:
            log_error('ADMIN_OVERRIDE_AUDIT_GAP', {'event_type': event_type, 'override_id': override.id})
            raise

    async def _fail(
        self,
        event_type: str,
        status: HTTPStatus,
        code: str,
        audit_base: dict[str, Any],
        **extra: Any,
    ) -> NoReturn:
        fields = dict(audit_base)
        actor_id = fields.pop('actor_id', None)
        target_user_id = fields.pop('target_user_id', None)
        context = fields.pop('context', None)
        await self._audit.record(
            event_type,
            category=AUDIT_CATEGORY_OVERRIDE,
            success=False,
            actor_id=actor_id,
            target_user_id=target_user_id,
            context=context,
            error=code,
            **fields,
            **extra,
        )
        log_warning(code, {'event_type': event_type, 'actor_id': actor_id, **fields})
        raise http_error(status, code, **extra)

    def _to_output(self, override: AdminOverride, now: datetime) -> OverrideOutput:
        return OverrideOutput(
            id=override.id,
            target_user_id=override.target_user_id,
            override_type=override.override_type,
            requested_by=override.requested_by,
            reason=override.reason,
            emergency_justification=override.emergency_justification,
            requires_approval=override.requires_approval,
            is_active=override.is_effective(now),
            approved_by=override.approved_by,
            approved_at=override.approved_at,
            approval_notes=override.approval_notes,
            expires_at=override.expires_at,
            revoked_at=override.revoked_at,
            revoked_by=override.revoked_by,
            revoke_reason=override.revoke_reason,
            times_used=override.times_used,
            last_used_at=override.last_used_at,
            created_at=override.created_at,
        )
