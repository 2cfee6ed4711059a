# caminho: recovery_app/application/recovery/use_cases.py
# Funções:
# - Casos de uso da recuperação de MFA: iniciar, verificar, consultar status,
#   revisar identidade, rejeitar, expirar e expurgar requisições

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from http import HTTPStatus
from typing import Any, NoReturn, Optional, Protocol, assert_never

from fastapi import HTTPException

from recovery_app.application.access.use_cases import TemporaryAccessIssuer
from recovery_app.application.recovery.dto import (
    IdentityReviewInput,
    RecoveryInitiateInput,
    RecoveryInitiationResult,
    RecoveryRejectInput,
    RecoveryAdminStatusResponse,
    RecoveryStatusResponse,
    RecoveryVerificationResult,
    RecoveryVerifyInput,
)
from recovery_app.config.constants import AUDIT_CATEGORY_RECOVERY
from recovery_app.config.policy import RecoveryPolicy
from recovery_app.domain.audit.entities import RequestContext
from recovery_app.domain.overrides.enums import has_required_role
from recovery_app.domain.overrides.repositories import AdminOverrideRepository, RoleLookup
from recovery_app.domain.recovery.entities import RecoveryRequest
from recovery_app.domain.recovery.enums import NEXT_STEPS, STATUS_MESSAGES, RecoveryMethod
from recovery_app.domain.recovery.repositories import RecoveryRequestRepository
from recovery_app.domain.recovery.verification import CredentialVerifier
from recovery_app.shared.audit_log import AuditLog
from recovery_app.shared.clock import Clock, utcnow
from recovery_app.shared.errors import http_error
from recovery_app.shared.logging import log_error, log_info, log_warning
from recovery_app.shared.rate_limit import RecoveryRateLimiter


@dataclass(slots=True)
class RecoveryAdapters:
    requests: RecoveryRequestRepository
    overrides: AdminOverrideRepository
    roles: RoleLookup


class NotificationSender(Protocol):
    async def send_email(self, address: str, token: str, *, expires_at: datetime) -> bool: ...

    async def send_sms(self, address: str, code: str, *, expires_at: datetime) -> bool: ...

    async def send_recovery_completed(self, address: str, *, method: str, completed_at: datetime) -> bool: ...


class RecoveryRequestManager:
    def __init__(
        self,
        adapters: RecoveryAdapters,
        policy: RecoveryPolicy,
        *,
        rate_limiter: RecoveryRateLimiter,
        verifier: CredentialVerifier,
        audit: AuditLog,
        notifier: NotificationSender,
        access_issuer: TemporaryAccessIssuer,
        clock: Clock = utcnow,
        background_tasks: Optional[set[asyncio.Task[None]]] = None,
    ) -> None:
        self._requests = adapters.requests
        self._overrides = adapters.overrides
        self._roles = adapters.roles
        self._policy = policy
        self._rate_limiter = rate_limiter
        self._verifier = verifier
        self._audit = audit
        self._notifier = notifier
        self._access = access_issuer
        self._clock = clock
        # compartilhado entre instâncias para que o desligamento aguarde os avisos em curso
        self._background = background_tasks if background_tasks is not None else set()

    # -- Casos de Uso ---------------------------------------------------------

    async def initiate(
        self,
        payload: RecoveryInitiateInput,
        context: Optional[RequestContext] = None,
    ) -> RecoveryInitiationResult:
        now = self._clock()
        context = context or RequestContext()
        method = payload.method.strip().lower()
        audit_base: dict[str, Any] = {'target_user_id': payload.user_id, 'context': context, 'method': method}

        method_policy = self._policy.methods.get(method)
        if method_policy is None or not method_policy.enabled:
            await self._fail('mfa_recovery_initiated', HTTPStatus.BAD_REQUEST, 'UNSUPPORTED_METHOD', audit_base)

        decision = await self._rate_limiter.acquire(payload.user_id, method)
        if not decision.allowed:
            await self._fail(
                'mfa_recovery_initiated',
                HTTPStatus.TOO_MANY_REQUESTS,
                'RATE_LIMITED',
                audit_base,
                cooldown_until=decision.cooldown_until.isoformat() if decision.cooldown_until else None,
                retry_in_seconds=decision.retry_in_seconds(now),
            )

        # requisições vencidas ainda ocupam slot até serem marcadas como expiradas
        for stale in await self._requests.expire_pending(now, user_id=payload.user_id):
            await self._record_expired(stale, context=context)

        secret = self._verifier.generate_secret(method_policy)
        request = RecoveryRequest(
            user_id=payload.user_id,
            method=method,
            secret_hash=self._verifier.hash_secret(secret),
            expires_at=now + method_policy.validity,
            max_attempts=method_policy.max_attempts,
            contact_info=payload.contact_info,
            identity_documents=[doc.strip() for doc in payload.identity_documents if doc.strip()],
            emergency_details=payload.emergency_details,
            request_ip=context.ip_address,
            user_agent=context.user_agent,
            created_at=now,
        )

        stored = await self._requests.add(request, max_pending=self._policy.max_concurrent_requests)
        if stored is None:
            await self._fail(
                'mfa_recovery_initiated',
                HTTPStatus.CONFLICT,
                'TOO_MANY_CONCURRENT_REQUESTS',
                audit_base,
                max_pending=self._policy.max_concurrent_requests,
            )

        try:
            await self._audit.record(
                'mfa_recovery_initiated',
                category=AUDIT_CATEGORY_RECOVERY,
                success=True,
                target_user_id=stored.user_id,
                context=context,
                request_id=stored.id,
                method=method,
                expires_at=stored.expires_at.isoformat(),
            )
        except HTTPException:
            await self._requests.remove(stored.id)
            raise

        if not await self._dispatch(stored, secret):
            # nenhum segredo pode ficar pendente sem ter sido entregue
            await self._requests.remove(stored.id)
            await self._fail(
                'mfa_recovery_dispatch_failed',
                HTTPStatus.BAD_GATEWAY,
                'DISPATCH_FAILED',
                {**audit_base, 'request_id': stored.id},
            )

        log_info(
            'MFA_RECOVERY_INITIATED',
            {'request_id': stored.id, 'user_id': stored.user_id, 'method': method, 'slot': stored.pending_slot},
        )
        return RecoveryInitiationResult(
            request_id=stored.id,
            method=method,
            expires_at=stored.expires_at,
            next_steps=NEXT_STEPS[method],
        )

    async def verify(
        self,
        request_id: str,
        payload: RecoveryVerifyInput,
        context: Optional[RequestContext] = None,
    ) -> RecoveryVerificationResult:
        now = self._clock()
        context = context or RequestContext()
        audit_base: dict[str, Any] = {'context': context, 'request_id': request_id}

        request = await self._requests.get_by_id(request_id)
        if request is None or request.status != 'pending':
            if request is not None:
                audit_base['target_user_id'] = request.user_id
            await self._fail('mfa_recovery_verification_failed', HTTPStatus.NOT_FOUND, 'INVALID_OR_EXPIRED', audit_base)
        audit_base.update(target_user_id=request.user_id, method=request.method)

        if request.is_expired(now):
            await self._expire(request, now, audit_base)

        if request.attempts >= request.max_attempts:
            await self._fail('mfa_recovery_verification_failed', HTTPStatus.LOCKED, 'LOCKED', audit_base)

        override = None
        if request.method == 'admin_assisted':
            override = await self._overrides.find_effective(request.user_id, 'emergency_access', now)

        outcome = self._verifier.verify(request, payload.credential, emergency_override_active=override is not None)

        updated = await self._requests.register_attempt(request.id, succeeded=outcome.verified, now=now)
        if updated is None:
            # outra verificação concorrente alterou a requisição primeiro
            current = await self._requests.get_by_id(request.id)
            if current is None or current.is_terminal:
                await self._fail(
                    'mfa_recovery_verification_failed', HTTPStatus.NOT_FOUND, 'INVALID_OR_EXPIRED', audit_base
                )
            await self._fail('mfa_recovery_verification_failed', HTTPStatus.LOCKED, 'LOCKED', audit_base)

        if not outcome.verified:
            await self._fail(
                'mfa_recovery_verification_failed',
                HTTPStatus.UNAUTHORIZED,
                'INVALID_CREDENTIAL',
                {**audit_base, 'reason': outcome.reason},
                attempts_remaining=updated.attempts_remaining,
            )

        if override is not None:
            await self._overrides.register_use(override.id, now)

        issued = await self._access.issue(updated.user_id, source='mfa_recovery', source_id=updated.id)
        try:
            await self._audit.record(
                'mfa_recovery_completed',
                category=AUDIT_CATEGORY_RECOVERY,
                success=True,
                target_user_id=updated.user_id,
                context=context,
                request_id=updated.id,
                method=updated.method,
                grant_id=issued.grant_id,
                attempts=updated.attempts,
                override_id=override.id if override else None,
            )
        except HTTPException:
            await self._access.discard(issued.grant_id, reason='audit_unavailable')
            raise

        log_info('MFA_RECOVERY_COMPLETED', {'request_id': updated.id, 'user_id': updated.user_id, 'method': updated.method})
        if self._policy.notify_on_success and updated.contact_info:
            self._schedule_success_notice(updated, now)

        return RecoveryVerificationResult(
            request_id=updated.id,
            access_granted=True,
            temporary_token=issued.token,
            grant_id=issued.grant_id,
            expires_at=issued.expires_at,
        )

    async def get_status(self, request_id: str) -> RecoveryStatusResponse:
        request = await self._requests.get_by_id(request_id)
        if request is None:
            raise http_error(HTTPStatus.NOT_FOUND, 'INVALID_OR_EXPIRED')
        return self._to_status(request, self._clock())

    async def record_identity_review(
        self,
        reviewer_id: str,
        request_id: str,
        payload: IdentityReviewInput,
        context: Optional[RequestContext] = None,
    ) -> RecoveryAdminStatusResponse:
        """Callback explícito da revisão manual de documentos.

        Só ``verified`` libera a verificação do token; ``rejected`` encerra a requisição.
        """
        now = self._clock()
        audit_base: dict[str, Any] = {'actor_id': reviewer_id, 'context': context, 'request_id': request_id}
        await self._ensure_role(reviewer_id, self._policy.review_role, 'mfa_recovery_identity_reviewed', audit_base)

        request = await self._requests.get_by_id(request_id)
        if request is None or request.status != 'pending':
            await self._fail('mfa_recovery_identity_reviewed', HTTPStatus.NOT_FOUND, 'INVALID_OR_EXPIRED', audit_base)
        audit_base.update(target_user_id=request.user_id, method=request.method)

        if request.method != 'identity_verification':
            await self._fail('mfa_recovery_identity_reviewed', HTTPStatus.BAD_REQUEST, 'UNSUPPORTED_METHOD', audit_base)
        if request.is_expired(now):
            await self._expire(request, now, audit_base)

        updated = await self._requests.set_identity_review(
            request.id,
            review_status=payload.decision,
            reviewer_id=reviewer_id,
            notes=payload.notes,
        )
        if updated is not None and payload.decision == 'rejected':
            updated = await self._requests.transition(
                request.id,
                to_status='rejected',
                now=now,
                processed_by=reviewer_id,
                rejection_reason=payload.notes or 'identity_review_rejected',
            )
        if updated is None:
            await self._fail('mfa_recovery_identity_reviewed', HTTPStatus.NOT_FOUND, 'INVALID_OR_EXPIRED', audit_base)

        await self._audit.record(
            'mfa_recovery_identity_reviewed',
            category=AUDIT_CATEGORY_RECOVERY,
            success=True,
            actor_id=reviewer_id,
            target_user_id=updated.user_id,
            context=context,
            request_id=updated.id,
            decision=payload.decision,
        )
        log_info('MFA_RECOVERY_IDENTITY_REVIEWED', {'request_id': updated.id, 'decision': payload.decision})
        return self._to_admin_status(updated, now)

    async def reject(
        self,
        admin_user_id: str,
        request_id: str,
        payload: RecoveryRejectInput,
        context: Optional[RequestContext] = None,
    ) -> RecoveryAdminStatusResponse:
        now = self._clock()
        audit_base: dict[str, Any] = {'actor_id': admin_user_id, 'context': context, 'request_id': request_id}
        await self._ensure_role(admin_user_id, self._policy.manage_role, 'mfa_recovery_rejected', audit_base)

        rejected = await self._requests.transition(
            request_id,
            to_status='rejected',
            now=now,
            processed_by=admin_user_id,
            rejection_reason=payload.reason,
        )
        if rejected is None:
            current = await self._requests.get_by_id(request_id)
            if current is not None:
                audit_base['target_user_id'] = current.user_id
            await self._fail('mfa_recovery_rejected', HTTPStatus.NOT_FOUND, 'INVALID_OR_EXPIRED', audit_base)

        await self._audit.record(
            'mfa_recovery_rejected',
            category=AUDIT_CATEGORY_RECOVERY,
            success=True,
            actor_id=admin_user_id,
            target_user_id=rejected.user_id,
            context=context,
            request_id=rejected.id,
            reason=payload.reason,
        )
        log_info('MFA_RECOVERY_REJECTED', {'request_id': rejected.id, 'admin_user_id': admin_user_id})
        return self._to_admin_status(rejected, now)

    async def expire_stale_requests(self) -> int:
        expired = await self._requests.expire_pending(self._clock())
        for request in expired:
            await self._record_expired(request)
        if expired:
            log_info('MFA_RECOVERY_SWEEP', {'expired': len(expired)})
        return len(expired)

    async def purge_expired_requests(self) -> int:
        cutoff = self._clock() - self._policy.purge_after
        purged = await self._requests.purge_terminal(cutoff)
        if purged:
            log_info('MFA_RECOVERY_PURGED', {'purged': purged, 'cutoff': cutoff.isoformat()})
        return purged

    async def wait_for_notifications(self) -> None:
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -- Auxiliares -----------------------------------------------------------

    async def _dispatch(self, request: RecoveryRequest, secret: str) -> bool:
        method: RecoveryMethod = request.method
        address = request.contact_info or ''
        try:
            match method:
                case 'sms':
                    return await self._notifier.send_sms(address, secret, expires_at=request.expires_at)
                case 'email' | 'identity_verification' | 'admin_assisted':
                    return await self._notifier.send_email(address, secret, expires_at=request.expires_at)
                case _:
                    assert_never(method)
        except Exception as exc:
            log_error('MFA_RECOVERY_DISPATCH_ERROR', {'request_id': request.id, 'method': method, 'error': repr(exc)})
            return False

    def _schedule_success_notice(self, request: RecoveryRequest, completed_at: datetime) -> None:
        task = asyncio.create_task(self._notify_success(request, completed_at))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _notify_success(self, request: RecoveryRequest, completed_at: datetime) -> None:
        try:
            sent = await self._notifier.send_recovery_completed(
                request.contact_info or '',
                method=request.method,
                completed_at=completed_at,
            )
        except Exception as exc:
            log_error('MFA_RECOVERY_SUCCESS_NOTICE_ERROR', {'request_id': request.id, 'error': repr(exc)})
            return
        if not sent:
            log_warning('MFA_RECOVERY_SUCCESS_NOTICE_NOT_SENT', {'request_id': request.id})

    async def _expire(self, request: RecoveryRequest, now: datetime, audit_base: dict[str, Any]) -> NoReturn:
        expired = await self._requests.transition(request.id, to_status='expired', now=now)
        if expired is None:
            # outra chamada já encerrou a requisição
            await self._fail('mfa_recovery_verification_failed', HTTPStatus.NOT_FOUND, 'INVALID_OR_EXPIRED', audit_base)
        await self._record_expired(expired, context=audit_base.get('context'))
        raise http_error(HTTPStatus.GONE, 'EXPIRED')

    async def _record_expired(self, request: RecoveryRequest, *, context: Optional[RequestContext] = None) -> None:
        await self._audit.record(
            'mfa_recovery_expired',
            category=AUDIT_CATEGORY_RECOVERY,
            success=False,
            target_user_id=request.user_id,
            context=context,
            request_id=request.id,
            method=request.method,
            error='EXPIRED',
        )

    async def _ensure_role(self, user_id: str, required_role: str, event_type: str, audit_base: dict[str, Any]) -> None:
        roles = await self._roles.roles_of(user_id)
        if not has_required_role(roles, required_role):
            await self._fail(event_type, HTTPStatus.FORBIDDEN, 'UNAUTHORIZED', audit_base, required_role=required_role)

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
            category=AUDIT_CATEGORY_RECOVERY,
            success=False,
            actor_id=actor_id,
            target_user_id=target_user_id,
            context=context,
            error=code,
            **fields,
            **extra,
        )
        log_warning(code, {'event_type': event_type, 'target_user_id': target_user_id, **fields})
        raise http_error(status, code, **extra)

    def _to_status(self, request: RecoveryRequest, now: datetime) -> RecoveryStatusResponse:
        status = request.effective_status(now)
        return RecoveryStatusResponse(
            request_id=request.id,
            method=request.method,
            status=status,
            identity_review_status=request.identity_review_status,
            attempts_remaining=request.attempts_remaining,
            expires_at=request.expires_at,
            created_at=request.created_at,
            completed_at=request.completed_at,
            message=STATUS_MESSAGES.get(status, ''),
        )

    def _to_admin_status(self, request: RecoveryRequest, now: datetime) -> RecoveryAdminStatusResponse:
        public = self._to_status(request, now)
        return RecoveryAdminStatusResponse(user_id=request.user_id, **public.model_dump())
