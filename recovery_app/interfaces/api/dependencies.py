# caminho: recovery_app/interfaces/api/dependencies.py
# Funções:
# - get_request_context(): IP/User-Agent da requisição para a auditoria
# - get_recovery_notifier(): envio SMTP das credenciais e avisos de recuperação
# - get_recovery_manager(), get_override_manager(), get_access_issuer(), get_audit_log():
#   instanciam os casos de uso com adapters concretos (SQLAlchemy + Redis + SMTP)
# - require_staff_role(): exige um papel mínimo da equipe (resolvido no banco)
# - drain_notifications(): aguarda avisos de recuperação ainda em envio

from __future__ import annotations

import asyncio
from functools import lru_cache
from http import HTTPStatus
from typing import Annotated, Awaitable, Callable

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from recovery_app.application.access.use_cases import TemporaryAccessIssuer
from recovery_app.application.overrides.use_cases import AdminOverrideManager
from recovery_app.application.recovery.use_cases import (
    NotificationSender,
    RecoveryAdapters,
    RecoveryRequestManager,
)
from recovery_app.config import get_settings
from recovery_app.config.constants import AUDIT_CATEGORY_STAFF, IP_ADDRESS_LENGTH_MAX, USER_AGENT_LENGTH_MAX
from recovery_app.config.policy import RecoveryPolicy, build_policy
from recovery_app.domain.audit.entities import RequestContext
from recovery_app.domain.overrides.enums import has_required_role
from recovery_app.domain.recovery.verification import CredentialVerifier
from recovery_app.infrastructure.cache.redis import get_redis_client
from recovery_app.infrastructure.db.base import get_session
from recovery_app.infrastructure.repositories.audit_repository import AuditEventRepositoryImpl
from recovery_app.infrastructure.repositories.override_repository import (
    AdminOverrideRepositoryImpl,
    RoleLookupImpl,
)
from recovery_app.infrastructure.repositories.recovery_repository import (
    RecoveryRequestRepositoryImpl,
    TemporaryAccessRepositoryImpl,
)
from recovery_app.infrastructure.security.jwt import JWTService
from recovery_app.shared.audit_log import AuditLog
from recovery_app.shared.auth_dependencies import require_authenticated_staff
from recovery_app.shared.email_notifications import SmtpRecoveryNotifier
from recovery_app.shared.errors import http_error
from recovery_app.shared.rate_limit import NullRecoveryRateLimiter, RecoveryRateLimiter, RedisRecoveryRateLimiter

# Avisos de "recuperação concluída" sobrevivem à requisição que os disparou
NOTIFICATION_TASKS: set[asyncio.Task[None]] = set()


@lru_cache(maxsize=1)
def get_policy() -> RecoveryPolicy:
    return build_policy(get_settings())


@lru_cache(maxsize=1)
def get_credential_verifier() -> CredentialVerifier:
    return CredentialVerifier()


def get_request_context(request: Request) -> RequestContext:
    forwarded = request.headers.get('x-forwarded-for', '')
    # o primeiro endereço da cadeia é o cliente original
    client_ip = forwarded.split(',')[0].strip() or (request.client.host if request.client else None)
    user_agent = request.headers.get('user-agent')
    # valores vindos do cliente são cortados no tamanho das colunas de auditoria
    return RequestContext(
        ip_address=client_ip[:IP_ADDRESS_LENGTH_MAX] if client_ip else None,
        user_agent=user_agent[:USER_AGENT_LENGTH_MAX] if user_agent else None,
    )


RequestContextDep = Annotated[RequestContext, Depends(get_request_context)]
CurrentStaff = Annotated[str, Depends(require_authenticated_staff)]


def get_audit_log(session: AsyncSession = Depends(get_session)) -> AuditLog:
    return AuditLog(AuditEventRepositoryImpl(session))


def _rate_limiter(redis_client, policy: RecoveryPolicy) -> RecoveryRateLimiter:
    if redis_client is None:  # pragma: no cover - sem Redis configurado
        return NullRecoveryRateLimiter()
    return RedisRecoveryRateLimiter(
        redis_client,
        policy.rate_limits,
        prefix=get_settings().RATE_LIMIT_KEY_PREFIX,
    )


def get_access_issuer(
    session: AsyncSession = Depends(get_session),
    audit: AuditLog = Depends(get_audit_log),
) -> TemporaryAccessIssuer:
    settings = get_settings()
    return TemporaryAccessIssuer(
        TemporaryAccessRepositoryImpl(session),
        JWTService(settings.SECRET_KEY, settings.SECRET_ALGORITHM),
        get_policy(),
        audit=audit,
        roles=RoleLookupImpl(session),
    )


def get_recovery_notifier() -> NotificationSender:
    return SmtpRecoveryNotifier(get_settings())


async def get_recovery_manager(
    session: AsyncSession = Depends(get_session),
    redis_client=Depends(get_redis_client),
    audit: AuditLog = Depends(get_audit_log),
    access_issuer: TemporaryAccessIssuer = Depends(get_access_issuer),
    notifier: NotificationSender = Depends(get_recovery_notifier),
) -> RecoveryRequestManager:
    policy = get_policy()
    adapters = RecoveryAdapters(
        requests=RecoveryRequestRepositoryImpl(session),
        overrides=AdminOverrideRepositoryImpl(session),
        roles=RoleLookupImpl(session),
    )
    return RecoveryRequestManager(
        adapters,
        policy,
        rate_limiter=_rate_limiter(redis_client, policy),
        verifier=get_credential_verifier(),
        audit=audit,
        notifier=notifier,
        access_issuer=access_issuer,
        background_tasks=NOTIFICATION_TASKS,
    )


async def get_override_manager(
    session: AsyncSession = Depends(get_session),
    redis_client=Depends(get_redis_client),
    audit: AuditLog = Depends(get_audit_log),
) -> AdminOverrideManager:
    policy = get_policy()
    return AdminOverrideManager(
        AdminOverrideRepositoryImpl(session),
        RoleLookupImpl(session),
        policy,
        audit=audit,
        rate_limiter=_rate_limiter(redis_client, policy),
    )


def require_staff_role(required_role: str) -> Callable[..., Awaitable[str]]:
    """Dependência que devolve o id da equipe autenticada com ao menos ``required_role``."""

    async def dependency(
        request: Request,
        staff_id: CurrentStaff,
        session: AsyncSession = Depends(get_session),
        audit: AuditLog = Depends(get_audit_log),
    ) -> str:
        roles = await RoleLookupImpl(session).roles_of(staff_id)
        if has_required_role(roles, required_role):
            return staff_id
        await audit.record(
            'staff_access_denied',
            category=AUDIT_CATEGORY_STAFF,
            success=False,
            actor_id=staff_id,
            context=get_request_context(request),
            path=request.url.path,
            error='UNAUTHORIZED',
        )
        raise http_error(HTTPStatus.FORBIDDEN, 'UNAUTHORIZED', required_role=required_role)

    return dependency


async def drain_notifications() -> None:
    if NOTIFICATION_TASKS:
        await asyncio.gather(*list(NOTIFICATION_TASKS), return_exceptions=True)
