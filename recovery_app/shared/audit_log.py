# caminho: recovery_app/shared/audit_log.py
# Funções:
# - AuditLog: grava eventos de auditoria; falha do armazenamento interrompe a operação

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Optional, Sequence

from recovery_app.domain.audit.entities import AuditEvent, RequestContext
from recovery_app.domain.audit.repositories import AuditEventRepository
from recovery_app.shared.clock import Clock, utcnow
from recovery_app.shared.errors import http_error
from recovery_app.shared.logging import log_error, log_info


class AuditLog:
    """Trilha de auditoria somente-inclusão.

    Não existe modo "best effort": se o repositório falhar, a exceção vira
    ``AUDIT_UNAVAILABLE`` e quem chamou precisa desfazer o que já gravou.
    """

    def __init__(self, repository: AuditEventRepository, *, clock: Clock = utcnow) -> None:
        self._repository = repository
        self._clock = clock

    async def append(self, event: AuditEvent) -> AuditEvent:
        try:
            stored = await self._repository.append(event)
        except Exception as exc:
            log_error(
                'AUDIT_APPEND_FAILED',
                {'event_type': event.event_type, 'category': event.category, 'error': repr(exc)},
            )
            raise http_error(HTTPStatus.SERVICE_UNAVAILABLE, 'AUDIT_UNAVAILABLE') from exc

        log_info(
            'AUDIT_EVENT',
            {
                'event_type': event.event_type,
                'success': event.success,
                'actor_id': event.actor_id,
                'target_user_id': event.target_user_id,
            },
        )
        return stored

    async def record(
        self,
        event_type: str,
        *,
        category: str,
        success: bool,
        actor_id: Optional[str] = None,
        target_user_id: Optional[str] = None,
        context: Optional[RequestContext] = None,
        **data: Any,
    ) -> AuditEvent:
        context = context or RequestContext()
        event = AuditEvent(
            event_type=event_type,
            category=category,
            success=success,
            created_at=self._clock(),
            actor_id=actor_id,
            target_user_id=target_user_id,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            data={key: value for key, value in data.items() if value is not None},
        )
        return await self.append(event)

    async def list_events(
        self,
        *,
        target_user_id: Optional[str] = None,
        category: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> Sequence[AuditEvent]:
        return await self._repository.list(
            target_user_id=target_user_id,
            category=category,
            offset=max(0, offset),
            limit=max(1, limit),
        )
