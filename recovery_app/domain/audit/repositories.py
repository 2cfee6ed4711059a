# caminho: recovery_app/domain/audit/repositories.py
# Funções:
# - AuditEventRepository: armazenamento somente-inclusão de eventos de auditoria

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from recovery_app.domain.audit.entities import AuditEvent


class AuditEventRepository(Protocol):
    async def append(self, event: AuditEvent) -> AuditEvent: ...

    async def list(
        self,
        *,
        target_user_id: Optional[str] = None,
        category: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> Sequence[AuditEvent]: ...
