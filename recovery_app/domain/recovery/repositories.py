# caminho: recovery_app/domain/recovery/repositories.py
# Funções:
# - RecoveryRequestRepository: persistência das requisições de recuperação
# - TemporaryAccessRepository: persistência dos acessos temporários
#
# Toda mutação de estado é condicional (compare-and-set): retorna None quando a
# linha não atende mais à condição, sem sobrescrever o estado atual.

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, Sequence

from recovery_app.domain.recovery.entities import RecoveryRequest, TemporaryAccessGrant


class RecoveryRequestRepository(Protocol):
    async def add(self, request: RecoveryRequest, *, max_pending: int) -> Optional[RecoveryRequest]:
        """Persiste em um slot pendente livre (1..max_pending); None se todos ocupados."""
        ...

    async def get_by_id(self, request_id: str) -> Optional[RecoveryRequest]: ...

    async def remove(self, request_id: str) -> bool: ...

    async def list_by_user(self, user_id: str) -> Sequence[RecoveryRequest]: ...

    async def register_attempt(
        self,
        request_id: str,
        *,
        succeeded: bool,
        now: datetime,
    ) -> Optional[RecoveryRequest]:
        """Incrementa `attempts` (e conclui quando `succeeded`) se pendente e abaixo do limite."""
        ...

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
        """Move uma requisição `pending` para `to_status`."""
        ...

    async def set_identity_review(
        self,
        request_id: str,
        *,
        review_status: str,
        reviewer_id: str,
        notes: Optional[str] = None,
    ) -> Optional[RecoveryRequest]: ...

    async def expire_pending(self, now: datetime, *, user_id: Optional[str] = None) -> Sequence[RecoveryRequest]: ...

    async def purge_terminal(self, expired_before: datetime) -> int: ...


class TemporaryAccessRepository(Protocol):
    async def add(self, grant: TemporaryAccessGrant) -> TemporaryAccessGrant: ...

    async def get_by_id(self, grant_id: str) -> Optional[TemporaryAccessGrant]: ...

    async def revoke(
        self,
        grant_id: str,
        *,
        revoked_by: str,
        reason: str,
        now: datetime,
    ) -> Optional[TemporaryAccessGrant]: ...

    async def list_active(self, user_id: str, now: datetime) -> Sequence[TemporaryAccessGrant]: ...
