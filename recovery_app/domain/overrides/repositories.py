# caminho: recovery_app/domain/overrides/repositories.py
# Funções:
# - AdminOverrideRepository: persistência dos overrides administrativos
# - RoleLookup: consulta de papéis da equipe (autorização)

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, Sequence

from recovery_app.domain.overrides.entities import AdminOverride


class AdminOverrideRepository(Protocol):
    async def add(self, override: AdminOverride) -> AdminOverride: ...

    async def get_by_id(self, override_id: str) -> Optional[AdminOverride]: ...

    async def remove(self, override_id: str) -> bool: ...

    async def list_by_target(self, target_user_id: str) -> Sequence[AdminOverride]: ...

    async def approve(
        self,
        override_id: str,
        *,
        approver_id: str,
        notes: Optional[str],
        now: datetime,
    ) -> Optional[AdminOverride]:
        """Ativa somente se ainda exige aprovação, sem aprovador e não revogado."""
        ...

    async def revoke(
        self,
        override_id: str,
        *,
        revoked_by: str,
        reason: str,
        now: datetime,
    ) -> Optional[AdminOverride]:
        """Desativa somente se ainda não revogado."""
        ...

    async def find_effective(
        self,
        target_user_id: str,
        override_type: str,
        now: datetime,
    ) -> Optional[AdminOverride]: ...

    async def register_use(self, override_id: str, now: datetime) -> Optional[AdminOverride]: ...

    async def deactivate_expired(self, now: datetime) -> Sequence[AdminOverride]: ...


class RoleLookup(Protocol):
    async def roles_of(self, user_id: str) -> set[str]: ...
