# caminho: recovery_app/domain/overrides/entities.py
# Funções:
# - AdminOverride: concessão administrativa, com prazo, que ignora ou reconfigura o MFA

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from recovery_app.domain.overrides.enums import OverrideType
from recovery_app.domain.recovery.entities import new_identifier


@dataclass(slots=True)
class AdminOverride:
    target_user_id: str
    override_type: OverrideType
    requested_by: str
    reason: str
    expires_at: datetime
    requires_approval: bool
    is_active: bool
    emergency_justification: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    approval_notes: Optional[str] = None
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None
    revoke_reason: Optional[str] = None
    times_used: int = 0
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    id: str = field(default_factory=new_identifier)

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    @property
    def is_awaiting_approval(self) -> bool:
        return self.requires_approval and self.approved_by is None and not self.is_revoked

    def is_effective(self, now: datetime) -> bool:
        """Expiração preguiçosa: `is_active` gravado não vale após `expires_at`."""
        return self.is_active and not self.is_revoked and self.expires_at > now
