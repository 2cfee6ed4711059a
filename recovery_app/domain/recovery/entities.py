# caminho: recovery_app/domain/recovery/entities.py
# Funções:
# - RecoveryRequest: entidade agregadora do fluxo de recuperação de MFA
# - TemporaryAccessGrant: acesso temporário emitido após recuperação concluída

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import uuid4

from recovery_app.domain.recovery.enums import (
    IdentityReviewStatus,
    RecoveryMethod,
    RecoveryStatus,
    is_terminal_status,
)


def new_identifier() -> str:
    return str(uuid4())


@dataclass(slots=True)
class RecoveryRequest:
    user_id: str
    method: RecoveryMethod
    secret_hash: str
    expires_at: datetime
    max_attempts: int
    status: RecoveryStatus = 'pending'
    attempts: int = 0
    contact_info: Optional[str] = None
    identity_documents: list[str] = field(default_factory=list)
    identity_review_status: IdentityReviewStatus = 'pending'
    emergency_details: Optional[str] = None
    request_ip: Optional[str] = None
    user_agent: Optional[str] = None
    processed_by: Optional[str] = None
    processing_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    # Ocupa um dos slots 1..N enquanto pendente; None quando terminal
    pending_slot: Optional[int] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    id: str = field(default_factory=new_identifier)

    @property
    def is_terminal(self) -> bool:
        return is_terminal_status(self.status)

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def effective_status(self, now: datetime) -> str:
        if self.status == 'pending' and self.is_expired(now):
            return 'expired'
        return self.status


@dataclass(slots=True)
class TemporaryAccessGrant:
    user_id: str
    expires_at: datetime
    source: str = 'mfa_recovery'
    source_id: Optional[str] = None
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None
    revoke_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    id: str = field(default_factory=new_identifier)

    def is_active(self, now: datetime) -> bool:
        return self.revoked_at is None and self.expires_at > now
