# caminho: recovery_app/application/recovery/dto.py
# Funções:
# - DTOs Pydantic para entrada/saída dos casos de uso de recuperação de MFA

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from recovery_app.config.constants import (
    CONTACT_INFO_LENGTH_MAX,
    CREDENTIAL_LENGTH_MAX,
    CREDENTIAL_LENGTH_MIN,
    NOTES_LENGTH_MAX,
    REASON_LENGTH_MAX,
    USER_ID_LENGTH_MAX,
    USER_ID_LENGTH_MIN,
)
from recovery_app.domain.recovery.enums import IdentityReviewDecision


class RecoveryInitiateInput(BaseModel):
    """Pedido de recuperação.

    ``method`` é texto livre de propósito: métodos desconhecidos ou desativados
    são recusados pelo caso de uso com ``UNSUPPORTED_METHOD``, não pela validação.
    """

    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    user_id: str = Field(min_length=USER_ID_LENGTH_MIN, max_length=USER_ID_LENGTH_MAX)
    method: str = Field(min_length=1, max_length=32)
    contact_info: str = Field(min_length=3, max_length=CONTACT_INFO_LENGTH_MAX)
    identity_documents: list[str] = Field(default_factory=list, max_length=10)
    emergency_details: Optional[str] = Field(default=None, max_length=NOTES_LENGTH_MAX)

    @model_validator(mode='after')
    def _method_metadata(self) -> 'RecoveryInitiateInput':
        method = self.method.lower()
        if method == 'identity_verification' and not [doc for doc in self.identity_documents if doc.strip()]:
            raise ValueError('identity_documents é obrigatório para identity_verification')
        if method == 'admin_assisted' and not (self.emergency_details or '').strip():
            raise ValueError('emergency_details é obrigatório para admin_assisted')
        return self


class RecoveryInitiationResult(BaseModel):
    request_id: str
    method: str
    expires_at: datetime
    next_steps: str


class RecoveryVerifyInput(BaseModel):
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    credential: str = Field(min_length=CREDENTIAL_LENGTH_MIN, max_length=CREDENTIAL_LENGTH_MAX)


class RecoveryVerificationResult(BaseModel):
    request_id: str
    access_granted: bool
    temporary_token: Optional[str] = None
    grant_id: Optional[str] = None
    expires_at: Optional[datetime] = None


class RecoveryStatusResponse(BaseModel):
    request_id: str
    method: str
    status: str
    identity_review_status: str
    attempts_remaining: int
    expires_at: datetime
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    message: str


# Visão da equipe: inclui o titular da requisição
class RecoveryAdminStatusResponse(RecoveryStatusResponse):
    user_id: str


class IdentityReviewInput(BaseModel):
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    decision: IdentityReviewDecision
    notes: Optional[str] = Field(default=None, max_length=NOTES_LENGTH_MAX)


class RecoveryRejectInput(BaseModel):
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    reason: str = Field(min_length=3, max_length=REASON_LENGTH_MAX)


class MaintenanceSweepResult(BaseModel):
    expired_requests: int
    purged_requests: int
    lapsed_overrides: int
