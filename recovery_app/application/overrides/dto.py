# caminho: recovery_app/application/overrides/dto.py
# Funções:
# - DTOs Pydantic para criação, aprovação, revogação e consulta de overrides administrativos

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from recovery_app.config.constants import NOTES_LENGTH_MAX, REASON_LENGTH_MAX, USER_ID_LENGTH_MAX, USER_ID_LENGTH_MIN


class OverrideCreateInput(BaseModel):
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    target_user_id: str = Field(min_length=USER_ID_LENGTH_MIN, max_length=USER_ID_LENGTH_MAX)
    override_type: str = Field(min_length=1, max_length=32)
    duration_hours: float = Field(allow_inf_nan=False)
    # justificativa; obrigatória conforme o tipo (validado no caso de uso)
    reason: str = Field(default='', max_length=REASON_LENGTH_MAX)
    emergency_justification: Optional[str] = Field(default=None, max_length=NOTES_LENGTH_MAX)


class OverrideCreateResult(BaseModel):
    override_id: str
    override_type: str
    expires_at: datetime
    requires_approval: bool
    is_active: bool


class OverrideApproveInput(BaseModel):
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    notes: Optional[str] = Field(default=None, max_length=NOTES_LENGTH_MAX)


class OverrideRevokeInput(BaseModel):
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    reason: str = Field(min_length=3, max_length=REASON_LENGTH_MAX)


class OverrideOutput(BaseModel):
    id: str
    target_user_id: str
    override_type: str
    requested_by: str
    reason: str
    emergency_justification: Optional[str]
    requires_approval: bool
    # ativo efetivo: considera aprovação, revogação e expiração no momento da leitura
    is_active: bool
    approved_by: Optional[str]
    approved_at: Optional[datetime]
    approval_notes: Optional[str]
    expires_at: datetime
    revoked_at: Optional[datetime]
    revoked_by: Optional[str]
    revoke_reason: Optional[str]
    times_used: int
    last_used_at: Optional[datetime]
    created_at: Optional[datetime]


class OverrideListResponse(BaseModel):
    target_user_id: str
    items: list[OverrideOutput]
