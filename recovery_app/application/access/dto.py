# caminho: recovery_app/application/access/dto.py
# Funções:
# - DTOs Pydantic para inspeção e revogação de acessos temporários

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from recovery_app.config.constants import REASON_LENGTH_MAX


class AccessInspectInput(BaseModel):
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    token: str = Field(min_length=1, max_length=4096)


class AccessInspectResult(BaseModel):
    valid: bool
    user_id: Optional[str] = None
    grant_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    reason: Optional[str] = None


class TemporaryAccessGrantOutput(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    source: str
    source_id: Optional[str]
    expires_at: datetime
    revoked_at: Optional[datetime]
    revoked_by: Optional[str]
    revoke_reason: Optional[str]
    created_at: Optional[datetime]


class TemporaryAccessGrantListResponse(BaseModel):
    user_id: str
    items: list[TemporaryAccessGrantOutput]


class AccessRevokeInput(BaseModel):
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    reason: str = Field(min_length=3, max_length=REASON_LENGTH_MAX)
