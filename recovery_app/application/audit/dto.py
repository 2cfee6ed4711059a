# caminho: recovery_app/application/audit/dto.py
# Funções:
# - DTOs de leitura da trilha de auditoria (revisão de conformidade)

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditEventOutput(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_type: str
    category: str
    success: bool
    actor_id: Optional[str] = None
    target_user_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class AuditEventListResponse(BaseModel):
    offset: int
    limit: int
    items: list[AuditEventOutput]
