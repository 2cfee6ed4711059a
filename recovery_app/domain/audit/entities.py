# caminho: recovery_app/domain/audit/entities.py
# Funções:
# - AuditEvent: registro imutável de cada transição de estado
# - RequestContext: origem da requisição (IP/User-Agent) anexada aos eventos

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from recovery_app.domain.recovery.entities import new_identifier


@dataclass(slots=True, frozen=True)
class RequestContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(slots=True, frozen=True)
class AuditEvent:
    event_type: str
    category: str
    success: bool
    created_at: datetime
    actor_id: Optional[str] = None
    target_user_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_identifier)
