# caminho: recovery_app/interfaces/api/routers/audit.py
# Funções:
# - Consulta paginada da trilha de auditoria
# - Varredura de manutenção (expira requisições/overrides vencidos e expurga antigos)

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from recovery_app.application.audit.dto import AuditEventListResponse, AuditEventOutput
from recovery_app.application.overrides.use_cases import AdminOverrideManager
from recovery_app.application.recovery.dto import MaintenanceSweepResult
from recovery_app.application.recovery.use_cases import RecoveryRequestManager
from recovery_app.config import get_settings
from recovery_app.domain.overrides.enums import STAFF_ROLE_MANAGER
from recovery_app.interfaces.api.dependencies import (
    get_audit_log,
    get_override_manager,
    get_recovery_manager,
    require_staff_role,
)
from recovery_app.shared.audit_log import AuditLog
from recovery_app.shared.logging import log_info

router = APIRouter(prefix='/admin/mfa', tags=['mfa-audit'])

require_manager = require_staff_role(STAFF_ROLE_MANAGER)


@router.get(
    '/audit',
    response_model=AuditEventListResponse,
    summary='Listar eventos de auditoria',
    description="""Retorna eventos do mais recente ao mais antigo, filtrando por usuário alvo e/ou categoria
(`mfa_recovery`, `admin_override`, `temporary_access`, `staff`).

Use os parâmetros `offset` e `limit` para navegar entre páginas.
""",
)
async def list_audit_events(
    target_user_id: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    offset: int = Query(0, ge=0),
    limit: int = Query(get_settings().PAGINATION_LIMIT, ge=1, le=get_settings().PAGINATION_MAX_LIMIT),
    staff_id: str = Depends(require_manager),
    audit: AuditLog = Depends(get_audit_log),
) -> AuditEventListResponse:
    events = await audit.list_events(target_user_id=target_user_id, category=category, offset=offset, limit=limit)
    return AuditEventListResponse(
        offset=offset,
        limit=limit,
        items=[AuditEventOutput.model_validate(event) for event in events],
    )


@router.post(
    '/maintenance/sweep',
    response_model=MaintenanceSweepResult,
    summary='Executar varredura de manutenção',
    description="""Marca como expiradas as requisições pendentes vencidas, desativa overrides vencidos
e remove requisições encerradas há mais de `RECOVERY_PURGE_AFTER_SECONDS`.

Pode ser chamado por um agendador externo (cron).
""",
)
async def run_maintenance_sweep(
    staff_id: str = Depends(require_manager),
    recovery: RecoveryRequestManager = Depends(get_recovery_manager),
    overrides: AdminOverrideManager = Depends(get_override_manager),
) -> MaintenanceSweepResult:
    result = MaintenanceSweepResult(
        expired_requests=await recovery.expire_stale_requests(),
        purged_requests=await recovery.purge_expired_requests(),
        lapsed_overrides=await overrides.expire_lapsed_overrides(),
    )
    log_info('MAINTENANCE_SWEEP', {'staff_id': staff_id, **result.model_dump()})
    return result
