# caminho: recovery_app/interfaces/api/routers/overrides.py
# Funções:
# - Criação, aprovação, revogação e consulta de overrides administrativos de MFA

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status

from recovery_app.application.overrides.dto import (
    OverrideApproveInput,
    OverrideCreateInput,
    OverrideCreateResult,
    OverrideListResponse,
    OverrideOutput,
    OverrideRevokeInput,
)
from recovery_app.application.overrides.use_cases import AdminOverrideManager
from recovery_app.config.constants import USER_ID_LENGTH_MAX, USER_ID_LENGTH_MIN
from recovery_app.interfaces.api.dependencies import CurrentStaff, RequestContextDep, get_override_manager

router = APIRouter(prefix='/admin/mfa/overrides', tags=['mfa-overrides'])


@router.post(
    '',
    response_model=OverrideCreateResult,
    status_code=status.HTTP_201_CREATED,
    summary='Criar override',
    description="""Cria um override de MFA com prazo para outro usuário.

| tipo | duração máx. | justificativa | aprovação | papel |
|---|---|---|---|---|
| `temporary_disable` | 24h | sim | não | admin |
| `reset_mfa` | 1h | sim | sim | super_admin |
| `emergency_access` | 4h | sim | sim | super_admin |
| `trust_device` | 72h | não | não | admin |

**Proteções**:
- Exige autenticação Bearer; o papel é consultado no banco.
- Não é permitido criar override para si mesmo.
- Rate limit por administrador (hora/dia).
""",
)
async def create_override(
    payload: OverrideCreateInput,
    staff_id: CurrentStaff,
    context: RequestContextDep,
    manager: AdminOverrideManager = Depends(get_override_manager),
) -> OverrideCreateResult:
    return await manager.create(staff_id, payload, context)


@router.get(
    '',
    response_model=OverrideListResponse,
    summary='Listar overrides de um usuário',
    description="""Lista os overrides do usuário alvo, do mais recente ao mais antigo.

Use `active_only=true` para retornar apenas os que estão valendo agora.
""",
)
async def list_overrides(
    staff_id: CurrentStaff,
    target_user_id: str = Query(..., min_length=USER_ID_LENGTH_MIN, max_length=USER_ID_LENGTH_MAX),
    active_only: bool = Query(False),
    manager: AdminOverrideManager = Depends(get_override_manager),
) -> OverrideListResponse:
    return await manager.list_for_user(staff_id, target_user_id, active_only=active_only)


@router.get(
    '/{override_id}',
    response_model=OverrideOutput,
    summary='Detalhar override',
)
async def get_override(
    override_id: str,
    staff_id: CurrentStaff,
    manager: AdminOverrideManager = Depends(get_override_manager),
) -> OverrideOutput:
    return await manager.get(staff_id, override_id)


@router.post(
    '/{override_id}/approve',
    response_model=OverrideOutput,
    summary='Aprovar override',
    description="""Ativa um override que aguarda aprovação.

**Regras**:
- Quem aprova não pode ser quem solicitou.
- Apenas a primeira aprovação concorrente vence (`OVERRIDE_ALREADY_APPROVED`).
- Overrides revogados ou vencidos não podem ser aprovados.
""",
)
async def approve_override(
    override_id: str,
    staff_id: CurrentStaff,
    context: RequestContextDep,
    payload: Optional[OverrideApproveInput] = Body(default=None),
    manager: AdminOverrideManager = Depends(get_override_manager),
) -> OverrideOutput:
    return await manager.approve(staff_id, override_id, payload, context)


@router.post(
    '/{override_id}/revoke',
    response_model=OverrideOutput,
    summary='Revogar override',
    description='Desativa o override de forma definitiva. O motivo é obrigatório.',
)
async def revoke_override(
    override_id: str,
    payload: OverrideRevokeInput,
    staff_id: CurrentStaff,
    context: RequestContextDep,
    manager: AdminOverrideManager = Depends(get_override_manager),
) -> OverrideOutput:
    return await manager.revoke(staff_id, override_id, payload, context)
