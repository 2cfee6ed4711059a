# caminho: recovery_app/interfaces/api/routers/access.py
# Funções:
# - Inspeção pública de tokens de acesso temporário
# - Listagem e revogação administrativa dos acessos emitidos

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from recovery_app.application.access.dto import (
    AccessInspectInput,
    AccessInspectResult,
    AccessRevokeInput,
    TemporaryAccessGrantListResponse,
    TemporaryAccessGrantOutput,
)
from recovery_app.application.access.use_cases import TemporaryAccessIssuer
from recovery_app.config.constants import USER_ID_LENGTH_MAX, USER_ID_LENGTH_MIN
from recovery_app.interfaces.api.dependencies import CurrentStaff, RequestContextDep, get_access_issuer

router = APIRouter(prefix='/mfa/access', tags=['mfa-access'])
admin_router = APIRouter(prefix='/admin/mfa/access', tags=['mfa-access-admin'])


@router.post(
    '/inspect',
    response_model=AccessInspectResult,
    summary='Inspecionar token de acesso temporário',
    description="""Valida assinatura, escopo e o registro do acesso (não revogado e dentro do prazo).

Tokens inválidos retornam `valid=false` com o motivo, nunca erro HTTP.
""",
)
async def inspect_access(
    payload: AccessInspectInput,
    issuer: TemporaryAccessIssuer = Depends(get_access_issuer),
) -> AccessInspectResult:
    return await issuer.inspect(payload.token)


@admin_router.get(
    '',
    response_model=TemporaryAccessGrantListResponse,
    summary='Listar acessos temporários ativos',
)
async def list_access_grants(
    staff_id: CurrentStaff,
    user_id: str = Query(..., min_length=USER_ID_LENGTH_MIN, max_length=USER_ID_LENGTH_MAX),
    issuer: TemporaryAccessIssuer = Depends(get_access_issuer),
) -> TemporaryAccessGrantListResponse:
    return await issuer.list_active(staff_id, user_id)


@admin_router.post(
    '/{grant_id}/revoke',
    response_model=TemporaryAccessGrantOutput,
    summary='Revogar acesso temporário',
    description="""Invalida um acesso emitido após recuperação, antes do vencimento.

**Proteções**:
- Exige autenticação Bearer e papel `admin` ou superior.
""",
)
async def revoke_access_grant(
    grant_id: str,
    payload: AccessRevokeInput,
    staff_id: CurrentStaff,
    context: RequestContextDep,
    issuer: TemporaryAccessIssuer = Depends(get_access_issuer),
) -> TemporaryAccessGrantOutput:
    return await issuer.revoke(staff_id, grant_id, payload, context)
