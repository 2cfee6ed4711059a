# caminho: recovery_app/interfaces/api/routers/recovery.py
# Funções:
# - Endpoints públicos da recuperação de MFA (iniciar, verificar, consultar)
# - Endpoints administrativos da revisão de identidade e rejeição manual

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from recovery_app.application.recovery.dto import (
    IdentityReviewInput,
    RecoveryInitiateInput,
    RecoveryInitiationResult,
    RecoveryRejectInput,
    RecoveryAdminStatusResponse,
    RecoveryStatusResponse,
    RecoveryVerificationResult,
    RecoveryVerifyInput,
)
from recovery_app.application.recovery.use_cases import RecoveryRequestManager
from recovery_app.interfaces.api.dependencies import CurrentStaff, RequestContextDep, get_recovery_manager

router = APIRouter(prefix='/mfa/recovery', tags=['mfa-recovery'])
admin_router = APIRouter(prefix='/admin/mfa/recovery', tags=['mfa-recovery-admin'])


@router.post(
    '',
    response_model=RecoveryInitiationResult,
    status_code=status.HTTP_201_CREATED,
    summary='Iniciar recuperação de MFA',
    description="""Abre uma requisição de recuperação e envia o desafio pelo canal do método escolhido.

Métodos: `email`, `sms`, `identity_verification` (exige `identity_documents`) e
`admin_assisted` (exige `emergency_details`).

**Proteções**:
- Rate limit por usuário e método (hora/dia; identidade também semana/mês).
- No máximo `RECOVERY_MAX_CONCURRENT_REQUESTS` requisições pendentes por usuário.
- Falha no envio desfaz a requisição (`DISPATCH_FAILED`).
""",
)
async def initiate_recovery(
    payload: RecoveryInitiateInput,
    context: RequestContextDep,
    manager: RecoveryRequestManager = Depends(get_recovery_manager),
) -> RecoveryInitiationResult:
    return await manager.initiate(payload, context)


@router.post(
    '/{request_id}/verify',
    response_model=RecoveryVerificationResult,
    status_code=status.HTTP_200_OK,
    summary='Verificar desafio',
    description="""Confere o token/código recebido e, em caso de sucesso, emite um token de acesso temporário.

**Regras**:
- `identity_verification` só conclui após a revisão de documentos aprovada.
- `admin_assisted` exige um override `emergency_access` ativo para o usuário.

**Proteções**:
- Cada tentativa é contada; esgotado o limite, a requisição fica bloqueada (`LOCKED`).
""",
)
async def verify_recovery(
    request_id: str,
    payload: RecoveryVerifyInput,
    context: RequestContextDep,
    manager: RecoveryRequestManager = Depends(get_recovery_manager),
) -> RecoveryVerificationResult:
    return await manager.verify(request_id, payload, context)


@router.get(
    '/{request_id}',
    response_model=RecoveryStatusResponse,
    summary='Consultar requisição',
    description='Retorna o status efetivo da requisição (pendente vencida aparece como `expired`).',
)
async def get_recovery_status(
    request_id: str,
    manager: RecoveryRequestManager = Depends(get_recovery_manager),
) -> RecoveryStatusResponse:
    return await manager.get_status(request_id)


@admin_router.post(
    '/{request_id}/identity-review',
    response_model=RecoveryAdminStatusResponse,
    summary='Registrar revisão de identidade',
    description="""Registra o resultado da análise manual dos documentos.

`verified` libera a verificação do token; `rejected` encerra a requisição.

**Proteções**:
- Exige autenticação Bearer e papel `admin` ou superior.
""",
)
async def review_identity(
    request_id: str,
    payload: IdentityReviewInput,
    staff_id: CurrentStaff,
    context: RequestContextDep,
    manager: RecoveryRequestManager = Depends(get_recovery_manager),
) -> RecoveryAdminStatusResponse:
    return await manager.record_identity_review(staff_id, request_id, payload, context)


@admin_router.post(
    '/{request_id}/reject',
    response_model=RecoveryAdminStatusResponse,
    summary='Rejeitar requisição',
    description="""Rejeita manualmente uma requisição pendente, informando o motivo.

**Proteções**:
- Exige autenticação Bearer e papel `admin` ou superior.
""",
)
async def reject_recovery(
    request_id: str,
    payload: RecoveryRejectInput,
    staff_id: CurrentStaff,
    context: RequestContextDep,
    manager: RecoveryRequestManager = Depends(get_recovery_manager),
) -> RecoveryAdminStatusResponse:
    return await manager.reject(staff_id, request_id, payload, context)
