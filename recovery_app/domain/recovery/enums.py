# caminho: recovery_app/domain/recovery/enums.py
# Funções:
# - Define os value objects de métodos de recuperação, status e revisão de identidade.
# - Fornece utilitários para obter escolhas e classificar estados terminais.

from __future__ import annotations

from typing import Any, Literal, assert_never, get_args, get_origin


def choices_from_literal(annotation: Any) -> tuple[str, ...]:
    """Extrai as opções de um Literal (direto ou dentro de um Annotated)."""
    if get_origin(annotation) is Literal:
        literal = annotation
    else:
        literal = next((arg for arg in get_args(annotation) if get_origin(arg) is Literal), None)
    if literal is None:
        msg = f'Annotation {annotation!r} does not include a typing.Literal.'
        raise TypeError(msg)
    return tuple(str(value) for value in get_args(literal))


# ─────────────────────────────────────────────────────────────────────────────
# Métodos de recuperação
# email/identity_verification/admin_assisted usam token opaco; sms usa código
# numérico de tamanho fixo.
# ─────────────────────────────────────────────────────────────────────────────
RecoveryMethod = Literal['email', 'sms', 'identity_verification', 'admin_assisted']
RECOVERY_METHOD_CHOICES: tuple[str, ...] = choices_from_literal(RecoveryMethod)

SecretKind = Literal['token', 'code']


def secret_kind_for(method: RecoveryMethod) -> SecretKind:
    match method:
        case 'sms':
            return 'code'
        case 'email' | 'identity_verification' | 'admin_assisted':
            return 'token'
    assert_never(method)


# ─────────────────────────────────────────────────────────────────────────────
# Status da requisição de recuperação
# completed/rejected/expired são terminais: nenhuma mutação posterior é aceita.
# ─────────────────────────────────────────────────────────────────────────────
RecoveryStatus = Literal['pending', 'in_progress', 'completed', 'rejected', 'expired']
RECOVERY_STATUS_CHOICES: tuple[str, ...] = choices_from_literal(RecoveryStatus)
RECOVERY_STATUS_DEFAULT: str = 'pending'
RECOVERY_TERMINAL_STATUSES: frozenset[str] = frozenset({'completed', 'rejected', 'expired'})


def is_terminal_status(status: str) -> bool:
    return status in RECOVERY_TERMINAL_STATUSES


# ─────────────────────────────────────────────────────────────────────────────
# Revisão manual de documentos (identity_verification)
# Apenas 'verified' libera a verificação do token.
# ─────────────────────────────────────────────────────────────────────────────
IdentityReviewStatus = Literal['pending', 'in_review', 'verified', 'rejected']
IDENTITY_REVIEW_STATUS_CHOICES: tuple[str, ...] = choices_from_literal(IdentityReviewStatus)
IDENTITY_REVIEW_STATUS_DEFAULT: str = 'pending'

IdentityReviewDecision = Literal['in_review', 'verified', 'rejected']


NEXT_STEPS: dict[str, str] = {
    'email': 'Verifique seu e-mail e use o link de recuperação para recuperar o acesso.',
    'sms': 'Verifique seu telefone e informe o código recebido para continuar.',
    'identity_verification': 'Seus documentos estão em análise. Você será contatado em 24 a 48 horas.',
    'admin_assisted': 'Sua solicitação foi encaminhada a um administrador. Você será contatado em breve.',
}

STATUS_MESSAGES: dict[str, str] = {
    'pending': 'Solicitação aguardando verificação.',
    'in_progress': 'Solicitação em andamento.',
    'completed': 'Recuperação concluída.',
    'rejected': 'Solicitação rejeitada.',
    'expired': 'Solicitação expirada. Inicie uma nova recuperação.',
}
