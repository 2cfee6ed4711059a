# caminho: recovery_app/domain/recovery/verification.py
# Funções:
# - CredentialVerifier: gera desafios (token/código) e compara credenciais por método
# - VerificationOutcome: resultado da comparação com o motivo da recusa

from __future__ import annotations

from dataclasses import dataclass
from secrets import choice, token_hex
from string import digits
from typing import assert_never

from pwdlib import PasswordHash

from recovery_app.config.policy import MethodPolicy
from recovery_app.domain.recovery.entities import RecoveryRequest


@dataclass(slots=True, frozen=True)
class VerificationOutcome:
    verified: bool
    reason: str | None = None


class CredentialVerifier:
    """Lógica de comparação por método de recuperação.

    O segredo nunca é armazenado em claro: guardamos apenas o hash (pwdlib) e a
    comparação é sempre executada por completo antes de avaliar as condições
    extras de cada método, para não expor diferenças de tempo.
    """

    def __init__(self, hasher: PasswordHash | None = None) -> None:
        self._hasher = hasher or PasswordHash.recommended()

    def generate_secret(self, policy: MethodPolicy) -> str:
        match policy.secret_kind:
            case 'token':
                return token_hex(policy.secret_length)
            case 'code':
                return ''.join(choice(digits) for _ in range(policy.secret_length))
        assert_never(policy.secret_kind)

    def hash_secret(self, secret: str) -> str:
        return self._hasher.hash(secret)

    def verify(
        self,
        request: RecoveryRequest,
        presented: str,
        *,
        emergency_override_active: bool = False,
    ) -> VerificationOutcome:
        matches = self._matches(presented.strip(), request.secret_hash)

        match request.method:
            case 'email' | 'sms':
                pass
            case 'identity_verification':
                # a comparação sozinha não basta: a revisão manual precisa ter aprovado
                if request.identity_review_status != 'verified':
                    return VerificationOutcome(False, 'identity_review_not_verified')
            case 'admin_assisted':
                if not emergency_override_active:
                    return VerificationOutcome(False, 'emergency_override_missing')
            case _:
                assert_never(request.method)

        if not matches:
            return VerificationOutcome(False, 'credential_mismatch')
        return VerificationOutcome(True)

    def _matches(self, presented: str, secret_hash: str) -> bool:
        if not presented or not secret_hash:
            return False
        return self._hasher.verify(presented, secret_hash)
