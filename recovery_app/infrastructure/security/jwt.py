# caminho: recovery_app/infrastructure/security/jwt.py
# Funções:
# - JWTService: gera e valida tokens de acesso temporário (escopo mfa_recovery)

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from jwt import ExpiredSignatureError, decode, encode
from pydantic import SecretStr

TEMPORARY_ACCESS_SCOPE = 'mfa_recovery'


@dataclass(slots=True)
class TemporaryAccessPayload:
    subject: str
    grant_id: str
    scope: str
    expires_at: datetime


class JWTService:
    def __init__(self, secret_key: SecretStr | str, algorithm: str) -> None:
        self._secret = secret_key.get_secret_value() if isinstance(secret_key, SecretStr) else secret_key
        self._algorithm = algorithm

    def create_temporary_access_token(
        self,
        subject: str,
        grant_id: str,
        *,
        issued_at: datetime,
        expires_at: datetime,
    ) -> str:
        return encode(
            {
                'sub': subject,
                'gid': grant_id,
                'scope': TEMPORARY_ACCESS_SCOPE,
                'iat': issued_at,
                'exp': expires_at,
            },
            self._secret,
            algorithm=self._algorithm,
        )

    def decode_temporary_access_token(self, token: str, *, now: datetime) -> TemporaryAccessPayload:
        """Valida assinatura e expiração contra `now`; erros do PyJWT são propagados."""
        payload = decode(
            token,
            self._secret,
            algorithms=[self._algorithm],
            options={'verify_exp': False, 'verify_iat': False, 'require': ['sub', 'gid', 'exp']},
        )
        expires_at = datetime.fromtimestamp(int(payload['exp']), tz=timezone.utc)
        if expires_at <= now:
            raise ExpiredSignatureError('Signature has expired')

        return TemporaryAccessPayload(
            subject=str(payload['sub']),
            grant_id=str(payload['gid']),
            scope=str(payload.get('scope', '')),
            expires_at=expires_at,
        )
