# caminho: recovery_app/shared/auth_dependencies.py
# Funções:
# - require_authenticated_staff(): valida o Bearer token da equipe e retorna o id (claim `sub`)
#
# O token só identifica quem chama; os papéis são sempre resolvidos pelo RoleLookup.

from __future__ import annotations

from fastapi import Depends, status
from fastapi.security import OAuth2PasswordBearer
from jwt import ExpiredSignatureError, InvalidTokenError, decode

from recovery_app.config import get_settings
from recovery_app.config.constants import OAUTH2_SCHEME_TOKEN_URL
from recovery_app.infrastructure.security.jwt import TEMPORARY_ACCESS_SCOPE
from recovery_app.shared.errors import http_error
from recovery_app.shared.logging import log_warning

oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=OAUTH2_SCHEME_TOKEN_URL,
    auto_error=False,  # a ausência do token vira o mesmo erro padronizado abaixo
)


async def require_authenticated_staff(token: str | None = Depends(oauth2_scheme)) -> str:
    if not token:
        raise http_error(status.HTTP_401_UNAUTHORIZED, 'NOT_AUTHENTICATED')

    settings = get_settings()
    try:
        payload = decode(
            token,
            settings.SECRET_KEY.get_secret_value(),
            algorithms=[settings.SECRET_ALGORITHM],
            options={'require': ['sub', 'exp']},
        )
    except ExpiredSignatureError as exc:
        raise http_error(status.HTTP_401_UNAUTHORIZED, 'TOKEN_EXPIRED') from exc
    except InvalidTokenError as exc:
        log_warning('STAFF_TOKEN_INVALID', {'error': exc.__class__.__name__})
        raise http_error(status.HTTP_401_UNAUTHORIZED, 'INVALID_TOKEN') from exc

    # tokens de acesso temporário da recuperação não autenticam a equipe
    if payload.get('scope') == TEMPORARY_ACCESS_SCOPE:
        raise http_error(status.HTTP_401_UNAUTHORIZED, 'INVALID_TOKEN')

    subject = str(payload.get('sub') or '').strip()
    if not subject:
        raise http_error(status.HTTP_401_UNAUTHORIZED, 'INVALID_TOKEN')
    return subject
