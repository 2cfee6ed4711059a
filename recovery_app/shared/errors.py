# caminho: recovery_app/shared/errors.py
# Funções:
# - http_error(): HTTPException com detail {'code': ..., **extras}

from __future__ import annotations

from http import HTTPStatus
from typing import Any

from fastapi import HTTPException


def http_error(status: HTTPStatus | int, code: str, **extra: Any) -> HTTPException:
    detail: dict[str, Any] = {'code': code}
    detail.update({key: value for key, value in extra.items() if value is not None})
    return HTTPException(status_code=status, detail=detail)
