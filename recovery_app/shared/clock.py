# caminho: recovery_app/shared/clock.py
# Funções:
# - utcnow(): relógio padrão (UTC, timezone-aware) injetado nos componentes

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
