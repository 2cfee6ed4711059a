# caminho: recovery_app/domain/overrides/enums.py
# Funções:
# - Define tipos de override administrativo e papéis da equipe.
# - Fornece utilitários de ordenação hierárquica de papéis.

from __future__ import annotations

from typing import Iterable, Literal

from recovery_app.domain.recovery.enums import choices_from_literal


# ─────────────────────────────────────────────────────────────────────────────
# Tipos de override
# temporary_disable e trust_device entram ativos; reset_mfa e emergency_access
# exigem aprovação antes de valer.
# ─────────────────────────────────────────────────────────────────────────────
OverrideType = Literal['temporary_disable', 'reset_mfa', 'emergency_access', 'trust_device']
OVERRIDE_TYPE_CHOICES: tuple[str, ...] = choices_from_literal(OverrideType)


# ─────────────────────────────────────────────────────────────────────────────
# Papéis da equipe (escopo global)
# Ordem de privilégio: user < support < admin < super_admin.
# Um papel superior satisfaz qualquer exigência inferior.
# ─────────────────────────────────────────────────────────────────────────────
StaffRole = Literal['user', 'support', 'admin', 'super_admin']
STAFF_ROLE_CHOICES: tuple[str, ...] = choices_from_literal(StaffRole)
STAFF_ROLE_PRIORITY: dict[str, int] = {role: idx for idx, role in enumerate(STAFF_ROLE_CHOICES)}
STAFF_ROLE_SUPERUSER: str = 'super_admin'
# papel mínimo para gerenciar (revogar, listar, varrer) e revisar
STAFF_ROLE_MANAGER: str = 'admin'


def highest_role(roles: Iterable[str]) -> str | None:
    """Retorna o papel de maior privilégio entre os informados (ignora desconhecidos)."""
    known = [role.lower() for role in roles if role and role.lower() in STAFF_ROLE_PRIORITY]
    if not known:
        return None
    return max(known, key=STAFF_ROLE_PRIORITY.__getitem__)


def has_required_role(roles: Iterable[str], required_role: str) -> bool:
    """Determina se algum dos papéis atende `required_role`."""
    required_priority = STAFF_ROLE_PRIORITY.get(required_role.lower())
    if required_priority is None:
        return False
    top = highest_role(roles)
    if top is None:
        return False
    return STAFF_ROLE_PRIORITY[top] >= required_priority
