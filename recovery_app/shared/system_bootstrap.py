# caminho: recovery_app/shared/system_bootstrap.py
# Funções:
# - bootstrap_super_admin(): garante o papel super_admin para o id configurado na inicialização

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from recovery_app.config import get_settings
from recovery_app.domain.overrides.enums import STAFF_ROLE_SUPERUSER
from recovery_app.infrastructure.db.base import get_session_factory
from recovery_app.infrastructure.repositories.override_repository import RoleLookupImpl
from recovery_app.shared.logging import log_error, log_info, log_warning


async def bootstrap_super_admin() -> None:
    """Concede super_admin a ``BOOTSTRAP_SUPER_ADMIN_ID`` caso ainda não possua."""
    settings = get_settings()
    user_id = (settings.BOOTSTRAP_SUPER_ADMIN_ID or '').strip()
    if not user_id:
        log_warning('SUPER_ADMIN_BOOTSTRAP_SKIPPED', {'reason': 'missing_user_id'})
        return

    try:
        async with get_session_factory()() as session:
            granted = await RoleLookupImpl(session).grant(user_id, STAFF_ROLE_SUPERUSER, granted_by='bootstrap')
    except SQLAlchemyError as exc:
        # o serviço sobe mesmo assim; o papel pode ser concedido manualmente depois
        log_error('SUPER_ADMIN_BOOTSTRAP_FAILED', {'user_id': user_id, 'error': repr(exc)})
        return

    if granted:
        log_info('SUPER_ADMIN_BOOTSTRAP_CREATED', {'user_id': user_id})
    else:
        log_info('SUPER_ADMIN_BOOTSTRAP_EXISTS', {'user_id': user_id})
