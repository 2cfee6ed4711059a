# caminho: recovery_app/interfaces/api/app.py
# Funções:
# - create_application(): configura FastAPI com lifespan e rotas de recuperação/overrides

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from recovery_app.config import get_settings
from recovery_app.infrastructure.db.base import dispose_engine
from recovery_app.interfaces.api.dependencies import drain_notifications
from recovery_app.interfaces.api.routers import access, audit, overrides, recovery
from recovery_app.shared.logging import log_info, log_warning, setup_logging
from recovery_app.shared.system_bootstrap import bootstrap_super_admin


@asynccontextmanager
async def lifespan(app: FastAPI):
    log_info('APP_STARTUP', {'reason': 'lifespan'})
    await bootstrap_super_admin()

    yield

    # avisos de recuperação concluída ainda em envio não podem ser perdidos
    await drain_notifications()
    await dispose_engine()
    log_warning('APP_SHUTDOWN', {'reason': 'lifespan'})


def create_application() -> FastAPI:
    settings = get_settings()
    setup_logging(level=settings.LOG_LEVEL)

    app = FastAPI(
        title='mfa-recovery',
        version='0.1.0',
        lifespan=lifespan,
    )

    app.include_router(recovery.router)
    app.include_router(recovery.admin_router)
    app.include_router(overrides.router)
    app.include_router(access.router)
    app.include_router(access.admin_router)
    app.include_router(audit.router)

    return app
