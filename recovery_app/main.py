# caminho: recovery_app/main.py
# Funções:
# - app: instância FastAPI criada via create_application() (uvicorn recovery_app.main:app)

from __future__ import annotations

from recovery_app.interfaces.api.app import create_application

app = create_application()
