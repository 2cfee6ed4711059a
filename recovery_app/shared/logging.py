# caminho: recovery_app/shared/logging.py
# Funções:
# - setup_logging(): inicializa logging (stdout + arquivo rotativo fora de serverless)
# - log_info/log_warning/log_error: atalhos padronizados

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'
LOG_DIR = Path(__file__).resolve().parent.parent / 'logs'
LOG_FILE = LOG_DIR / 'recovery_app.log'
LOGGER_NAME = 'recovery_app'

CONFIG_STATE = {'logging': False}


def setup_logging(level: str = 'INFO') -> None:
    # Vercel/Lambda não permitem escrita em disco
    is_serverless_env = os.environ.get('VERCEL') == '1' or 'AWS_LAMBDA' in os.environ.get('AWS_EXECUTION_ENV', '')

    if not CONFIG_STATE['logging']:
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATEFMT))

        root = logging.getLogger()
        root.setLevel(level.upper())
        root.addHandler(stream_handler)

        if not is_serverless_env:
            LOG_DIR.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(LOG_FILE, maxBytes=5 * 1024 * 1024, backupCount=5, encoding='utf-8')
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATEFMT))
            root.addHandler(file_handler)

        CONFIG_STATE['logging'] = True
    else:
        logging.getLogger().setLevel(level.upper())


def _log(event: str, payload: dict[str, Any], level: str) -> None:
    logger = logging.getLogger(LOGGER_NAME)
    getattr(logger, level.lower())('%s | %s', event, payload)


def log_info(event: str, payload: dict[str, Any]) -> None:
    _log(event, payload, 'info')


def log_warning(event: str, payload: dict[str, Any]) -> None:
    _log(event, payload, 'warning')


def log_error(event: str, payload: dict[str, Any]) -> None:
    _log(event, payload, 'error')
