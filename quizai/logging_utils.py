from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

from .settings import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# SDK clients log one INFO line per HTTP request.
QUIET_LOGGERS = ("httpx", "openai", "anthropic")

_console: Optional[logging.Handler] = None
_service_files: Dict[str, RotatingFileHandler] = {}


def _parse_level(raw: Optional[str]) -> int:
    name = (raw or "INFO").strip().upper()
    return getattr(logging, name, logging.INFO)


def log_file_for(service: str, log_dir: Optional[str] = None) -> Path:
    return Path(log_dir or settings.log_dir) / f"{service}.log"


def configure_logging(
    service: str = "quizai",
    level: Optional[str] = None,
    log_dir: Optional[str] = None,
) -> logging.Logger:
    """
    Shared console handler plus one rotating file per service, so the API
    server (`quizai.api`) and the terminal client (`quizai.cli`) keep
    separate logs. Level and directory default to `settings.log_level` and
    `settings.log_dir`. Calling again for a configured service only updates
    the level.
    """
    global _console

    log_level = _parse_level(level or settings.log_level)
    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    root = logging.getLogger()
    root.setLevel(log_level)

    if _console is None:
        _console = logging.StreamHandler()
        _console.setFormatter(fmt)
        root.addHandler(_console)
    _console.setLevel(log_level)

    handler = _service_files.get(service)
    log_file = log_file_for(service, log_dir)
    if handler is None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            filename=str(log_file),
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(fmt)
        root.addHandler(handler)
        _service_files[service] = handler
    handler.setLevel(log_level)

    for noisy in QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))

    logger = logging.getLogger(service)
    logger.info(
        "logging_configured service=%s level=%s log_file=%s",
        service,
        logging.getLevelName(log_level),
        handler.baseFilename,
    )
    return logger
