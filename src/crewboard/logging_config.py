from __future__ import annotations

import logging

from crewboard.config import get_settings


_LOG_CONFIGURED = False
_QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "uvicorn.access")


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once; ``level`` overrides ``Settings.log_level``."""
    global _LOG_CONFIGURED
    if _LOG_CONFIGURED:
        return

    settings = get_settings()
    name = (level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    for logger_name in _QUIET_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
    _LOG_CONFIGURED = True
