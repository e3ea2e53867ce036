"""
Logging setup for the import service.

All modules log through ``logging.getLogger(__name__)``; this module wires the
handlers once so worker threads, routers and the pipeline share one format.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Optional


_is_configured = False

# Third-party loggers that are chatty at INFO during bulk imports.
_QUIET_LOGGERS = ("sqlalchemy.engine", "multipart", "python_multipart")


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure root and package loggers if they have not been configured yet.

    Args:
        level: Optional log level override (e.g., "DEBUG", "INFO").
    """
    global _is_configured

    if _is_configured:
        return

    log_level = (level or "INFO").upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s | %(levelname)-7s | %(threadName)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": log_level,
                }
            },
            "root": {
                "handlers": ["console"],
                "level": log_level,
            },
            "loggers": {
                name: {"level": "WARNING"} for name in _QUIET_LOGGERS
            },
        }
    )

    logging.getLogger("crm_app").setLevel(log_level)

    _is_configured = True
