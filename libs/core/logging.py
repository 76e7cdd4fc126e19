from __future__ import annotations

import logging
import os
from typing import Any

import structlog

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(service_name: str, level: str | None = None) -> None:
    resolved = _LEVELS.get((level or os.getenv("LOG_LEVEL", "info")).lower(), logging.INFO)
    logging.basicConfig(level=resolved)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
    get_logger(service_name).info("logging_configured", level=logging.getLevelName(resolved))


def get_logger(service_name: str) -> Any:
    return structlog.get_logger(service=service_name)


def run_context(run_id: str, feature: str) -> Any:
    """Context manager attaching the run id and feature to every event logged inside it."""
    return structlog.contextvars.bound_contextvars(run_id=run_id, feature=feature)
