"""Logfire setup and structured logging helpers for sidequest.

Modules log through ``logging.getLogger(__name__)``; Logfire captures those
records once configured. Service functions wrap their work in ``span``.
"""

import logging

import logfire
from fastapi import FastAPI

from src.core.config import settings


SERVICE_NAME = "sidequest"
SERVICE_VERSION = "0.1.0"

logger = logging.getLogger(__name__)


def configure_logfire() -> None:
    """Configure Logfire. Records only leave the process when a token is set."""
    logfire.configure(
        token=settings.logfire_token,
        service_name=SERVICE_NAME,
        service_version=SERVICE_VERSION,
        environment=settings.environment,
        send_to_logfire="if-token-present",
    )
    logger.info(
        "Logfire configured",
        extra={"environment": settings.environment, "remote": settings.logfire_token is not None},
    )


def instrument_fastapi(app: FastAPI) -> None:
    logfire.instrument_fastapi(app)
    logger.info("FastAPI instrumentation configured")


def span(name: str, **attributes: object) -> logfire.LogfireSpan:
    """Open a span named after the service operation, e.g. ``task_service.accept_task``."""
    return logfire.span(name, **attributes)


def log_with_user_context(
    logger: logging.Logger,
    level: str,
    message: str,
    user_id: str | None = None,
    **extra: object,
) -> None:
    """Log ``message`` with the acting user and any task, block or rating ids as extra fields.

    Fields that are None are left out of the record.

    Usage:
        log_with_user_context(logger, "info", "Canceled task", user_id=user_id, task_id=task_id, role="poster")
    """
    context = {key: value for key, value in {"user_id": user_id, **extra}.items() if value is not None}
    getattr(logger, level.lower())(message, extra=context)
