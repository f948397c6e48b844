"""Logging and observability configuration using Pydantic Logfire.

All modules use Python's standard logging library (logging.getLogger(__name__)),
and Logfire captures and enriches these logs when a token is configured.

Standard usage:
    import logging
    logger = logging.getLogger(__name__)
    logger.info("Message", extra={"key": "value"})
"""

import logging
import re

import logfire
from fastapi import FastAPI

from src.core.config import constants, settings


_SECRET_PATTERN = re.compile(r'("secret"\s*:\s*")([^"]*)(")')


def configure_logfire() -> None:
    """Configure Pydantic Logfire with token from environment."""
    logfire.configure(
        token=settings.logfire_token,
        service_name="rollcall",
        service_version="0.1.0",
        environment="production",
        send_to_logfire="if-token-present",
    )

    logger = logging.getLogger(__name__)
    logger.info("Logfire configured successfully")


def instrument_fastapi(app: FastAPI) -> None:
    """Add Logfire instrumentation to FastAPI application."""
    logfire.instrument_fastapi(app)
    logger = logging.getLogger(__name__)
    logger.info("FastAPI instrumentation configured")


def instrument_httpx() -> None:
    """Trace outgoing member directory and bridge calls."""
    logfire.instrument_httpx()
    logger = logging.getLogger(__name__)
    logger.info("httpx instrumentation configured")


def span(name: str) -> logfire.LogfireSpan:
    """Create a custom span for service layer functions.

    Usage:
        with span("onboarding.handle_email_submitted"):
            ...
    """
    return logfire.span(name)


def mask_secret(text: str) -> str:
    """Mask the value of a JSON "secret" field, keeping only its last characters."""
    visible = constants.MASKED_SECRET_VISIBLE_CHARS

    def _mask(match: re.Match[str]) -> str:
        value = match.group(2)
        hidden = max(len(value) - visible, 0)
        return f"{match.group(1)}{'•' * hidden}{value[hidden:]}{match.group(3)}"

    return _SECRET_PATTERN.sub(_mask, str(text))
