"""Centralized logging configuration with Pydantic Logfire integration."""

import logging
from typing import Any

import logfire
from fastapi import FastAPI

from knowledge_ingest.config import get_settings


def setup_logfire(app: FastAPI | None = None) -> None:
    """
    Initialize and configure Pydantic Logfire for observability.

    Sets up:
    - FastAPI instrumentation when an app is given (the CLI passes none)
    - httpx instrumentation for outgoing scraper requests
    - Environment-aware stdlib logging format

    Args:
        app: FastAPI application to instrument, if any
    """
    settings = get_settings()

    logfire_config: dict[str, Any] = {
        "environment": settings.env,
        # Without a token, logs stay local instead of erroring
        "send_to_logfire": "if-token-present",
    }
    if settings.logfire_token:
        logfire_config["token"] = settings.logfire_token

    logfire.configure(**logfire_config)

    if app is not None:
        logfire.instrument_fastapi(app)
    logfire.instrument_httpx()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.env == "local":
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
    else:
        # Logfire handles structured formatting
        logging.basicConfig(level=log_level, format="%(message)s")
