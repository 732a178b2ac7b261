# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI application entry point for uvicorn.

This module builds a FastAPI application from the resolved settings and
ties the MailService lifecycle to the ASGI lifespan: the schema is
initialised on startup and in-flight sends are drained on shutdown.

Usage:
    uvicorn smtp_mail_service.server:app --host 0.0.0.0 --port 7700

or through the CLI, which also bounds graceful shutdown::

    smtp-mail serve
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from .api import create_app
from .core import MailService
from .logger import configure_logging, get_logger
from .settings import Settings, load_settings

logger = get_logger("Server")


def build_app(settings: Settings, service: MailService | None = None) -> FastAPI:
    """Create the application and its MailService from ``settings``."""
    svc = service or MailService.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler - starts and stops the mail service."""
        await svc.start()
        yield
        await svc.stop(settings.shutdown_timeout)

    return create_app(svc, cors_origins=settings.cors_origins, lifespan=lifespan)


def serve(settings: Settings) -> None:
    """Run the HTTP server until interrupted."""
    logger.info("Listening on %s:%s", settings.http_host, settings.http_port)
    uvicorn.run(
        build_app(settings),
        host=settings.http_host,
        port=settings.http_port,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=int(settings.shutdown_timeout),
    )


def __getattr__(name: str):
    # Module-level ``app`` for ``uvicorn smtp_mail_service.server:app``, built on first access.
    if name == "app":
        global app
        settings = load_settings()
        configure_logging(settings.log_level)
        app = build_app(settings)
        return app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
