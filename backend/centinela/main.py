"""Punto de entrada principal para la aplicación FastAPI."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from centinela.api.routes.health import router as health_router
from centinela.api.routes.monitor import router as monitor_router
from centinela.channels.wecom.router import router as wecom_router
from centinela.container import Container, build_container
from centinela.core.config import Settings, settings
from centinela.core.logging import configure_logging, get_logger, resolve_log_level
from centinela.core.middleware import RequestLoggingMiddleware


def _configure_logging(app_settings: Settings) -> None:
    default_log_level = logging.DEBUG if app_settings.environment != "production" else logging.INFO
    log_level = resolve_log_level(app_settings.log_level, default=default_log_level)
    per_logger_files: dict[str, str] = {}
    if app_settings.log_file_path:
        log_dir = Path(app_settings.log_file_path).parent
        per_logger_files = {
            "centinela.request": str(log_dir / "request.log"),
            "centinela.channels.wecom": str(log_dir / "wecom.log"),
            "centinela.sweep": str(log_dir / "sweep.log"),
        }
    configure_logging(
        level=log_level,
        log_file=app_settings.log_file_path,
        per_logger_files=per_logger_files,
    )


def create_app(app_settings: Settings | None = None, *, container: Container | None = None) -> FastAPI:
    """Crea y configura la instancia de FastAPI."""
    app_settings = app_settings or (container.settings if container else settings)
    _configure_logging(app_settings)
    log = get_logger("centinela")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        current: Container = app.state.container
        if app_settings.sweep_enabled:
            current.scheduler.start()
        else:
            log.info("sweep.disabled")
        try:
            yield
        finally:
            await current.aclose()

    app = FastAPI(title="Centinela API", version="0.1.0", root_path="/api", lifespan=lifespan)
    app.state.container = container or build_container(app_settings)

    app.add_middleware(
        RequestLoggingMiddleware,
        level=resolve_log_level(app_settings.request_log_level),
        skip_prefixes=app_settings.request_log_skip_prefixes,
    )

    app.include_router(health_router)
    app.include_router(wecom_router)
    app.include_router(monitor_router)

    log.info(
        "app.configured",
        extra={
            "environment": app_settings.environment,
            "store_backend": app_settings.store_backend,
            "thresholds": app_settings.alert_thresholds,
        },
    )
    return app


app = create_app()
