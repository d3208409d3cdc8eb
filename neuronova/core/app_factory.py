from __future__ import annotations

"""Application factory for the FastAPI app.

Builds the throttle profiles and the external quota service, registers
middleware, handlers and routers, and runs the expired-record janitor for
the lifetime of the app.
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Mapping

from fastapi import FastAPI

from neuronova.api.routes import admin_router, health_router
from neuronova.core.config import Settings, settings as default_settings
from neuronova.core.exception_handlers import setup_exception_handlers
from neuronova.core.logging import configure_logging
from neuronova.core.middleware import request_id_middleware
from neuronova.core.openapi import apply_openapi_customizations
from neuronova.core.rate_limit import ThrottleMiddleware
from neuronova.services.external_quota import ExternalApiQuotaService
from neuronova.services.throttle import RequestThrottle, build_throttle_profiles

logger = logging.getLogger(__name__)


async def run_janitor(throttles: Mapping[str, RequestThrottle], interval_seconds: float) -> None:
    """Sweep expired throttle records every ``interval_seconds`` until cancelled."""

    while True:
        await asyncio.sleep(interval_seconds)
        for throttle in throttles.values():
            throttle.sweep()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    interval = app.state.throttle_settings.sweep_interval_seconds
    janitor: asyncio.Task | None = None
    if app.state.throttle_settings.enabled and interval > 0:
        janitor = asyncio.create_task(run_janitor(app.state.throttles, interval))
        logger.info("throttle.janitor_started", extra={"interval_s": interval})
    try:
        yield
    finally:
        if janitor is not None:
            janitor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await janitor


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to build from; the process-wide settings when
            omitted. Every call gets fresh throttle stores.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    app = FastAPI(
        title="Neuronova API",
        description=(
            "Edge services of the Neuronova research platform: per-client request "
            "throttling with X-RateLimit-* headers, quotas for outbound PubMed, "
            "arXiv and bioRxiv calls, and an API-key protected admin surface."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=lifespan,
    )

    app.state.app_settings = cfg.app
    app.state.log_settings = cfg.log
    app.state.throttle_settings = cfg.throttle
    app.state.throttles = build_throttle_profiles(cfg.throttle)
    app.state.quota_service = ExternalApiQuotaService(enabled=cfg.quota.enabled)

    # Middleware: the last registered runs first, so request ids wrap throttling
    if cfg.throttle.enabled:
        app.middleware("http")(ThrottleMiddleware(app.state.throttles["general"], cfg.throttle))
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(admin_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    logger.info(
        "app.created",
        extra={
            "app_env": cfg.app_env,
            "throttling_enabled": cfg.throttle.enabled,
            "window_ms": cfg.throttle.window_duration_ms,
            "max_requests": cfg.throttle.max_requests_per_window,
        },
    )
    return app
