"""
Autopause API Server

Entry point for the FastAPI application: receives Twitch EventSub webhooks,
manages reward subscriptions and streams pause events to the browser extension.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from app.core.config import Settings, get_settings
from app.core.errors import AutopauseError, autopause_error_handler
from app.core.logging import configure_logging
from app.core.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from app.core.redis import redis_ping
from app.core.services import Services, build_services
from app.api.v1 import router as api_router
from app.api.webhooks import router as webhook_router

log = structlog.get_logger()


def create_app(
    settings: Settings | None = None,
    services: Services | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    `services` may be supplied pre-built (tests); otherwise they are built
    from settings. Either way they are started and stopped with the app.
    """
    settings = settings or get_settings()
    services = services or build_services(settings)

    app = FastAPI(
        title="Autopause",
        description="Pauses playback when a viewer redeems a channel point reward.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.services = services

    # Middleware (outermost first)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_origin_regex=settings.cors_origin_regex,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.add_exception_handler(AutopauseError, autopause_error_handler)

    # Twitch callback (no auth; every message is signature-verified)
    app.include_router(webhook_router, prefix="/webhook", tags=["Webhooks"])

    # Extension-facing API
    app.include_router(api_router, prefix="/api")

    @app.get("/", tags=["System"])
    async def root():
        return {"status": "ok", "message": "Autopause API"}

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        health = {
            "status": "ok",
            "eventsub_configured": services.registry.configured,
            "live_connections": services.hub.connection_count(),
            "dedup_backend": settings.dedup_backend,
        }
        if settings.dedup_backend == "redis":
            health["redis"] = await redis_ping()
        return health

    @app.get("/metrics", tags=["System"], response_class=PlainTextResponse)
    async def metrics():
        """Prometheus text exposition."""
        return services.metrics.to_prometheus()

    @app.on_event("startup")
    async def on_startup():
        configure_logging(settings.log_level, settings.log_format)
        await services.start()
        log.info("autopause.starting", host=settings.host, port=settings.port)

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("autopause.shutting_down")
        await services.stop()

    return app


def run() -> None:
    """Console entry point: serve with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "app.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    run()
