from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from fidelio_api.core.settings import settings
from fidelio_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .workers import ShadowExpirationWorker


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    expiration_worker = ShadowExpirationWorker(
        session_factory=_session_factory,
        interval_seconds=settings.expiration_worker_interval_seconds,
    )
    app.state.shadow_expiration_worker = expiration_worker

    expiration_enabled = settings.expiration_worker_enabled
    if expiration_enabled:
        expiration_worker.start()
        logger.info(
            "Shadow expiration worker enabled",
            interval_seconds=expiration_worker.interval_seconds,
            shadow_ttl_hours=settings.shadow_wallet_ttl_hours,
        )
    else:
        logger.info(
            "Shadow expiration worker disabled",
            reason="expiration_worker_enabled is false",
        )

    try:
        yield
    finally:
        if expiration_enabled and expiration_worker.is_running:
            await expiration_worker.stop()


def create_app() -> FastAPI:
    """Application factory for the Fidelio loyalty ingestion service."""
    configure_logging(
        service_name="fidelio-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Fidelio API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="fidelio-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
