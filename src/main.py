"""HealthSync API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Iterable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import get_settings
from src.dependencies import build_runtime
from src.health_data.base import HealthDataProvider
from src.health_data.errors import HealthDataError
from src.routers import health, health_data

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("healthsync")


# ---------- App factory ----------

def create_app(providers: Iterable[HealthDataProvider] = ()) -> FastAPI:
    """Build the app.  ``providers`` are registered on startup."""
    settings = get_settings()
    provider_list = list(providers)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Startup / shutdown hooks."""
        logger.info(
            "Starting HealthSync API v%s [%s]",
            settings.app_version,
            settings.environment,
        )
        runtime = build_runtime(settings)
        for provider in provider_list:
            try:
                await runtime.registry.register(provider)
            except HealthDataError as err:
                logger.error("Could not register provider %s: %s", provider.id, err.message)
        unsubscribe = runtime.health_state.subscribe_to_health_updates()
        runtime.provider_state.start_polling()
        app.state.health_data = runtime
        yield
        try:
            await unsubscribe()
        except HealthDataError as err:
            logger.warning("Closing realtime streams failed: %s", err.message)
        try:
            await runtime.registry.shutdown()
        except HealthDataError as err:
            logger.warning("Engine shutdown incomplete: %s", err.message)
        app.state.health_data = None
        logger.info("HealthSync API shut down")

    app = FastAPI(
        title="HealthSync API",
        description=(
            "Health data provider orchestration — sleep, illness and stress "
            "collected from several providers and consolidated by priority."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(health_data.router, prefix=v1_prefix)

    return app


app = create_app()
