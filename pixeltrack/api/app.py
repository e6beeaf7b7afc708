"""FastAPI application entry point for pixeltrack."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Final

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pixeltrack.api import routes
from pixeltrack.config.settings import APIConfig

_DEVELOPMENT_ENVIRONMENTS: Final[set[str]] = {"dev", "development", "local"}

VERSION = "1.0.0"


def _is_truthy_env(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _resolve_cors_origins() -> list[str]:
    environment = os.getenv("PIXELTRACK_ENV", "development").strip().lower()
    origins_raw = os.getenv("PIXELTRACK_ALLOWED_ORIGINS", "")
    if origins_raw.strip():
        return APIConfig(allowed_origins=APIConfig.parse_allowed_origins(origins_raw)).allowed_origins

    if environment in _DEVELOPMENT_ENVIRONMENTS and _is_truthy_env(
        os.getenv("PIXELTRACK_DEV_ALLOW_ALL_ORIGINS", "")
    ):
        return ["*"]

    if environment not in _DEVELOPMENT_ENVIRONMENTS:
        raise RuntimeError(
            "Production CORS configuration error: PIXELTRACK_ALLOWED_ORIGINS must be set "
            "to a comma-separated list of trusted origins when PIXELTRACK_ENV is not "
            "development/local/dev."
        )

    return []


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await routes.get_inspector().shutdown()


def create_app() -> FastAPI:
    """Factory function for creating the FastAPI application."""
    cors_origins = _resolve_cors_origins()
    logging.getLogger("pixeltrack").setLevel(
        routes.get_inspector().config.log_level.upper()
    )

    app = FastAPI(
        title="pixeltrack",
        description="Analytics pixel correlation and health engine",
        version=VERSION,
        lifespan=_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials="*" not in cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(routes.router, prefix="/api/v1")

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "service": "pixeltrack", "version": VERSION}

    return app


app = create_app()
