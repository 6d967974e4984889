"""FastAPI server exposing the health engine."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vitals import __version__
from vitals.api.health_routes import health_router
from vitals.config import settings
from vitals.health.engine import HealthEngine
from vitals.health.manifest import ManifestError, load_manifest, populate_registry
from vitals.health.registry import CheckerRegistry

logger = logging.getLogger(__name__)


def build_engine(components_file: str | None = None, timeout: float | None = None) -> HealthEngine:
    """Registry from the component manifest + engine from settings."""
    registry = CheckerRegistry()
    path = components_file or settings.components_file
    try:
        count = populate_registry(registry, load_manifest(path))
    except ManifestError:
        logger.exception("Component manifest unusable, starting with an empty registry")
        count = 0
    logger.info("Checker registry ready: %d components", count)

    return HealthEngine(
        registry,
        timeout=settings.check_timeout_seconds if timeout is None else timeout,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine on startup unless one was injected."""
    owned = getattr(app.state, "engine", None) is None
    if owned:
        app.state.engine = build_engine()
    logger.info("Health engine ready (timeout=%ss)", app.state.engine.timeout)

    yield

    if owned:
        app.state.engine.close()
        app.state.engine = None  # a restart builds a fresh one


def create_app(engine: HealthEngine | None = None) -> FastAPI:
    app = FastAPI(
        title="Vitals - Health Check Aggregator",
        version=__version__,
        lifespan=lifespan,
    )
    if engine is not None:
        app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.include_router(health_router, prefix="/api")
    return app


app = create_app()
