"""API routes for the health engine.

Endpoints:
  GET  /api/health              check every component (200 up / 503 down)
  GET  /api/health/components   registered component names
  GET  /api/health/{name}       check one component (404 if unknown)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from vitals.health.context import CheckContext
from vitals.health.engine import HealthEngine
from vitals.health.models import ComponentNotFound

logger = logging.getLogger(__name__)

health_router = APIRouter()


def _engine(request: Request) -> HealthEngine:
    return request.app.state.engine


def _status_code(ok: bool) -> int:
    return 200 if ok else 503


@health_router.get("/health")
async def check_all(request: Request) -> JSONResponse:
    """Run every registered check concurrently."""
    ctx = CheckContext()
    try:
        result = await _engine(request).check_all(ctx)
    except asyncio.CancelledError:
        ctx.cancel()  # client went away
        raise
    return JSONResponse(result.to_dict(), status_code=_status_code(result.ok))


@health_router.get("/health/components")
def list_components(request: Request) -> dict[str, Any]:
    engine = _engine(request)
    return {"components": engine.names(), "timeout_seconds": engine.timeout}


@health_router.get("/health/{name}")
async def check_one(name: str, request: Request) -> JSONResponse:
    """Run a single component's check."""
    ctx = CheckContext()
    try:
        result = await _engine(request).check_one(name, ctx)
    except ComponentNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except asyncio.CancelledError:
        ctx.cancel()
        raise
    return JSONResponse(result.to_dict(), status_code=_status_code(result.ok))
