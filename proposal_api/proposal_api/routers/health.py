"""Health-check and readiness probe endpoints.

``/health`` (liveness) is registered under ``/api/v1``.  ``/ready`` lives at
the application root so orchestrators can gate traffic independently of the
API version.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from proposal_api import __version__
from proposal_api.dependencies import PublicSessionDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(session: PublicSessionDep) -> dict[str, Any]:
    """Return service health.

    Always HTTP 200 so load-balancers see the process as alive; ``db``
    reports whether the store answered.
    """
    result: dict[str, Any] = {"status": "healthy", "version": __version__, "db": "ok"}
    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("DB health check failed: %s", exc)
        result["db"] = "degraded"
    return result


readiness_router = APIRouter(tags=["infrastructure"])


@readiness_router.get("/ready")
async def readiness_probe(session: PublicSessionDep) -> JSONResponse:
    """Readiness probe: HTTP 503 with ``not_ready`` when the database is unreachable."""
    checks: dict[str, str] = {"db": "ok"}
    overall = "ready"
    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("Readiness: DB check failed: %s", exc)
        checks["db"] = "unavailable"
        overall = "not_ready"

    return JSONResponse(
        status_code=200 if overall == "ready" else 503,
        content={"status": overall, "version": __version__, "checks": checks},
    )
