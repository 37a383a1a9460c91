"""Liveness and readiness probes."""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from tutorgate.core.database import check_connection

logger = logging.getLogger("tutorgate")

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz(request: Request):
    """Readiness: the subscription store answers a trivial query."""
    engine = getattr(request.app.state, "engine", None)
    if not check_connection(engine):
        logger.warning("[readyz] database unreachable")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})
    return {"status": "ok"}
