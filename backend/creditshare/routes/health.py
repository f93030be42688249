"""
CreditShare Backend - Health Check Route
=========================================

What:  Liveness/readiness probe for load balancers and container health
       checks.
How:   SELECT 1 against the database and a writability check on the blob
       root. Both are required to serve uploads and downloads, so either one
       failing makes the service unhealthy (HTTP 503).
"""

import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from creditshare import __version__
from creditshare.schemas.files import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"description": "A dependency is unavailable", "model": HealthResponse}},
    summary="Service health check",
)
async def health_check(request: Request):
    db_status = "connected"
    storage_status = "writable"
    overall = "healthy"

    # ── Check Database ────────────────────────────────────────────────────
    try:
        async with request.app.state.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    # ── Check Blob Store ──────────────────────────────────────────────────
    if not await request.app.state.blob_store.health_check():
        storage_status = "unavailable"
        overall = "unhealthy"
        logger.warning("Health check: blob storage is not writable")

    body = HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        storage=storage_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
    if overall != "healthy":
        return JSONResponse(status_code=503, content=body.model_dump())
    return body
