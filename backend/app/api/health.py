from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.core.settings import Settings, get_settings
from app.db.session import ping_db
from app.db.valkey import ping_redis


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

AVAILABLE = {"status": "available"}
UNAVAILABLE = {"status": "unavailable"}


@router.get("/liveness")
async def liveness() -> dict[str, str]:
    return AVAILABLE


@router.get("/readiness")
async def readiness(settings: Settings = Depends(get_settings)) -> JSONResponse:
    # Both the database and the session store must answer in time.
    timeout = settings.health.ping_timeout_seconds
    for name, ping in (("database", ping_db), ("valkey", ping_redis)):
        try:
            await asyncio.wait_for(ping(), timeout=timeout)
        except Exception as exc:  # any failure means not ready; details stay in the log
            logger.warning("readiness check failed: %s ping: %r", name, exc)
            return JSONResponse(status_code=503, content=UNAVAILABLE)
    return JSONResponse(status_code=200, content=AVAILABLE)
