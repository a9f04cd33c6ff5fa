"""GET /health — Health status endpoint.

Returns service status including version, uptime and the number of users
with their own AniList token.
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from webhook import __version__

router = APIRouter()
logger = logging.getLogger(__name__)

# Import time of this module, used as the app start time
_start_time = time.time()


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    """Return service health status."""
    uptime_seconds = int(time.time() - _start_time)

    # credentials is set by the lifespan on app.state
    credentials = getattr(request.app.state, "credentials", None)
    users_configured = len(credentials) if credentials is not None else 0

    return JSONResponse(
        content={
            "status": "ok",
            "version": __version__,
            "uptime_seconds": uptime_seconds,
            "users_configured": users_configured,
        }
    )
