"""POST / and POST /webhook — Jellyfin webhook receiver.

Validates the caller, parses the payload and hands it to the hook dispatcher.
The ScrobbleResult becomes a plain-text response:

    success          -> 200
    severity info    -> 200 (acknowledged, nothing to do)
    severity warn    -> 400
    severity error   -> 500
"""

from __future__ import annotations

import logging
import time
import zlib

import pydantic
from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from hooks.handlers import dispatch
from reconciliation.engine import ScrobbleResult, Severity
from webhook.models import JellyfinPayload

router = APIRouter()
logger = logging.getLogger(__name__)

JELLYFIN_AGENT_PREFIX = "Jellyfin-Server/"

_STATUS_BY_SEVERITY = {
    Severity.INFO: 200,
    Severity.WARN: 400,
    Severity.ERROR: 500,
}

_LOG_LEVEL_BY_SEVERITY = {
    Severity.INFO: logging.INFO,
    Severity.WARN: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


def status_for(result: ScrobbleResult) -> int:
    """HTTP status code for a scrobble outcome."""
    if result.success:
        return 200
    return _STATUS_BY_SEVERITY[result.severity]


def make_request_id(request: Request) -> str:
    """Short id correlating the log lines of one request."""
    host = request.client.host if request.client else ""
    seed = f"{time.time_ns()}:{request.url.path}:{host}"
    return format(zlib.crc32(seed.encode()), "08x")


async def handle_webhook(request: Request) -> PlainTextResponse:
    request_id = make_request_id(request)
    extra = {"request_id": request_id}

    agent = request.headers.get("user-agent", "")
    allow_any = getattr(request.app.state, "allow_any_agent", False)
    if not allow_any and not agent.startswith(JELLYFIN_AGENT_PREFIX):
        logger.warning(f"Rejected request from user agent {agent!r}", extra=extra)
        return PlainTextResponse("Forbidden: not a Jellyfin server", status_code=403)

    try:
        body = await request.json()
    except ValueError:
        return PlainTextResponse("Invalid JSON body", status_code=400)
    if not isinstance(body, dict):
        return PlainTextResponse("Payload must be a JSON object", status_code=400)

    try:
        payload = JellyfinPayload.model_validate(body)
    except pydantic.ValidationError as exc:
        logger.warning(f"Invalid webhook payload: {exc}", extra=extra)
        return PlainTextResponse(f"Invalid payload: {exc}", status_code=400)

    result = await dispatch(payload, request.app.state.engine, request_id)
    logger.log(
        _LOG_LEVEL_BY_SEVERITY[result.severity],
        result.message,
        extra={**extra, "success": result.success, "username": payload.notification_username},
    )
    return PlainTextResponse(result.message, status_code=status_for(result))


@router.post("/")
async def webhook_root(request: Request) -> PlainTextResponse:
    return await handle_webhook(request)


@router.post("/webhook")
async def webhook(request: Request) -> PlainTextResponse:
    return await handle_webhook(request)
