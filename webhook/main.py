"""FastAPI application for the anilistwatched webhook service.

Wires together configuration, structured logging, lifespan management
(client registry, credential table, scrobble engine), route registration,
and HTTP request logging middleware.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, Response

from reconciliation.engine import ScrobbleEngine, ShowLocks
from shared_lib.anilist_client import (
    AniListAuthError,
    AniListConnectionError,
    AniListQueryError,
)
from shared_lib.client_registry import ClientRegistry
from shared_lib.credentials import CredentialTable
from webhook import __version__
from webhook.config import WebhookSettings, config_path, get_settings
from webhook.logging_config import configure_logging
from webhook.routes import health, webhook
from worker.retry import RetryPolicy

logger = logging.getLogger(__name__)


def build_engine(settings: WebhookSettings, registry: ClientRegistry) -> ScrobbleEngine:
    """Create the ScrobbleEngine described by *settings*."""
    credentials = CredentialTable.from_settings(settings.anilist_users, settings.anilist_token)
    return ScrobbleEngine(
        registry=registry,
        credentials=credentials,
        jellyfin_api_key=settings.jellyfin_api_key,
        jellyfin_url=settings.jellyfin_url or None,
        provider_key=settings.provider_key,
        auto_add=settings.auto_add,
        retry_policy=RetryPolicy(
            max_attempts=settings.retry_attempts,
            backoff=tuple(settings.retry_backoff),
        ),
        show_locks=ShowLocks() if settings.serialize_per_show else None,
    )


async def _check_anilist_tokens(engine: ScrobbleEngine) -> int:
    """Resolve every configured token to its AniList account.

    Failures are logged, not fatal; AniList may simply be down at startup.
    Returns the number of tokens that worked.
    """
    tokens = dict(engine.credentials.users)
    if engine.credentials.fallback:
        tokens["(shared)"] = engine.credentials.fallback

    ok = 0
    for label, token in tokens.items():
        try:
            viewer = await engine.anilist_for(token).fetch_viewer()
        except AniListAuthError as e:
            logger.warning(f"AniList token for {label} was rejected: {e}")
            continue
        except (AniListConnectionError, AniListQueryError) as e:
            logger.warning(f"Could not verify AniList token for {label}: {e}")
            continue
        logger.info(f"AniList token for {label} belongs to {viewer.name} ({viewer.id})")
        ok += 1
    return ok


def _print_startup_banner(settings: WebhookSettings, users: int, tokens_ok: int) -> None:
    """Log the startup banner at info level."""
    logger.info(
        "anilistwatched starting",
        extra={
            "version": __version__,
            "bind": settings.bind,
            "port": settings.port,
            "jellyfin_url": settings.jellyfin_url,
            "users_configured": users,
            "shared_token": bool(settings.anilist_token),
            "tokens_verified": tokens_ok,
            "auto_add": settings.auto_add,
            "config_file": str(config_path()),
        },
    )
    # Also emit a human-readable summary for log tailing
    logger.info(
        f"anilistwatched v{__version__} | "
        f"Listening: {settings.bind}:{settings.port} | "
        f"Jellyfin: {settings.jellyfin_url or '(from payload)'} | "
        f"Users: {users} | "
        f"Auto-add: {'on' if settings.auto_add else 'off'}"
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """FastAPI lifespan context manager.

    Startup: load config, configure logging, build the client registry and
    engine, verify AniList tokens, print the startup banner.
    Shutdown: close every pooled HTTP client.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    registry = ClientRegistry(timeout=settings.request_timeout)
    engine = build_engine(settings, registry)

    app.state.registry = registry
    app.state.engine = engine
    app.state.credentials = engine.credentials
    app.state.allow_any_agent = settings.allow_any_agent

    tokens_ok = await _check_anilist_tokens(engine)
    _print_startup_banner(settings, len(engine.credentials), tokens_ok)

    try:
        yield
    finally:
        logger.info("anilistwatched shutting down")
        await registry.aclose()


# ── Application ──────────────────────────────────────────────────────────────

app = FastAPI(
    lifespan=lifespan,
    docs_url=None,    # Machine-to-machine API, no Swagger UI
    redoc_url=None,
)

app.include_router(webhook.router)
app.include_router(health.router)


# ── Request logging middleware ────────────────────────────────────────────────

@app.middleware("http")
async def log_requests(request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
    """Log all incoming requests with method, path, status, and response time."""
    start = time.perf_counter()
    response: Response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000

    logger.info(
        "HTTP request",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(elapsed_ms, 2),
        },
    )
    return response


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "webhook.main:app",
        host=settings.bind,
        port=settings.port,
        log_level=settings.log_level.lower(),
        access_log=False,  # We handle request logging ourselves
    )
