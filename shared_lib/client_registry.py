"""
shared_lib.client_registry — Process-scoped pool of httpx clients.

One ``httpx.AsyncClient`` is kept per distinct upstream base URL (Jellyfin
servers announced by webhook payloads, the AniList GraphQL endpoint). Clients
are created on first use and live until ``aclose()`` is called from the
application lifespan. Authentication headers are NOT stored on the pooled
clients; the typed API wrappers add them per request, so one pooled client
can serve every user.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

import httpx

log = logging.getLogger("shared_lib.client_registry")

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def normalize_base_url(url: str) -> str:
    """
    Normalize a server URL into the registry key form.

    Adds ``http://`` when no scheme is present and strips trailing slashes,
    so ``jellyfin:8096/`` and ``http://jellyfin:8096`` share one client.
    """
    url = (url or "").strip()
    if not url:
        raise ValueError("Empty server URL")
    if not _SCHEME_RE.match(url):
        url = f"http://{url}"
    return url.rstrip("/")


class ClientRegistry:
    """
    Lazily populated map of base URL -> pooled ``httpx.AsyncClient``.

    Usage::

        registry = ClientRegistry(timeout=10.0)
        http = registry.get("http://jellyfin:8096")
        ...
        await registry.aclose()   # application shutdown
    """

    def __init__(
        self,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Args:
            timeout:   Total request timeout in seconds. Connect timeout is
                       fixed at 5 seconds.
            transport: Optional transport handed to every client (tests).
        """
        self._timeout = httpx.Timeout(timeout, connect=5.0)
        self._transport = transport
        self._clients: dict[str, httpx.AsyncClient] = {}

    def get(self, base_url: str) -> httpx.AsyncClient:
        """Return the pooled client for *base_url*, creating it on first use."""
        key = normalize_base_url(base_url)
        client = self._clients.get(key)
        if client is None:
            kwargs = {"base_url": key, "timeout": self._timeout}
            if self._transport is not None:
                kwargs["transport"] = self._transport
            client = httpx.AsyncClient(**kwargs)
            self._clients[key] = client
            log.debug("Created pooled HTTP client for %s", key)
        return client

    def __contains__(self, base_url: str) -> bool:
        return normalize_base_url(base_url) in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    async def aclose(self) -> None:
        """Close every pooled client. Only called at process shutdown."""
        for key, client in list(self._clients.items()):
            await client.aclose()
            log.debug("Closed pooled HTTP client for %s", key)
        self._clients.clear()
