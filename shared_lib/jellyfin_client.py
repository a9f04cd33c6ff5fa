"""
shared_lib.jellyfin_client — Async Jellyfin REST client.

Design notes:
- Async-only: all public methods are coroutines.
- Wraps a pooled ``httpx.AsyncClient`` from ``ClientRegistry`` (base URL is the
  Jellyfin server). The API key is sent per request, the pooled client itself
  carries no credentials and is never closed here.
- Returns typed Pydantic models (JellyfinItem) rather than raw JSON dicts.

Exports:
    JellyfinClient          -- async REST client
    JellyfinItem            -- typed model for a library item
    JellyfinConnectionError -- server unreachable or timed out
    JellyfinRequestError    -- non-2xx HTTP status
    CatalogNotFound         -- series has no unique provider id
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from shared_lib import __version__

log = logging.getLogger("shared_lib.jellyfin_client")

CLIENT_NAME = "anilistwatched"
DEVICE_ID = "4f8bb8fe"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class JellyfinConnectionError(Exception):
    """
    Jellyfin server is unreachable or the request timed out.
    """


class JellyfinRequestError(Exception):
    """
    Jellyfin answered with a non-2xx status.
    """

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class CatalogNotFound(Exception):
    """
    The series could not be resolved to exactly one record carrying the
    requested provider id.
    """


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class JellyfinItem(BaseModel):
    """A Jellyfin library item (series, episode or view) with flattened fields."""

    id: str
    name: str = ""
    type: Optional[str] = None
    provider_ids: dict[str, str] = {}
    index_number: Optional[int] = None          # episode number
    parent_index_number: Optional[int] = None   # season number
    played: Optional[bool] = None               # from UserData.Played


def _parse_item(raw: dict) -> JellyfinItem:
    user_data = raw.get("UserData") or {}
    return JellyfinItem(
        id=str(raw.get("Id", "")),
        name=raw.get("Name") or "",
        type=raw.get("Type"),
        provider_ids={str(k): str(v) for k, v in (raw.get("ProviderIds") or {}).items()},
        index_number=raw.get("IndexNumber"),
        parent_index_number=raw.get("ParentIndexNumber"),
        played=user_data.get("Played") if "Played" in user_data else None,
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class JellyfinClient:
    """
    Minimal async client for the parts of the Jellyfin API we read.

    Usage::

        registry = ClientRegistry()
        jellyfin = JellyfinClient(registry.get(server_url), api_key="...")
        anilist_id = await jellyfin.resolve_external_id(series_id, "anilist")
    """

    def __init__(self, http: httpx.AsyncClient, api_key: str) -> None:
        self._http = http
        self._headers = {
            "Accept": "application/json",
            "Authorization": (
                f'MediaBrowser Token="{api_key}", Client="{CLIENT_NAME}", '
                f'Device="script", DeviceId="{DEVICE_ID}", Version="{__version__}"'
            ),
        }

    @property
    def base_url(self) -> str:
        return str(self._http.base_url)

    async def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        """
        Issue a GET against the Jellyfin server.

        Raises:
            JellyfinConnectionError: Server unreachable or request timed out.
            JellyfinRequestError:    Non-2xx response or a body that is not JSON.
        """
        try:
            resp = await self._http.get(path, params=params, headers=self._headers)
        except httpx.ConnectError as exc:
            raise JellyfinConnectionError(f"Cannot connect to Jellyfin: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise JellyfinConnectionError(f"Jellyfin request timed out: {exc}") from exc

        if resp.status_code >= 400:
            raise JellyfinRequestError(
                f"Jellyfin GET {path} returned status {resp.status_code}",
                resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise JellyfinRequestError(
                f"Jellyfin GET {path} returned a non-JSON body", resp.status_code
            ) from exc

    async def resolve_external_id(self, series_id: str, provider_key: str) -> str:
        """
        Look up the provider id (e.g. AniList) tagged on a series.

        Args:
            series_id:    Jellyfin series item id
            provider_key: Provider name, matched case-insensitively

        Returns:
            The provider id string.

        Raises:
            CatalogNotFound:         Zero or several records, or provider missing.
            JellyfinConnectionError: Server unreachable or timed out.
        """
        try:
            body = await self._get(
                "/Items",
                params={
                    "ids": series_id,
                    "IncludeItemTypes": "Series",
                    "Fields": "ProviderIds",
                    "limit": 100,
                    "StartIndex": 0,
                },
            )
        except JellyfinRequestError as exc:
            raise CatalogNotFound(f"Series {series_id} lookup failed: {exc}") from exc

        if not isinstance(body, dict):
            raise CatalogNotFound(f"Series {series_id} lookup returned an unexpected body")

        count = body.get("TotalRecordCount", 0)
        items = body.get("Items") or []
        if count != 1 or len(items) != 1:
            if count > 1:
                log.warning(
                    "Series %s matched %d records; refusing to pick one", series_id, count
                )
            raise CatalogNotFound(f"Series {series_id} matched {count} records")

        item = _parse_item(items[0])
        wanted = provider_key.lower()
        for name, value in item.provider_ids.items():
            if name.lower() == wanted and value:
                return value

        raise CatalogNotFound(f"Series {series_id} has no '{provider_key}' provider id")

    async def get_episode_played(
        self, item_id: str, user_id: Optional[str] = None
    ) -> Optional[bool]:
        """
        Return ``UserData.Played`` for an episode, or None when unavailable.

        Uses the user-scoped endpoint when *user_id* is known, since the
        unscoped one carries no per-user play state.
        """
        path = f"/Users/{user_id}/Items/{item_id}" if user_id else f"/Items/{item_id}"
        body = await self._get(path, params={"Fields": "UserData"})
        if not body:
            return None
        return _parse_item(body).played

    async def get_user_by_name(self, username: str) -> Optional[JellyfinItem]:
        """Find a Jellyfin user by exact name."""
        users = await self._get("/Users")
        for raw in users or []:
            if raw.get("Name") == username:
                return _parse_item(raw)
        return None

    async def get_user_views(self, user_id: str) -> list[JellyfinItem]:
        """Return the libraries (views) visible to a user."""
        body = await self._get(f"/Users/{user_id}/Views")
        return [_parse_item(raw) for raw in body.get("Items") or []]

    async def get_series_in_library(self, user_id: str, library_id: str) -> list[JellyfinItem]:
        """Return every series in a library, with provider ids."""
        body = await self._get(
            f"/Users/{user_id}/Items",
            params={
                "ParentId": library_id,
                "IncludeItemTypes": "Series",
                "Fields": "ProviderIds",
                "Recursive": "true",
                "limit": 10000,
                "StartIndex": 0,
            },
        )
        return [_parse_item(raw) for raw in body.get("Items") or []]

    async def get_played_episodes(self, user_id: str, series_id: str) -> list[JellyfinItem]:
        """Return the episodes of a series the user has played."""
        body = await self._get(
            f"/Users/{user_id}/Items",
            params={
                "IncludeItemTypes": "Episode",
                "SeriesIds": series_id,
                "Filters": "IsPlayed",
                "Fields": "ParentIndexNumber,IndexNumber",
                "Recursive": "true",
                "limit": 10000,
                "StartIndex": 0,
            },
        )
        return [_parse_item(raw) for raw in body.get("Items") or []]
