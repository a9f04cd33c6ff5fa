"""
shared_lib.anilist_client — Async AniList GraphQL client.

Design notes:
- Async-only: all public methods are coroutines.
- Wraps the pooled AniList ``httpx.AsyncClient`` from ``ClientRegistry``; the
  user's token is sent per request, so constructing an ``AniListClient`` per
  webhook event is cheap and shares the connection pool.
- No retries here. Reads are not retried at all; write retries belong to
  ``worker.applier.MutationApplier``.
- Returns typed Pydantic models (ListEntry, TrackedListSnapshot).

Exports:
    AniListClient          -- async GraphQL client
    ListStatus             -- MediaListStatus enum
    ListEntry              -- one entry of a user's anime list
    TrackedListSnapshot    -- a user's anime list partitioned by list name
    AniListViewer          -- the authorized profile
    AniListConnectionError -- AniList unreachable or timed out
    AniListAuthError       -- token rejected
    AniListQueryError      -- any other HTTP / GraphQL error (has status_code)
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import BaseModel

log = logging.getLogger("shared_lib.anilist_client")

ANILIST_URL = "https://graphql.anilist.co"

WATCHING = "Watching"
PLANNING = "Planning"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class AniListConnectionError(Exception):
    """
    AniList is unreachable or the request timed out.
    """


class AniListQueryError(Exception):
    """
    AniList answered with an HTTP error or a GraphQL ``errors`` array.

    ``status_code`` carries the HTTP status (or the status reported inside
    the GraphQL error when the transport status was 200).
    """

    def __init__(self, message: str, status_code: int, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class AniListAuthError(AniListQueryError):
    """
    The token was rejected (invalid, expired or revoked).
    """


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class ListStatus(str, Enum):
    """AniList MediaListStatus."""
    CURRENT = "CURRENT"
    PLANNING = "PLANNING"
    COMPLETED = "COMPLETED"
    DROPPED = "DROPPED"
    PAUSED = "PAUSED"
    REPEATING = "REPEATING"


class ListEntry(BaseModel):
    """
    One entry of a user's anime list.

    ``media.id`` and ``media.episodes`` are flattened into ``media_id`` and
    ``max_episodes``; ``max_episodes`` is None while AniList does not know
    the show's length (airing shows).
    """

    entry_id: int
    media_id: int
    progress: int = 0
    max_episodes: Optional[int] = None
    status: Optional[ListStatus] = None


class TrackedListSnapshot(BaseModel):
    """A user's anime list, as named lists ("Watching", "Planning", ...) of entries."""

    buckets: dict[str, list[ListEntry]] = {}

    def bucket(self, name: str) -> list[ListEntry]:
        return self.buckets.get(name, [])

    def find(self, media_id: int, bucket: Optional[str] = None) -> Optional[ListEntry]:
        """Return the first entry for *media_id*, in one bucket or across all of them."""
        names = [bucket] if bucket is not None else list(self.buckets)
        for name in names:
            for entry in self.bucket(name):
                if entry.media_id == media_id:
                    return entry
        return None


class AniListViewer(BaseModel):
    """The profile the token belongs to."""

    id: int
    name: str = ""


# ---------------------------------------------------------------------------
# GraphQL documents
# ---------------------------------------------------------------------------

_VIEWER = """
query {
    Viewer {
        id
        name
    }
}
"""

_LIST_COLLECTION = """
query ($userId: Int!) {
    MediaListCollection(userId: $userId, type: ANIME) {
        lists {
            name
            status
            isCustomList
            entries {
                id
                progress
                status
                media {
                    id
                    episodes
                }
            }
        }
    }
}
"""

_MEDIA_EPISODES = """
query ($id: Int!) {
    Media(id: $id, type: ANIME) {
        id
        episodes
    }
}
"""

# Variables missing from the payload are treated as "not provided" by
# AniList, so one document serves updates (id) and creations (mediaId).
_SAVE_ENTRY = """
mutation ($id: Int, $mediaId: Int, $progress: Int, $status: MediaListStatus) {
    SaveMediaListEntry(id: $id, mediaId: $mediaId, progress: $progress, status: $status) {
        id
        progress
        status
        media {
            id
            episodes
        }
    }
}
"""


# ---------------------------------------------------------------------------
# Parse helpers
# ---------------------------------------------------------------------------


def _parse_entry(raw: dict) -> ListEntry:
    media = raw.get("media") or {}
    status = raw.get("status")
    return ListEntry(
        entry_id=raw["id"],
        media_id=media.get("id", 0),
        progress=raw.get("progress") or 0,
        max_episodes=media.get("episodes"),
        status=ListStatus(status) if status else None,
    )


def _parse_snapshot(collection: dict) -> TrackedListSnapshot:
    buckets: dict[str, list[ListEntry]] = {}
    for raw_list in collection.get("lists") or []:
        name = raw_list.get("name") or ""
        entries = buckets.setdefault(name, [])
        for raw_entry in raw_list.get("entries") or []:
            if raw_entry.get("id") is None:
                continue
            entries.append(_parse_entry(raw_entry))
    return TrackedListSnapshot(buckets=buckets)


def _is_auth_failure(status_code: int, messages: list[str]) -> bool:
    if status_code in (401, 403):
        return True
    return any("invalid token" in m.lower() or "unauthorized" in m.lower() for m in messages)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class AniListClient:
    """
    Async GraphQL client bound to one user's token.

    Usage::

        http = registry.get(ANILIST_URL)
        anilist = AniListClient(http, token)
        viewer = await anilist.fetch_viewer()
        snapshot = await anilist.fetch_snapshot(viewer.id)
    """

    def __init__(self, http: httpx.AsyncClient, token: str) -> None:
        self._http = http
        self._headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {token}",
        }

    async def _gql(self, query: str, variables: Optional[dict[str, Any]] = None) -> dict:
        """
        Execute a GraphQL document against AniList.

        Returns:
            The ``data`` dict from the GraphQL response.

        Raises:
            AniListConnectionError: AniList unreachable or timed out.
            AniListAuthError:       Token rejected.
            AniListQueryError:      Any other HTTP or GraphQL error.
        """
        try:
            resp = await self._http.post(
                "",
                json={"query": query, "variables": variables or {}},
                headers=self._headers,
            )
        except httpx.ConnectError as exc:
            raise AniListConnectionError(f"Cannot connect to AniList: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise AniListConnectionError(f"AniList request timed out: {exc}") from exc

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        errors = body.get("errors") or []
        messages = [str(e.get("message", e)) for e in errors if isinstance(e, dict)]

        if resp.status_code >= 400 or errors:
            status_code = resp.status_code
            if status_code < 400:
                # 200 with an errors array: use the status AniList put in the error
                status_code = next(
                    (int(e["status"]) for e in errors if isinstance(e, dict) and e.get("status")),
                    400,
                )
            detail = "; ".join(messages) or resp.text[:200]
            message = f"AniList returned {status_code}: {detail}"
            if _is_auth_failure(status_code, messages):
                raise AniListAuthError(message, status_code)
            retry_after = None
            if status_code == 429:
                try:
                    retry_after = float(resp.headers.get("Retry-After", ""))
                except ValueError:
                    retry_after = None
            raise AniListQueryError(message, status_code, retry_after=retry_after)

        return body.get("data") or {}

    async def fetch_viewer(self) -> AniListViewer:
        """Return the profile the token is authorized for."""
        data = await self._gql(_VIEWER)
        viewer = data.get("Viewer")
        if not viewer or viewer.get("id") is None:
            raise AniListAuthError("AniList returned no Viewer for this token", 401)
        return AniListViewer(id=viewer["id"], name=viewer.get("name") or "")

    async def fetch_snapshot(self, user_id: int) -> TrackedListSnapshot:
        """Fetch the user's full anime list in one call."""
        data = await self._gql(_LIST_COLLECTION, {"userId": user_id})
        return _parse_snapshot(data.get("MediaListCollection") or {})

    async def fetch_media_episodes(self, media_id: int) -> Optional[int]:
        """Return the show's episode count, or None when AniList does not know it."""
        data = await self._gql(_MEDIA_EPISODES, {"id": media_id})
        media = data.get("Media") or {}
        return media.get("episodes")

    async def _save(self, variables: dict[str, Any]) -> ListEntry:
        data = await self._gql(_SAVE_ENTRY, variables)
        raw = data.get("SaveMediaListEntry")
        if not raw:
            raise AniListQueryError("SaveMediaListEntry returned no entry", 500)
        entry = _parse_entry(raw)
        log.debug(
            "Saved list entry %s: progress=%s status=%s",
            entry.entry_id, entry.progress, entry.status,
        )
        return entry

    async def update_entry(
        self,
        entry_id: int,
        progress: int,
        status: Optional[ListStatus] = None,
    ) -> ListEntry:
        """Set progress (and optionally status) of an existing list entry."""
        variables: dict[str, Any] = {"id": entry_id, "progress": progress}
        if status is not None:
            variables["status"] = ListStatus(status).value
        return await self._save(variables)

    async def add_entry(self, media_id: int, progress: int, status: ListStatus) -> ListEntry:
        """Create a list entry for a show not yet on the user's list."""
        return await self._save(
            {"mediaId": media_id, "progress": progress, "status": ListStatus(status).value}
        )
