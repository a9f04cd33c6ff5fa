"""
Shared pytest fixtures for anilistwatched tests.

Provides:
- Sample AniList list entries and snapshots
- GraphQL response builders for respx-mocked AniList calls
- A ScrobbleEngine wired to a fresh ClientRegistry with zero-delay retries

HTTP is mocked with respx; collaborators with unittest.mock.
"""

import json

import httpx
import pytest
import pytest_asyncio

from reconciliation.engine import ScrobbleEngine
from shared_lib.anilist_client import (
    PLANNING,
    WATCHING,
    ListEntry,
    ListStatus,
    TrackedListSnapshot,
)
from shared_lib.client_registry import ClientRegistry
from shared_lib.credentials import CredentialTable
from worker.retry import RetryPolicy

JELLYFIN_URL = "http://jellyfin:8096"
ANILIST_ENDPOINT = "https://graphql.anilist.co/"


# =============================================================================
# Snapshot helpers
# =============================================================================

def make_entry(media_id, progress=0, max_episodes=None, status=ListStatus.CURRENT, entry_id=None):
    """Build a ListEntry; entry_id defaults to media_id * 10."""
    return ListEntry(
        entry_id=entry_id if entry_id is not None else media_id * 10,
        media_id=media_id,
        progress=progress,
        max_episodes=max_episodes,
        status=status,
    )


def make_snapshot(watching=(), planning=(), **other_buckets):
    """Build a TrackedListSnapshot from entry lists per bucket."""
    buckets = {WATCHING: list(watching), PLANNING: list(planning)}
    for name, entries in other_buckets.items():
        buckets[name] = list(entries)
    return TrackedListSnapshot(buckets=buckets)


# =============================================================================
# AniList GraphQL response builders
# =============================================================================

def viewer_response(user_id=1, name="tester"):
    return {"data": {"Viewer": {"id": user_id, "name": name}}}


def raw_entry(entry_id, media_id, progress, status, episodes=None):
    return {
        "id": entry_id,
        "progress": progress,
        "status": status,
        "media": {"id": media_id, "episodes": episodes},
    }


def collection_response(watching=(), planning=(), completed=()):
    """MediaListCollection body; each list holds raw_entry() dicts."""
    lists = []
    for name, status, entries in (
        (WATCHING, "CURRENT", watching),
        (PLANNING, "PLANNING", planning),
        ("Completed", "COMPLETED", completed),
    ):
        if entries:
            lists.append({
                "name": name,
                "status": status,
                "isCustomList": False,
                "entries": list(entries),
            })
    return {"data": {"MediaListCollection": {"lists": lists}}}


def save_response(entry_id, media_id, progress, status, episodes=None):
    return {"data": {"SaveMediaListEntry": raw_entry(entry_id, media_id, progress, status, episodes)}}


def media_response(media_id, episodes):
    return {"data": {"Media": {"id": media_id, "episodes": episodes}}}


class GraphQLRouter:
    """
    respx side effect dispatching AniList requests by GraphQL operation.

    Each key maps to a response dict or a list of them (consumed in order,
    last one repeated). A (status_code, body) tuple produces an error
    response; a fresh httpx.Response is built for every call.
    Sent requests are recorded as (operation, variables) in ``calls``.
    """

    OPERATIONS = ("SaveMediaListEntry", "MediaListCollection", "Viewer", "Media(")

    def __init__(self, **responses):
        self.responses = {
            "SaveMediaListEntry": responses.get("save"),
            "MediaListCollection": responses.get("collection"),
            "Viewer": responses.get("viewer", viewer_response()),
            "Media(": responses.get("media"),
        }
        self.calls = []

    def operations(self, name):
        return [variables for op, variables in self.calls if op == name]

    def __call__(self, request):
        body = json.loads(request.content)
        query = body["query"]
        op = next(name for name in self.OPERATIONS if name in query)
        self.calls.append((op, body.get("variables") or {}))

        value = self.responses[op]
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if isinstance(value, tuple):
            status_code, body = value
            return httpx.Response(status_code, json=body)
        if value is None:
            raise AssertionError(f"Unexpected AniList operation: {op}")
        return httpx.Response(200, json=value)


# =============================================================================
# Engine fixtures
# =============================================================================

@pytest.fixture
def zero_delay_policy():
    """RetryPolicy with the production attempt budget and no waiting."""
    return RetryPolicy(max_attempts=3, backoff=(0.0, 0.0))


@pytest_asyncio.fixture
async def registry():
    registry = ClientRegistry(timeout=5.0)
    yield registry
    await registry.aclose()


@pytest.fixture
def credentials():
    return CredentialTable.from_settings({"alice": {"token": "alice-token"}}, fallback=None)


@pytest.fixture
def engine(registry, credentials, zero_delay_policy):
    return ScrobbleEngine(
        registry=registry,
        credentials=credentials,
        jellyfin_api_key="jf-key",
        jellyfin_url=JELLYFIN_URL,
        retry_policy=zero_delay_policy,
    )
