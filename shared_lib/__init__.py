"""
shared_lib — Upstream clients and process-wide plumbing for anilistwatched.

Public API:
    ClientRegistry, normalize_base_url   -- pooled httpx clients keyed by host
    CredentialTable                      -- username -> AniList token routing
    JellyfinClient, JellyfinItem         -- async Jellyfin REST client
    JellyfinConnectionError              -- Jellyfin unreachable or timed out
    JellyfinRequestError                 -- Jellyfin non-2xx status
    CatalogNotFound                      -- series has no unique provider id
    AniListClient                        -- async AniList GraphQL client
    ListEntry, ListStatus                -- typed list entry models
    TrackedListSnapshot, AniListViewer
    AniListConnectionError               -- AniList unreachable or timed out
    AniListAuthError                     -- token rejected
    AniListQueryError                    -- other AniList HTTP / GraphQL errors
"""

__version__ = "1.2.0"

from shared_lib.client_registry import ClientRegistry, normalize_base_url
from shared_lib.credentials import CredentialTable
from shared_lib.jellyfin_client import (
    JellyfinClient,
    JellyfinItem,
    JellyfinConnectionError,
    JellyfinRequestError,
    CatalogNotFound,
)
from shared_lib.anilist_client import (
    ANILIST_URL,
    AniListClient,
    AniListViewer,
    ListEntry,
    ListStatus,
    TrackedListSnapshot,
    AniListConnectionError,
    AniListAuthError,
    AniListQueryError,
)

__all__ = [
    "__version__",
    "ClientRegistry",
    "normalize_base_url",
    "CredentialTable",
    "JellyfinClient",
    "JellyfinItem",
    "JellyfinConnectionError",
    "JellyfinRequestError",
    "CatalogNotFound",
    "ANILIST_URL",
    "AniListClient",
    "AniListViewer",
    "ListEntry",
    "ListStatus",
    "TrackedListSnapshot",
    "AniListConnectionError",
    "AniListAuthError",
    "AniListQueryError",
]
