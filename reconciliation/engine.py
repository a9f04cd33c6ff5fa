"""
Scrobble engine orchestrator for Jellyfin-to-AniList progress sync.

Connects the pure reconciler to real infrastructure: credential routing,
Jellyfin catalog lookup, the AniList list snapshot and the mutation applier.
Every failure is converted into a ScrobbleResult here; nothing escapes to
the webhook layer.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from reconciliation.reconciler import (
    SUPPORTED_SEASON,
    CreateEntry,
    Direction,
    MutationDecision,
    NoOp,
    NoOpReason,
    ReconciliationInput,
    ResetProgress,
    reconcile,
)
from shared_lib.anilist_client import (
    ANILIST_URL,
    AniListAuthError,
    AniListClient,
    AniListConnectionError,
    AniListQueryError,
    ListEntry,
    ListStatus,
)
from shared_lib.client_registry import ClientRegistry
from shared_lib.credentials import CredentialTable
from shared_lib.jellyfin_client import (
    CatalogNotFound,
    JellyfinClient,
    JellyfinConnectionError,
)
from worker.applier import ApplyFailed, MutationApplier
from worker.retry import RetryPolicy

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    """Log level attached to a scrobble outcome."""
    ERROR = "error"
    WARN = "warn"
    INFO = "info"


@dataclass(frozen=True)
class ScrobbleResult:
    """Outcome of one scrobble.

    Attributes:
        success: Whether AniList now reflects the event
        message: Human-readable explanation
        severity: ERROR for upstream/operator faults, WARN for rejected or
            skipped events, INFO for success or ignored events
    """
    success: bool
    message: str
    severity: Severity

    @classmethod
    def ok(cls, message: str) -> "ScrobbleResult":
        return cls(True, message, Severity.INFO)

    @classmethod
    def ignored(cls, message: str) -> "ScrobbleResult":
        return cls(False, message, Severity.INFO)

    @classmethod
    def rejected(cls, message: str) -> "ScrobbleResult":
        return cls(False, message, Severity.WARN)

    @classmethod
    def failed(cls, message: str) -> "ScrobbleResult":
        return cls(False, message, Severity.ERROR)


@dataclass(frozen=True)
class ScrobbleEvent:
    """A webhook notification normalized for the engine.

    Attributes:
        username: Jellyfin username (selects the AniList token)
        series_id: Jellyfin series id (resolved to an AniList media id)
        episode: Episode number
        season: Season number
        direction: FORWARD (played) or CORRECTION (marked unplayed)
        server_url: Jellyfin server announced in the payload, if any
        series_name: For log messages only
        request_id: Correlates log lines of one webhook request
    """
    username: str
    series_id: str
    episode: int
    season: int = SUPPORTED_SEASON
    direction: Direction = Direction.FORWARD
    server_url: Optional[str] = None
    series_name: str = ""
    request_id: str = ""


class ShowLocks:
    """In-process locks serializing reconcile+apply per (token, media id).

    Locks are created on demand and never evicted; the key space is bounded
    by users x shows actually watched.
    """

    def __init__(self):
        self._locks: dict[tuple[str, int], asyncio.Lock] = {}

    def lock(self, token: str, media_id: int) -> asyncio.Lock:
        key = (token, media_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def __len__(self) -> int:
        return len(self._locks)


class ScrobbleEngine:
    """Resolves, reconciles and applies watch events for many users.

    Args:
        registry: Process-wide ClientRegistry (pooled HTTP clients)
        credentials: CredentialTable mapping usernames to AniList tokens
        jellyfin_api_key: API key sent to every Jellyfin server
        jellyfin_url: Fallback server URL when a payload carries none
        provider_key: Jellyfin provider id name holding the AniList id
        auto_add: Allow adding untracked shows on episode 1
        retry_policy: RetryPolicy for AniList writes
        show_locks: Optional ShowLocks to serialize same-show events
    """

    def __init__(
        self,
        registry: ClientRegistry,
        credentials: CredentialTable,
        jellyfin_api_key: str,
        jellyfin_url: Optional[str] = None,
        provider_key: str = "anilist",
        auto_add: bool = False,
        retry_policy: Optional[RetryPolicy] = None,
        show_locks: Optional[ShowLocks] = None,
        anilist_url: str = ANILIST_URL,
    ):
        self.registry = registry
        self.credentials = credentials
        self.jellyfin_api_key = jellyfin_api_key
        self.jellyfin_url = jellyfin_url
        self.provider_key = provider_key
        self.auto_add = auto_add
        self.retry_policy = retry_policy or RetryPolicy()
        self.show_locks = show_locks
        self.anilist_url = anilist_url

    # -- client factories ---------------------------------------------------

    def jellyfin_for(self, server_url: Optional[str]) -> JellyfinClient:
        """Jellyfin client for the payload's server, or the configured fallback."""
        url = (server_url or "").strip() or (self.jellyfin_url or "")
        return JellyfinClient(self.registry.get(url), self.jellyfin_api_key)

    def anilist_for(self, token: str) -> AniListClient:
        return AniListClient(self.registry.get(self.anilist_url), token)

    # -- entry points ---------------------------------------------------------

    async def scrobble(self, event: ScrobbleEvent) -> ScrobbleResult:
        """Handle one normalized webhook event. Never raises."""
        try:
            return await self._scrobble(event)
        except Exception as e:
            logger.exception(
                f"Unexpected error while scrobbling: {e}",
                extra={"request_id": event.request_id},
            )
            return ScrobbleResult.failed(f"Unexpected error: {e}")

    async def sync_media(
        self,
        token: str,
        media_id: int,
        episode: int,
        season: int = SUPPORTED_SEASON,
        direction: Direction = Direction.FORWARD,
        request_id: str = "",
    ) -> ScrobbleResult:
        """Reconcile one AniList show for one token. Never raises."""
        try:
            return await self._sync(token, media_id, episode, season, direction, request_id)
        except Exception as e:
            logger.exception(
                f"Unexpected error while syncing anime ({media_id}): {e}",
                extra={"request_id": request_id},
            )
            return ScrobbleResult.failed(f"Unexpected error: {e}")

    # -- pipeline -------------------------------------------------------------

    async def _scrobble(self, event: ScrobbleEvent) -> ScrobbleResult:
        extra = {"request_id": event.request_id, "username": event.username}

        if not event.username:
            return ScrobbleResult.rejected("No NotificationUsername in payload!")

        token = self.credentials.resolve_token(event.username)
        if not token:
            return ScrobbleResult.rejected(
                f"No AniList token configured for user: {event.username}"
            )

        if event.season != SUPPORTED_SEASON:
            return self._noop_result(0, event.episode, NoOp(NoOpReason.UNSUPPORTED_SEASON))

        if not event.series_id:
            return ScrobbleResult.rejected("No SeriesId in payload!")

        try:
            jellyfin = self.jellyfin_for(event.server_url)
        except ValueError:
            return ScrobbleResult.rejected(
                "No ServerUrl in payload and no jellyfin_url configured!"
            )

        try:
            media_id = await self.resolve_media_id(jellyfin, event.series_id)
        except CatalogNotFound as e:
            return ScrobbleResult.rejected(
                f'No or invalid "{self.provider_key}" provider id for series {event.series_id}: {e}'
            )
        except JellyfinConnectionError as e:
            return ScrobbleResult.failed(f"Jellyfin unavailable: {e}")

        logger.info(
            f'Detected as "{event.series_name} - {event.episode}" for user {event.username} '
            f"(anime {media_id}, {event.direction.value})",
            extra=extra,
        )
        return await self._sync(
            token, media_id, event.episode, event.season, event.direction, event.request_id
        )

    async def resolve_media_id(self, jellyfin: JellyfinClient, series_id: str) -> int:
        """Resolve a Jellyfin series to an AniList media id.

        Raises:
            CatalogNotFound: missing, ambiguous or non-numeric provider id
            JellyfinConnectionError: Jellyfin unreachable
        """
        raw = await jellyfin.resolve_external_id(series_id, self.provider_key)
        try:
            media_id = int(raw)
        except (TypeError, ValueError):
            raise CatalogNotFound(f"provider id {raw!r} is not numeric")
        if media_id <= 0:
            raise CatalogNotFound(f"provider id {raw!r} is not positive")
        return media_id

    async def _sync(
        self,
        token: str,
        media_id: int,
        episode: int,
        season: int,
        direction: Direction,
        request_id: str,
    ) -> ScrobbleResult:
        extra = {"request_id": request_id, "media_id": media_id}
        anilist = self.anilist_for(token)
        event = ReconciliationInput(
            media_id=media_id,
            episode=episode,
            season=season,
            auto_add=self.auto_add,
            direction=direction,
        )

        guard = (
            self.show_locks.lock(token, media_id)
            if self.show_locks is not None
            else contextlib.nullcontext()
        )
        async with guard:
            try:
                viewer = await anilist.fetch_viewer()
                snapshot = await anilist.fetch_snapshot(viewer.id)
            except AniListAuthError as e:
                return ScrobbleResult.failed(f"AniList rejected the token: {e}")
            except (AniListConnectionError, AniListQueryError) as e:
                return ScrobbleResult.failed(f"Something went wrong while connecting to AniList: {e}")

            decision = reconcile(event, snapshot)
            logger.debug(f"Decision for anime ({media_id}): {decision}", extra=extra)

            if isinstance(decision, NoOp):
                return self._noop_result(media_id, episode, decision)

            try:
                entry = await MutationApplier(anilist, self.retry_policy).apply(decision)
            except ApplyFailed as e:
                if isinstance(e.cause, AniListAuthError):
                    return ScrobbleResult.failed(f"AniList rejected the token: {e.cause}")
                return ScrobbleResult.failed(f"Anime ({media_id}) could not be updated: {e}")

        return self._applied_result(media_id, episode, decision, entry)

    # -- result mapping -------------------------------------------------------

    @staticmethod
    def _noop_result(media_id: int, episode: int, decision: NoOp) -> ScrobbleResult:
        if decision.reason == NoOpReason.UNSUPPORTED_SEASON:
            return ScrobbleResult.rejected(
                "Can only scrobble normal episodes (season != 1)!"
            )
        return ScrobbleResult.rejected(
            f"Skipping anime ({media_id}) episode {episode}: {decision.reason.value}."
        )

    @staticmethod
    def _applied_result(
        media_id: int, episode: int, decision: MutationDecision, entry: ListEntry
    ) -> ScrobbleResult:
        if isinstance(decision, ResetProgress):
            if entry.progress == 0:
                return ScrobbleResult.ok(
                    f"Anime ({media_id}) episode {episode} marked as unwatched, progress reset to 0."
                )
            return ScrobbleResult.failed(
                f"AniList returned unexpected result: {entry.model_dump_json()}"
            )

        if entry.status == ListStatus.COMPLETED:
            return ScrobbleResult.ok(f"Anime ({media_id}) marked completed.")

        expected = decision.progress
        if entry.status == ListStatus.CURRENT or entry.progress == expected:
            status = entry.status.value if entry.status else "UNKNOWN"
            if isinstance(decision, CreateEntry):
                return ScrobbleResult.ok(
                    f"Anime ({media_id}) added to list as {status} with progress {entry.progress}."
                )
            return ScrobbleResult.ok(
                f"Anime ({media_id}) is {status} and progress set to {entry.progress}."
            )
        return ScrobbleResult.failed(
            f"AniList returned unexpected result: {entry.model_dump_json()}"
        )
