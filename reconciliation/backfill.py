"""
Library backfill: push already-watched Jellyfin progress to AniList.

For one Jellyfin user and library, every series carrying an AniList provider
id has its highest played season-1 episode run through the forward path of
the ScrobbleEngine. The same reconciliation rules apply as for webhooks, so
a backfill never lowers progress.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from reconciliation.engine import ScrobbleEngine, Severity
from reconciliation.reconciler import SUPPORTED_SEASON
from shared_lib.jellyfin_client import (
    JellyfinClient,
    JellyfinConnectionError,
    JellyfinItem,
    JellyfinRequestError,
)

logger = logging.getLogger(__name__)


@dataclass
class BackfillResult:
    """Result summary from a backfill run.

    Attributes:
        series_checked: Series found in the library
        scrobbled: Series whose AniList entry was updated
        skipped: Series without provider id, without played episodes, or
            rejected by reconciliation (already up to date, etc.)
        errors: Non-fatal and fatal error messages
    """
    series_checked: int = 0
    scrobbled: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


def _provider_id(item: JellyfinItem, provider_key: str) -> Optional[int]:
    wanted = provider_key.lower()
    for name, value in item.provider_ids.items():
        if name.lower() == wanted:
            try:
                media_id = int(value)
            except (TypeError, ValueError):
                return None
            return media_id if media_id > 0 else None
    return None


def _highest_played_episode(episodes: list[JellyfinItem]) -> int:
    highest = 0
    for ep in episodes:
        if (ep.parent_index_number or 0) != SUPPORTED_SEASON:
            continue
        highest = max(highest, ep.index_number or 0)
    return highest


class BackfillRunner:
    """Runs a backfill for one user and library.

    Args:
        engine: ScrobbleEngine providing credentials and the sync pipeline
        jellyfin: JellyfinClient for the server to read from
    """

    def __init__(self, engine: ScrobbleEngine, jellyfin: JellyfinClient):
        self.engine = engine
        self.jellyfin = jellyfin

    async def run(self, username: str, library_name: str, dry_run: bool = False) -> BackfillResult:
        """Backfill *library_name* for *username*.

        Args:
            username: Jellyfin username (also selects the AniList token)
            library_name: Jellyfin library (view) name, case-insensitive
            dry_run: Log what would be scrobbled without touching AniList

        Returns:
            BackfillResult with counts and any errors encountered
        """
        result = BackfillResult()

        token = self.engine.credentials.resolve_token(username)
        if not token:
            result.errors.append(f"No AniList token configured for user: {username}")
            return result

        try:
            user = await self.jellyfin.get_user_by_name(username)
            if user is None:
                result.errors.append(f"Jellyfin user '{username}' not found")
                return result

            views = await self.jellyfin.get_user_views(user.id)
            library = next(
                (v for v in views if v.name.lower() == library_name.lower()), None
            )
            if library is None:
                result.errors.append(f"Library '{library_name}' not found for user {username}")
                return result
            logger.info(f"Using library '{library.name}' ({library.id})")

            series = await self.jellyfin.get_series_in_library(user.id, library.id)
        except (JellyfinConnectionError, JellyfinRequestError) as e:
            result.errors.append(f"Failed to read Jellyfin library: {e}")
            logger.error(f"Failed to read Jellyfin library: {e}")
            return result

        logger.info(f"Found {len(series)} series in library")

        for item in series:
            result.series_checked += 1

            media_id = _provider_id(item, self.engine.provider_key)
            if media_id is None:
                logger.warning(f"'{item.name}' has no AniList provider id; skipping")
                result.skipped += 1
                continue

            try:
                played = await self.jellyfin.get_played_episodes(user.id, item.id)
            except (JellyfinConnectionError, JellyfinRequestError) as e:
                result.errors.append(f"'{item.name}': failed to read played episodes: {e}")
                continue

            episode = _highest_played_episode(played)
            if episode == 0:
                logger.debug(f"'{item.name}' has no played season 1 episodes; skipping")
                result.skipped += 1
                continue

            if dry_run:
                logger.info(f"[dry-run] '{item.name}' -> anime ({media_id}) episode {episode}")
                result.skipped += 1
                continue

            outcome = await self.engine.sync_media(token, media_id, episode)
            logger.info(f"'{item.name}' -> ep {episode}: {outcome.message}")
            if outcome.success:
                result.scrobbled += 1
            elif outcome.severity == Severity.ERROR:
                result.errors.append(f"'{item.name}': {outcome.message}")
            else:
                result.skipped += 1

        return result
