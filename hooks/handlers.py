"""
Hook handlers for Jellyfin webhook notifications.

Turns a JellyfinPayload into a ScrobbleEvent for the engine. Only episode
notifications that change play state are forwarded:

- PlaybackStop with PlayedToCompletion -> forward (episode watched)
- UserDataSaved with SaveReason TogglePlayed -> forward when Played,
  correction when marked unplayed

Everything else is acknowledged and ignored.
"""

import logging
from typing import Awaitable, Callable, Optional

from reconciliation.engine import ScrobbleEngine, ScrobbleEvent, ScrobbleResult
from reconciliation.reconciler import Direction
from shared_lib.jellyfin_client import JellyfinConnectionError, JellyfinRequestError
from webhook.models import JellyfinPayload

logger = logging.getLogger(__name__)

EPISODE = "Episode"
TOGGLE_PLAYED = "TogglePlayed"


def _build_event(
    payload: JellyfinPayload, direction: Direction, request_id: str
) -> ScrobbleEvent:
    return ScrobbleEvent(
        username=payload.notification_username or "",
        series_id=payload.series_id or "",
        episode=payload.episode_number,
        season=payload.season_number,
        direction=direction,
        server_url=payload.server_url,
        series_name=payload.series_name or payload.name or "",
        request_id=request_id,
    )


def _check_item_type(payload: JellyfinPayload) -> Optional[ScrobbleResult]:
    if payload.item_type != EPISODE:
        return ScrobbleResult.ignored(
            f"Item type {payload.item_type} is not an episode, ignoring."
        )
    return None


def _check_episode_number(payload: JellyfinPayload) -> Optional[ScrobbleResult]:
    if payload.episode_number is None:
        return ScrobbleResult.rejected("No EpisodeNumber in payload!")
    return None


async def handle_playback_stop(
    payload: JellyfinPayload, engine: ScrobbleEngine, request_id: str = ""
) -> ScrobbleResult:
    """Scrobble an episode that was played to completion."""
    skipped = _check_item_type(payload)
    if skipped is not None:
        return skipped

    if not payload.played_to_completion:
        return ScrobbleResult.ignored("Playback stopped before completion, ignoring.")

    rejected = _check_episode_number(payload)
    if rejected is not None:
        return rejected

    return await engine.scrobble(_build_event(payload, Direction.FORWARD, request_id))


async def handle_user_data_saved(
    payload: JellyfinPayload, engine: ScrobbleEngine, request_id: str = ""
) -> ScrobbleResult:
    """
    Scrobble a manual played/unplayed toggle.

    When the payload lacks ``Played`` the state is read back from Jellyfin;
    an unreadable state counts as played.
    """
    skipped = _check_item_type(payload)
    if skipped is not None:
        return skipped

    if payload.save_reason != TOGGLE_PLAYED:
        return ScrobbleResult.ignored(
            f"Save reason {payload.save_reason} is not {TOGGLE_PLAYED}, ignoring."
        )

    rejected = _check_episode_number(payload)
    if rejected is not None:
        return rejected

    played = payload.played
    if played is None:
        played = await _lookup_played(payload, engine, request_id)

    direction = Direction.FORWARD if played else Direction.CORRECTION
    return await engine.scrobble(_build_event(payload, direction, request_id))


async def _lookup_played(
    payload: JellyfinPayload, engine: ScrobbleEngine, request_id: str
) -> bool:
    extra = {"request_id": request_id, "item_id": payload.item_id}
    if not payload.item_id:
        logger.warning("UserDataSaved without Played or ItemId; assuming played", extra=extra)
        return True

    try:
        jellyfin = engine.jellyfin_for(payload.server_url)
        played = await jellyfin.get_episode_played(payload.item_id, payload.user_id)
    except (ValueError, JellyfinConnectionError, JellyfinRequestError) as e:
        logger.warning(f"Could not read play state from Jellyfin ({e}); assuming played", extra=extra)
        return True

    if played is None:
        logger.warning("Jellyfin returned no play state; assuming played", extra=extra)
        return True
    return played


Handler = Callable[[JellyfinPayload, ScrobbleEngine, str], Awaitable[ScrobbleResult]]

HANDLERS: dict[str, Handler] = {
    "PlaybackStop": handle_playback_stop,
    "UserDataSaved": handle_user_data_saved,
}


async def dispatch(
    payload: JellyfinPayload, engine: ScrobbleEngine, request_id: str = ""
) -> ScrobbleResult:
    """Route a payload to its NotificationType handler."""
    handler = HANDLERS.get(payload.notification_type or "")
    if handler is None:
        return ScrobbleResult.ignored(
            f"Notification type {payload.notification_type} is not handled, ignoring."
        )
    logger.debug(
        f"Handling {payload.notification_type} for {payload.notification_username}",
        extra={"request_id": request_id},
    )
    return await handler(payload, engine, request_id)
