"""Progress reconciliation: decide the single AniList mutation for a watch event.

The reconciler operates on a pre-fetched TrackedListSnapshot (no API calls,
no exceptions for business outcomes) and returns one MutationDecision.
Executing the decision is the job of worker.applier.MutationApplier.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Union

from shared_lib.anilist_client import (
    PLANNING,
    WATCHING,
    ListStatus,
    TrackedListSnapshot,
)

SUPPORTED_SEASON = 1


class Direction(str, Enum):
    """Which way an event moves progress."""
    FORWARD = "forward"          # episode finished / marked played
    CORRECTION = "correction"    # episode marked unplayed


class NoOpReason(str, Enum):
    """Why no mutation is needed. Values double as human-readable messages."""
    UNSUPPORTED_SEASON = "unsupported season"
    ALREADY_AT_PROGRESS = "already at or beyond this progress"
    EXCEEDS_MAX_EPISODES = "episode exceeds known max"
    PLANNING_NOT_FIRST_EPISODE = "not first episode; cannot promote from planning"
    NOT_TRACKED = "show not tracked"
    AUTO_ADD_MID_SERIES = "cannot auto-add mid-series"
    NOTHING_TO_RESET = "show not tracked; nothing to reset"


@dataclass(frozen=True)
class ReconciliationInput:
    """A normalized watch event for one AniList show.

    Attributes:
        media_id: AniList media id of the show
        episode: 1-based episode number
        season: Season number; only season 1 is reconciled
        auto_add: Whether untracked shows may be added on episode 1
        direction: FORWARD for playback, CORRECTION for "marked unplayed"
    """
    media_id: int
    episode: int
    season: int = SUPPORTED_SEASON
    auto_add: bool = False
    direction: Direction = Direction.FORWARD


@dataclass(frozen=True)
class NoOp:
    reason: NoOpReason


@dataclass(frozen=True)
class AdvanceProgress:
    """Move a Watching entry forward (and complete it on the last episode)."""
    entry_id: int
    progress: int
    status: ListStatus


@dataclass(frozen=True)
class Transition:
    """Promote a Planning entry on its first episode."""
    entry_id: int
    progress: int
    status: ListStatus


@dataclass(frozen=True)
class CreateEntry:
    """Add an untracked show. The applier completes single-episode shows."""
    media_id: int
    progress: int
    status: ListStatus


@dataclass(frozen=True)
class ResetProgress:
    """Set an entry's progress back to 0, leaving its status alone."""
    entry_id: int


MutationDecision = Union[NoOp, AdvanceProgress, Transition, CreateEntry, ResetProgress]


def _status_after(episode: int, max_episodes) -> ListStatus:
    if max_episodes is not None and episode == max_episodes:
        return ListStatus.COMPLETED
    return ListStatus.CURRENT


def reconcile(event: ReconciliationInput, snapshot: TrackedListSnapshot) -> MutationDecision:
    """Compute the mutation for *event* against the user's current list.

    Args:
        event: Normalized watch event
        snapshot: The user's list, fetched for this event

    Returns:
        Exactly one MutationDecision; NoOp carries the reason nothing is done.
    """
    if event.season != SUPPORTED_SEASON:
        return NoOp(NoOpReason.UNSUPPORTED_SEASON)

    if event.direction == Direction.CORRECTION:
        return _reconcile_correction(event, snapshot)
    return _reconcile_forward(event, snapshot)


def _reconcile_forward(event: ReconciliationInput, snapshot: TrackedListSnapshot) -> MutationDecision:
    episode = event.episode

    entry = snapshot.find(event.media_id, bucket=WATCHING)
    if entry is not None:
        # Progress never regresses via playback
        if entry.progress >= episode:
            return NoOp(NoOpReason.ALREADY_AT_PROGRESS)
        if entry.max_episodes is not None and entry.max_episodes < episode:
            return NoOp(NoOpReason.EXCEEDS_MAX_EPISODES)
        return AdvanceProgress(
            entry_id=entry.entry_id,
            progress=episode,
            status=_status_after(episode, entry.max_episodes),
        )

    entry = snapshot.find(event.media_id, bucket=PLANNING)
    if entry is not None:
        if episode != 1:
            return NoOp(NoOpReason.PLANNING_NOT_FIRST_EPISODE)
        return Transition(
            entry_id=entry.entry_id,
            progress=1,
            status=_status_after(1, entry.max_episodes),
        )

    if not event.auto_add:
        return NoOp(NoOpReason.NOT_TRACKED)
    if episode != 1:
        return NoOp(NoOpReason.AUTO_ADD_MID_SERIES)
    return CreateEntry(media_id=event.media_id, progress=1, status=ListStatus.CURRENT)


def _reconcile_correction(event: ReconciliationInput, snapshot: TrackedListSnapshot) -> MutationDecision:
    # Corrections only reset progress; status is never downgraded
    entry = snapshot.find(event.media_id)
    if entry is None:
        return NoOp(NoOpReason.NOTHING_TO_RESET)
    return ResetProgress(entry_id=entry.entry_id)
