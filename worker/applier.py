"""
Mutation applier: executes a reconciliation decision against AniList.

Each decision maps to exactly one SaveMediaListEntry call, wrapped in the
RetryPolicy. CreateEntry additionally reads the show's episode count so a
single-episode show is added as COMPLETED in the same write.
"""

import logging
from typing import Optional

from reconciliation.reconciler import (
    AdvanceProgress,
    CreateEntry,
    MutationDecision,
    NoOp,
    ResetProgress,
    Transition,
)
from shared_lib.anilist_client import AniListClient, ListEntry, ListStatus
from worker.retry import RetryPolicy

logger = logging.getLogger(__name__)


class ApplyFailed(Exception):
    """A decision could not be applied (permanent error or retries exhausted)."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause


class MutationApplier:
    """
    Applies MutationDecisions through an AniListClient.

    Args:
        client: AniListClient bound to the user's token
        policy: RetryPolicy for writes (default: 3 attempts, 30s/60s backoff)
    """

    def __init__(self, client: AniListClient, policy: Optional[RetryPolicy] = None):
        self.client = client
        self.policy = policy or RetryPolicy()

    async def apply(self, decision: MutationDecision) -> ListEntry:
        """
        Execute *decision* and return the entry as AniList saved it.

        Raises:
            ValueError: decision is a NoOp (those never reach the applier)
            ApplyFailed: permanent failure, or transient failures exhausted retries
        """
        if isinstance(decision, NoOp):
            raise ValueError(f"NoOp decisions are not applied ({decision.reason.value})")

        try:
            if isinstance(decision, (AdvanceProgress, Transition)):
                return await self.policy.run(
                    lambda: self.client.update_entry(
                        decision.entry_id, decision.progress, decision.status
                    ),
                    describe=f"Update of list entry {decision.entry_id}",
                )

            if isinstance(decision, ResetProgress):
                return await self.policy.run(
                    lambda: self.client.update_entry(decision.entry_id, 0),
                    describe=f"Progress reset of list entry {decision.entry_id}",
                )

            if isinstance(decision, CreateEntry):
                return await self._create(decision)
        except Exception as exc:
            raise ApplyFailed(f"{type(exc).__name__}: {exc}", cause=exc) from exc

        raise TypeError(f"Unknown decision type: {type(decision).__name__}")

    async def _create(self, decision: CreateEntry) -> ListEntry:
        status = decision.status
        episodes = await self.client.fetch_media_episodes(decision.media_id)
        if episodes is not None and episodes == decision.progress:
            status = ListStatus.COMPLETED
        logger.debug(
            f"Adding media {decision.media_id} (episodes={episodes}) as {status.value}"
        )
        return await self.policy.run(
            lambda: self.client.add_entry(decision.media_id, decision.progress, status),
            describe=f"Add of media {decision.media_id}",
        )
