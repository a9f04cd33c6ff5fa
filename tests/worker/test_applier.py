"""
Tests for worker.applier — executing reconciliation decisions.

The AniList client is an AsyncMock; the retry policy uses a zero backoff.
"""

import pytest
from unittest.mock import AsyncMock

from reconciliation.reconciler import (
    AdvanceProgress,
    CreateEntry,
    NoOp,
    NoOpReason,
    ResetProgress,
    Transition,
)
from shared_lib.anilist_client import AniListAuthError, AniListQueryError, ListStatus
from tests.conftest import make_entry
from worker.applier import ApplyFailed, MutationApplier


@pytest.fixture
def client():
    return AsyncMock()


@pytest.fixture
def applier(client, zero_delay_policy):
    return MutationApplier(client, zero_delay_policy)


@pytest.mark.asyncio
async def test_advance_is_one_update_with_status(applier, client):
    saved = make_entry(21, progress=12, max_episodes=12, status=ListStatus.COMPLETED)
    client.update_entry.return_value = saved

    entry = await applier.apply(AdvanceProgress(entry_id=210, progress=12, status=ListStatus.COMPLETED))

    assert entry is saved
    client.update_entry.assert_awaited_once_with(210, 12, ListStatus.COMPLETED)
    client.add_entry.assert_not_awaited()


@pytest.mark.asyncio
async def test_transition_updates_entry(applier, client):
    client.update_entry.return_value = make_entry(21, progress=1)

    await applier.apply(Transition(entry_id=210, progress=1, status=ListStatus.CURRENT))

    client.update_entry.assert_awaited_once_with(210, 1, ListStatus.CURRENT)


@pytest.mark.asyncio
async def test_reset_sets_progress_zero_without_status(applier, client):
    client.update_entry.return_value = make_entry(21, progress=0)

    entry = await applier.apply(ResetProgress(entry_id=210))

    assert entry.progress == 0
    client.update_entry.assert_awaited_once_with(210, 0)


@pytest.mark.asyncio
async def test_reset_twice_reaches_same_state(applier, client):
    """Applying the same reset twice leaves progress at 0 both times."""
    client.update_entry.return_value = make_entry(21, progress=0, status=ListStatus.CURRENT)

    first = await applier.apply(ResetProgress(entry_id=210))
    second = await applier.apply(ResetProgress(entry_id=210))

    assert first.progress == second.progress == 0
    assert first.status == second.status
    assert client.update_entry.await_count == 2


@pytest.mark.asyncio
async def test_create_entry_for_longer_show(applier, client):
    client.fetch_media_episodes.return_value = 12
    client.add_entry.return_value = make_entry(21, progress=1, max_episodes=12)

    await applier.apply(CreateEntry(media_id=21, progress=1, status=ListStatus.CURRENT))

    client.add_entry.assert_awaited_once_with(21, 1, ListStatus.CURRENT)


@pytest.mark.asyncio
async def test_create_single_episode_show_is_completed(applier, client):
    client.fetch_media_episodes.return_value = 1
    client.add_entry.return_value = make_entry(21, progress=1, max_episodes=1, status=ListStatus.COMPLETED)

    await applier.apply(CreateEntry(media_id=21, progress=1, status=ListStatus.CURRENT))

    client.add_entry.assert_awaited_once_with(21, 1, ListStatus.COMPLETED)


@pytest.mark.asyncio
async def test_create_with_unknown_length_stays_current(applier, client):
    client.fetch_media_episodes.return_value = None
    client.add_entry.return_value = make_entry(21, progress=1)

    await applier.apply(CreateEntry(media_id=21, progress=1, status=ListStatus.CURRENT))

    client.add_entry.assert_awaited_once_with(21, 1, ListStatus.CURRENT)


@pytest.mark.asyncio
async def test_noop_is_rejected(applier, client):
    with pytest.raises(ValueError):
        await applier.apply(NoOp(NoOpReason.NOT_TRACKED))
    client.update_entry.assert_not_awaited()


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_succeed(applier, client):
    saved = make_entry(21, progress=4)
    client.update_entry.side_effect = [
        AniListQueryError("Internal Server Error", 500),
        AniListQueryError("Internal Server Error", 500),
        saved,
    ]

    entry = await applier.apply(AdvanceProgress(entry_id=210, progress=4, status=ListStatus.CURRENT))

    assert entry is saved
    assert client.update_entry.await_count == 3


@pytest.mark.asyncio
async def test_retries_exhausted_raise_apply_failed(applier, client):
    error = AniListQueryError("Internal Server Error", 500)
    client.update_entry.side_effect = error

    with pytest.raises(ApplyFailed) as exc_info:
        await applier.apply(AdvanceProgress(entry_id=210, progress=4, status=ListStatus.CURRENT))

    assert exc_info.value.cause is error
    assert client.update_entry.await_count == 3


@pytest.mark.asyncio
async def test_auth_error_is_not_retried(applier, client):
    client.update_entry.side_effect = AniListAuthError("Invalid token", 401)

    with pytest.raises(ApplyFailed) as exc_info:
        await applier.apply(ResetProgress(entry_id=210))

    assert isinstance(exc_info.value.cause, AniListAuthError)
    assert client.update_entry.await_count == 1
