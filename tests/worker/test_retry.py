"""
Tests for worker.retry — bounded retry with backoff.

Faults are injected with AsyncMock side effects; waiting is replaced by a
recording sleep so no test actually sleeps.
"""

import pytest
from unittest.mock import AsyncMock

from shared_lib.anilist_client import (
    AniListAuthError,
    AniListConnectionError,
    AniListQueryError,
)
from worker.retry import DEFAULT_BACKOFF, RetryPolicy, TransientError, is_transient


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def sleep():
    return RecordingSleep()


class TestRun:

    @pytest.mark.asyncio
    async def test_success_first_try(self, sleep):
        op = AsyncMock(return_value="entry")
        result = await RetryPolicy().run(op, sleep=sleep)
        assert result == "entry"
        assert op.await_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_two_server_errors_then_success(self, sleep):
        op = AsyncMock(side_effect=[
            AniListQueryError("boom", 500),
            AniListQueryError("boom", 502),
            "entry",
        ])
        result = await RetryPolicy().run(op, sleep=sleep)
        assert result == "entry"
        assert op.await_count == 3
        assert sleep.delays == [30.0, 60.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts(self, sleep):
        op = AsyncMock(side_effect=AniListQueryError("boom", 500))
        with pytest.raises(AniListQueryError):
            await RetryPolicy().run(op, sleep=sleep)
        assert op.await_count == 3
        assert sleep.delays == list(DEFAULT_BACKOFF)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("exc", [
        AniListAuthError("invalid token", 401),
        AniListQueryError("validation", 400),
        AniListQueryError("not found", 404),
        ValueError("bug"),
    ])
    async def test_permanent_errors_fail_immediately(self, sleep, exc):
        op = AsyncMock(side_effect=exc)
        with pytest.raises(type(exc)):
            await RetryPolicy().run(op, sleep=sleep)
        assert op.await_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_connection_error_is_retried(self, sleep):
        op = AsyncMock(side_effect=[AniListConnectionError("down"), "entry"])
        assert await RetryPolicy().run(op, sleep=sleep) == "entry"
        assert sleep.delays == [30.0]

    @pytest.mark.asyncio
    async def test_single_attempt_policy_never_sleeps(self, sleep):
        op = AsyncMock(side_effect=AniListQueryError("boom", 503))
        with pytest.raises(AniListQueryError):
            await RetryPolicy(max_attempts=1).run(op, sleep=sleep)
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_custom_predicate(self, sleep):
        op = AsyncMock(side_effect=[KeyError("x"), "ok"])
        policy = RetryPolicy(is_retryable=lambda exc: isinstance(exc, KeyError))
        assert await policy.run(op, sleep=sleep) == "ok"


class TestDelay:

    def test_schedule(self):
        policy = RetryPolicy(max_attempts=5, backoff=(1.0, 2.0))
        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 2.0, 2.0]

    def test_empty_schedule_means_no_wait(self):
        assert RetryPolicy(backoff=()).delay_for(1) == 0.0

    def test_retry_after_extends_delay(self):
        exc = AniListQueryError("slow down", 429, retry_after=90.0)
        assert RetryPolicy().delay_for(1, exc) == 90.0

    def test_shorter_retry_after_keeps_schedule(self):
        exc = AniListQueryError("slow down", 429, retry_after=5.0)
        assert RetryPolicy().delay_for(1, exc) == 30.0

    def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestIsTransient:

    @pytest.mark.parametrize("exc,expected", [
        (AniListQueryError("x", 500), True),
        (AniListQueryError("x", 429), True),
        (AniListQueryError("x", 400), False),
        (AniListAuthError("x", 401), False),
        (AniListConnectionError("x"), True),
        (TransientError("x"), True),
        (RuntimeError("x"), False),
    ])
    def test_classification(self, exc, expected):
        assert is_transient(exc) is expected
