"""
Tests for the retry helpers.
"""

import pytest

from league_indexer.errors import RateLimitedError, TransientSourceError
from league_indexer.util import backoff_delay, retry_async


class TestBackoffDelay:
    """Tests for the capped exponential delay."""

    def test_doubles_until_cap(self):
        assert [backoff_delay(n, 5.0, 30.0) for n in range(5)] == [5.0, 10.0, 20.0, 30.0, 30.0]


class TestRetryAsync:
    """Tests for retry_async."""

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, fake_sleep, sleeps):
        outcomes = [TransientSourceError("a"), TransientSourceError("b"), "done"]

        async def fn():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        result = await retry_async(
            fn, attempts=3, base_delay=1.0, max_delay=10.0, retryable=lambda exc: True, sleep=fake_sleep
        )

        assert result == "done"
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_retryable_raised_immediately(self, fake_sleep, sleeps):
        async def fn():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await retry_async(
                fn, attempts=3, base_delay=1.0, max_delay=10.0, retryable=lambda exc: False, sleep=fake_sleep
            )
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_delay_hint_is_a_floor(self, fake_sleep, sleeps):
        errors = [RateLimitedError(1, 12.0), RateLimitedError(1, 0.5), RateLimitedError(1, None)]

        async def fn():
            raise errors.pop(0)

        with pytest.raises(RateLimitedError):
            await retry_async(
                fn,
                attempts=3,
                base_delay=1.0,
                max_delay=10.0,
                retryable=lambda exc: True,
                sleep=fake_sleep,
                delay_hint=lambda exc: exc.retry_after,
            )
        assert sleeps == [12.0, 2.0]
