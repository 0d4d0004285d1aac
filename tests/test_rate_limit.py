"""Tests for RateLimiter."""

from __future__ import annotations

import pytest

from emmavault.errors import TooManyAttempts
from emmavault.util.rate_limit import RateLimiter


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_allows_first_attempt(self):
        rl = RateLimiter(max_attempts=5, delay_base=0)
        await rl.acquire()
        assert rl.attempts == 1

    @pytest.mark.asyncio
    async def test_exceeds_max_attempts(self):
        rl = RateLimiter(max_attempts=2, delay_base=0)
        await rl.acquire()
        await rl.acquire()
        with pytest.raises(TooManyAttempts, match="Exceeded"):
            await rl.acquire()

    @pytest.mark.asyncio
    async def test_reset(self):
        rl = RateLimiter(max_attempts=2, delay_base=0)
        await rl.acquire()
        await rl.acquire()
        rl.reset()
        assert rl.attempts == 0
        await rl.acquire()

    @pytest.mark.asyncio
    async def test_backoff_required(self):
        rl = RateLimiter(max_attempts=5, delay_base=60)
        assert rl.required_wait() == 0
        await rl.acquire()
        assert 0 < rl.required_wait() <= 60
