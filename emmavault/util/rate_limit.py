"""Unlock throttling with exponential backoff against passphrase guessing."""

from __future__ import annotations

import asyncio
import logging
import time

from emmavault.errors import TooManyAttempts

logger = logging.getLogger("emmavault.rate_limit")

MAX_UNLOCK_ATTEMPTS = 5
UNLOCK_DELAY_BASE = 2  # seconds


class RateLimiter:
    """Exponential-backoff limiter; failed attempts accumulate until reset()."""

    def __init__(
        self,
        max_attempts: int = MAX_UNLOCK_ATTEMPTS,
        delay_base: float = UNLOCK_DELAY_BASE,
    ):
        self._max_attempts = max_attempts
        self._delay_base = delay_base
        self.attempts = 0
        self.last_attempt: float = 0

    def required_wait(self) -> float:
        """Seconds still to wait before the next attempt is allowed."""
        if self.attempts == 0:
            return 0.0
        required = self._delay_base**self.attempts
        return max(0.0, required - (time.monotonic() - self.last_attempt))

    async def acquire(self) -> None:
        """Wait out the backoff, then count one attempt."""
        if self.attempts >= self._max_attempts:
            logger.error("Maximum of %d unlock attempts exceeded", self._max_attempts)
            raise TooManyAttempts(
                f"Exceeded the limit of {self._max_attempts} attempts. "
                "Wait before trying again."
            )

        wait = self.required_wait()
        if wait > 0:
            logger.warning("Rate limiting: waiting %.1fs", wait)
            await asyncio.sleep(wait)

        self.attempts += 1
        self.last_attempt = time.monotonic()

    def reset(self) -> None:
        self.attempts = 0
        self.last_attempt = 0
