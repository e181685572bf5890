"""Global exchange call budget and error backoff."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from ..config import BackoffConfig
from ..errors import RateLimitError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class MinIntervalLimiter:
    """Token bucket of one: enforces a minimum spacing between calls.

    Shared by every account, so concurrent callers queue on the lock and are
    released one spacing apart.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self.last_call: float | None = None

    async def acquire(self) -> float:
        """Wait until a call is allowed; returns the seconds waited."""
        async with self._lock:
            waited = 0.0
            if self.last_call is not None:
                elapsed = self._clock() - self.last_call
                if elapsed < self.min_interval:
                    waited = self.min_interval - elapsed
                    logger.debug("Rate limit wait %.3fs", waited)
                    await self._sleep(waited)
            self.last_call = self._clock()
            return waited


class ErrorBackoff:
    """Cool-down window after exchange errors.

    Rate-limit errors back off exponentially with the consecutive count:
        delay = min(rate_limit_backoff * 2^(n-1), max_backoff)
    Other errors use the constant ``error_backoff``.
    """

    def __init__(self, config: BackoffConfig, clock: Clock = time.monotonic) -> None:
        self._config = config
        self._clock = clock
        self.consecutive_errors = 0
        self.consecutive_rate_limits = 0
        self._resume_at = 0.0

    def record_success(self) -> None:
        self.consecutive_errors = 0
        self.consecutive_rate_limits = 0
        self._resume_at = 0.0

    def record_error(self, error: BaseException) -> float:
        """Register a failure and return the backoff delay it triggers."""
        self.consecutive_errors += 1
        if isinstance(error, RateLimitError):
            self.consecutive_rate_limits += 1
            delay = self._config.rate_limit_backoff_seconds * (
                2 ** (self.consecutive_rate_limits - 1)
            )
            if error.retry_after is not None:
                delay = max(delay, error.retry_after)
            delay = min(delay, self._config.max_backoff_seconds)
            logger.warning(
                "Exchange rate limit hit (%d in a row), backing off %.1fs",
                self.consecutive_rate_limits, delay,
            )
        else:
            self.consecutive_rate_limits = 0
            delay = min(self._config.error_backoff_seconds, self._config.max_backoff_seconds)
            logger.warning(
                "Exchange error (%d in a row), backing off %.1fs",
                self.consecutive_errors, delay,
            )
        self._resume_at = max(self._resume_at, self._clock() + delay)
        return delay

    def remaining(self) -> float:
        return max(0.0, self._resume_at - self._clock())

    def ready(self) -> bool:
        return self.remaining() == 0.0
