"""Exception taxonomy for exchange access and fill ingestion."""
from __future__ import annotations


class ExchangeError(Exception):
    """Base class for failures talking to the exchange API."""


class TransientExchangeError(ExchangeError):
    """Timeouts, DNS failures, connection resets and 5xx responses."""


class RateLimitError(ExchangeError):
    """The exchange answered HTTP 429."""

    def __init__(self, message: str = "Rate limited", retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class FillDataError(ValueError):
    """A raw fill is malformed, incomplete, or belongs to another account."""
