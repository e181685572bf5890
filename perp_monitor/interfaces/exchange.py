"""Exchange client protocol — position state source."""
from typing import Protocol

from ..models import UserPositionState


class ExchangeClient(Protocol):
    """Abstract interface for reading account state from the exchange.

    Implementations raise ``RateLimitError`` on HTTP 429 and
    ``TransientExchangeError`` on network failures or 5xx responses.
    """

    async def fetch_positions(self, address: str) -> UserPositionState: ...
