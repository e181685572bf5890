"""Trade sink protocol — consumer of classified, risk-annotated trades."""
from typing import Protocol

from ..models import TradeEvent


class TradeSink(Protocol):
    """Abstract interface for whatever turns trade events into alerts."""

    async def publish(self, event: TradeEvent) -> None: ...
