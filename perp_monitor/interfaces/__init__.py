"""Protocol interfaces for the perp position monitor."""
from .exchange import ExchangeClient
from .trade_sink import TradeSink

__all__ = ["ExchangeClient", "TradeSink"]
