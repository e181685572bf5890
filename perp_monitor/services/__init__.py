"""Service modules"""
from .order_aggregator import FillDeduplicator, OrderAggregator
from .pipeline import TradePipeline
from .position_analyzer import PositionAnalyzer
from .position_cache import PositionSnapshotCache
from .rate_limit import ErrorBackoff, MinIntervalLimiter
from .trade_classifier import TradeClassifier

__all__ = [
    "ErrorBackoff",
    "FillDeduplicator",
    "MinIntervalLimiter",
    "OrderAggregator",
    "PositionAnalyzer",
    "PositionSnapshotCache",
    "TradeClassifier",
    "TradePipeline",
]
