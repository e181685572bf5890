"""Data models — all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

Side = Literal["long", "short", "none"]
EventType = Literal["open_long", "open_short", "close", "increase", "decrease", "reverse"]
Confidence = Literal["high", "medium", "low"]
RiskLevel = Literal["low", "medium", "medium-high", "high"]
MarketSentiment = Literal[
    "bullish", "bearish", "neutral", "cautiously_bullish", "cautiously_bearish"
]


# ---------------------------------------------------------------------------
# Position state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssetPosition:
    """One open position on one instrument."""

    asset: str
    size: float
    side: Side
    entry_price: float = 0.0
    unrealized_pnl: float = 0.0
    notional_value: float = 0.0

    @classmethod
    def flat(cls, asset: str) -> AssetPosition:
        """Placeholder for an asset the account holds no position in."""
        return cls(asset=asset, size=0.0, side="none")


@dataclass(frozen=True)
class UserPositionState:
    """Full position state of one account at one point in time."""

    user_address: str
    positions: tuple[AssetPosition, ...]
    total_notional_value: float
    account_value: float
    total_margin_used: float
    timestamp: int

    def position_for(self, asset: str) -> AssetPosition | None:
        for position in self.positions:
            if position.asset == asset:
                return position
        return None


@dataclass(frozen=True)
class CachedSnapshot:
    data: UserPositionState
    timestamp: float


# ---------------------------------------------------------------------------
# Fills and orders
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Fill:
    """One execution record of part or all of an order."""

    asset: str
    size: float
    price: float
    side: Side
    timestamp: int
    order_id: int | str | None = None
    tx_hash: str | None = None
    fill_id: int | str | None = None
    user: str | None = None

    @property
    def identity(self) -> str:
        """Stable dedup key: tx hash, then fill id, then order/time/size.

        One transaction can carry several partial fills, so the fill id is
        appended to the hash when both are present.
        """
        if self.tx_hash:
            if self.fill_id is not None:
                return f"hash:{self.tx_hash}:{self.fill_id}"
            return f"hash:{self.tx_hash}"
        if self.fill_id is not None:
            return f"tid:{self.fill_id}"
        return f"oid:{self.order_id}:{self.timestamp}:{self.size}"

    @property
    def notional_value(self) -> float:
        return self.size * self.price


@dataclass(frozen=True)
class AggregatedOrder:
    """All fills sharing one order id, merged into a logical order."""

    account_address: str
    order_id: int | str | None
    asset: str
    side: Side
    fills: tuple[Fill, ...]
    total_size: float
    avg_price: float
    first_fill_time: int
    last_update_time: int

    @property
    def notional_value(self) -> float:
        return self.total_size * self.avg_price

    @property
    def is_aggregated(self) -> bool:
        return len(self.fills) > 1


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClassifiedTrade:
    """Semantic interpretation of one logical order."""

    account_address: str
    asset: str
    event_type: EventType
    confidence: Confidence
    side: Side
    position_before: AssetPosition | None
    position_after: AssetPosition | None
    size_change: float
    side_changed: bool
    description: str
    order: AggregatedOrder
    realized_pnl: float | None = None

    @property
    def position_confirmed(self) -> bool:
        """False when the snapshots could not confirm the position change."""
        return self.confidence != "low"


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RiskExposure:
    total_notional_value: float
    account_value: float
    margin_used: float
    effective_leverage: float
    capital_utilization: float
    max_single_asset_exposure: float
    max_asset_name: str
    warnings: tuple[str, ...]
    leverage_score: float
    utilization_score: float
    concentration_score: float


@dataclass(frozen=True)
class AssetBreakdownItem:
    asset: str
    size: float
    side: Side
    notional_value: float
    percentage: float
    unrealized_pnl: float
    entry_price: float


@dataclass(frozen=True)
class AssetAllocation:
    asset_breakdown: tuple[AssetBreakdownItem, ...]
    long_value: float
    short_value: float
    long_short_ratio: float
    net_exposure: float
    net_exposure_ratio: float
    diversification_score: float
    top_assets: tuple[AssetBreakdownItem, ...]
    is_highly_concentrated: bool
    top_asset_percentage: float
    top3_percentage: float


@dataclass(frozen=True)
class TradingMetrics:
    total_positions: int
    total_unrealized_pnl: float
    pnl_percentage: float
    profitable_positions: int
    losing_positions: int
    win_rate: float
    average_position_size: float
    largest_position: float
    smallest_position: float


@dataclass(frozen=True)
class OverallRisk:
    level: RiskLevel
    score: float
    leverage_component: float
    utilization_component: float
    concentration_component: float
    diversification_component: float


@dataclass(frozen=True)
class StrategyInsights:
    """Advisory read of the book; never feeds back into the risk score."""

    signal_strength: int
    market_sentiment: MarketSentiment
    insights: tuple[str, ...]
    risk_warnings: tuple[str, ...]
    recommendations: tuple[str, ...]


@dataclass(frozen=True)
class AnalysisReport:
    account_address: str
    account_label: str
    user_position: UserPositionState
    risk_exposure: RiskExposure
    asset_allocation: AssetAllocation
    trading_metrics: TradingMetrics
    overall_risk: OverallRisk
    strategic_insights: StrategyInsights
    triggered_by_asset: str | None = None


@dataclass(frozen=True)
class TradeEvent:
    """Outbound unit handed to trade sinks."""

    trade: ClassifiedTrade
    report: AnalysisReport | None = None
