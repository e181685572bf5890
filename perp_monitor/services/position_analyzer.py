"""Multi-factor risk and allocation analysis of an account's book."""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass

from ..config import AccountConfig, RiskThresholdsConfig, validate_thresholds
from ..models import (
    AnalysisReport,
    AssetAllocation,
    AssetBreakdownItem,
    MarketSentiment,
    OverallRisk,
    RiskExposure,
    RiskLevel,
    StrategyInsights,
    TradingMetrics,
    UserPositionState,
)
from .position_cache import PositionSnapshotCache

logger = logging.getLogger(__name__)

# Composite risk score weights.
LEVERAGE_WEIGHT = 0.30
UTILIZATION_WEIGHT = 0.25
CONCENTRATION_WEIGHT = 0.25
DIVERSIFICATION_WEIGHT = 0.20
# Leverage at which the leverage component saturates.
LEVERAGE_SCALE = 10.0

MAX_SIGNAL_STRENGTH = 5


# ---------------------------------------------------------------------------
# Pure analysis functions
# ---------------------------------------------------------------------------


def analyze_risk_exposure(
    state: UserPositionState, thresholds: RiskThresholdsConfig
) -> RiskExposure:
    total_notional = state.total_notional_value
    account_value = state.account_value
    margin_used = state.total_margin_used

    effective_leverage = total_notional / account_value if account_value > 0 else 0.0
    capital_utilization = margin_used / account_value if account_value > 0 else 0.0

    max_exposure = 0.0
    max_asset = ""
    for position in state.positions:
        ratio = position.notional_value / total_notional if total_notional > 0 else 0.0
        if ratio > max_exposure:
            max_exposure = ratio
            max_asset = position.asset

    warnings: list[str] = []
    if effective_leverage > thresholds.leverage_warning:
        warnings.append(f"High leverage ({effective_leverage:.2f}x)")
    if capital_utilization > thresholds.capital_utilization:
        warnings.append(f"High capital utilization ({capital_utilization * 100:.1f}%)")
    if max_exposure > thresholds.single_asset_concentration:
        warnings.append(f"{max_asset} over-concentrated ({max_exposure * 100:.1f}%)")

    return RiskExposure(
        total_notional_value=total_notional,
        account_value=account_value,
        margin_used=margin_used,
        effective_leverage=effective_leverage,
        capital_utilization=capital_utilization,
        max_single_asset_exposure=max_exposure,
        max_asset_name=max_asset,
        warnings=tuple(warnings),
        leverage_score=min(effective_leverage / LEVERAGE_SCALE, 1.0),
        utilization_score=capital_utilization,
        concentration_score=max_exposure,
    )


def diversification_score(percentages: list[float]) -> float:
    """Inverted Herfindahl–Hirschman index, normalised to [0, 1].

    score = (1 - hhi) / (1 - 1/n), hhi = sum(p_i^2); 0 for a single position.
    """
    n = len(percentages)
    if n <= 1:
        return 0.0
    hhi = sum(p * p for p in percentages)
    score = (1 - hhi) / (1 - 1 / n)
    return max(0.0, min(1.0, score))


def analyze_asset_allocation(
    state: UserPositionState, thresholds: RiskThresholdsConfig
) -> AssetAllocation:
    total_value = state.total_notional_value

    breakdown: list[AssetBreakdownItem] = []
    long_value = 0.0
    short_value = 0.0
    for position in state.positions:
        notional = position.notional_value
        breakdown.append(
            AssetBreakdownItem(
                asset=position.asset,
                size=position.size,
                side=position.side,
                notional_value=notional,
                percentage=notional / total_value if total_value > 0 else 0.0,
                unrealized_pnl=position.unrealized_pnl,
                entry_price=position.entry_price,
            )
        )
        if position.side == "long":
            long_value += notional
        elif position.side == "short":
            short_value += notional

    breakdown.sort(key=lambda item: item.notional_value, reverse=True)

    if short_value > 0:
        long_short_ratio = long_value / short_value
    else:
        long_short_ratio = float("inf") if long_value > 0 else 0.0
    net_exposure = long_value - short_value
    net_exposure_ratio = abs(net_exposure) / total_value if total_value > 0 else 0.0

    diversification = (
        diversification_score([item.percentage for item in breakdown])
        if total_value > 0
        else 0.0
    )

    top_assets = tuple(breakdown[:3])
    top_percentage = breakdown[0].percentage if breakdown else 0.0
    return AssetAllocation(
        asset_breakdown=tuple(breakdown),
        long_value=long_value,
        short_value=short_value,
        long_short_ratio=long_short_ratio,
        net_exposure=net_exposure,
        net_exposure_ratio=net_exposure_ratio,
        diversification_score=diversification,
        top_assets=top_assets,
        is_highly_concentrated=top_percentage > thresholds.single_asset_concentration,
        top_asset_percentage=top_percentage,
        top3_percentage=sum(item.percentage for item in top_assets),
    )


def analyze_trading_metrics(state: UserPositionState) -> TradingMetrics:
    positions = state.positions
    count = len(positions)
    total_pnl = sum(p.unrealized_pnl for p in positions)
    total_notional = state.total_notional_value
    profitable = sum(1 for p in positions if p.unrealized_pnl > 0)
    losing = sum(1 for p in positions if p.unrealized_pnl < 0)
    notionals = [p.notional_value for p in positions]

    return TradingMetrics(
        total_positions=count,
        total_unrealized_pnl=total_pnl,
        pnl_percentage=total_pnl / total_notional * 100 if total_notional > 0 else 0.0,
        profitable_positions=profitable,
        losing_positions=losing,
        win_rate=profitable / count if count else 0.0,
        average_position_size=total_notional / count if count else 0.0,
        largest_position=max(notionals, default=0.0),
        smallest_position=min(notionals, default=0.0),
    )


def classify_risk_level(score: float, thresholds: RiskThresholdsConfig) -> RiskLevel:
    tiers = thresholds.risk_tiers
    if score < tiers.low:
        return "low"
    if score < tiers.medium:
        return "medium"
    if score < tiers.high:
        return "medium-high"
    return "high"


def calculate_overall_risk(
    exposure: RiskExposure,
    allocation: AssetAllocation,
    thresholds: RiskThresholdsConfig,
) -> OverallRisk:
    leverage = min(exposure.effective_leverage / LEVERAGE_SCALE, 1.0)
    utilization = exposure.capital_utilization
    concentration = exposure.max_single_asset_exposure
    diversification = 1 - allocation.diversification_score

    score = (
        leverage * LEVERAGE_WEIGHT
        + utilization * UTILIZATION_WEIGHT
        + concentration * CONCENTRATION_WEIGHT
        + diversification * DIVERSIFICATION_WEIGHT
    )
    return OverallRisk(
        level=classify_risk_level(score, thresholds),
        score=score,
        leverage_component=leverage,
        utilization_component=utilization,
        concentration_component=concentration,
        diversification_component=diversification,
    )


def assess_market_sentiment(allocation: AssetAllocation) -> MarketSentiment:
    net_long = allocation.long_value > allocation.short_value
    if allocation.net_exposure_ratio > 0.6:
        return "bullish" if net_long else "bearish"
    if allocation.net_exposure_ratio < 0.2:
        return "neutral"
    return "cautiously_bullish" if net_long else "cautiously_bearish"


def generate_recommendations(
    exposure: RiskExposure,
    allocation: AssetAllocation,
    thresholds: RiskThresholdsConfig,
) -> tuple[str, ...]:
    recommendations: list[str] = []
    if exposure.effective_leverage > thresholds.leverage_warning:
        recommendations.append("Consider reducing leverage or position size")
    if exposure.capital_utilization > thresholds.capital_utilization:
        recommendations.append("Keep more free margin as a buffer")
    if allocation.is_highly_concentrated:
        recommendations.append("Spread exposure across more assets")
    if allocation.diversification_score < 0.3:
        recommendations.append("Increase the number of independent positions")
    return tuple(recommendations)


def generate_strategic_insights(
    exposure: RiskExposure,
    allocation: AssetAllocation,
    thresholds: RiskThresholdsConfig,
    triggered_by_asset: str | None = None,
) -> StrategyInsights:
    """Accumulate an advisory 0-5 signal strength from independent rules."""
    insights: list[str] = []
    warnings: list[str] = []
    strength = 0

    leverage = exposure.effective_leverage
    if leverage > 3:
        if leverage > 8:
            warnings.append("Extreme leverage")
            strength += 1
        elif leverage > 5:
            warnings.append("High leverage, watch the market closely")
            strength += 2
        else:
            insights.append("Moderate leverage")
            strength += 3
    else:
        insights.append("Conservative leverage")
        strength += 2

    if allocation.is_highly_concentrated:
        top = allocation.top_assets[0]
        warnings.append(f"{top.asset} over-concentrated ({top.percentage * 100:.1f}%)")
    elif allocation.diversification_score > 0.7:
        insights.append("Well diversified book")
        strength += 1

    if allocation.net_exposure_ratio > 0.8:
        if allocation.long_value > allocation.short_value:
            insights.append("Strong net long exposure")
        else:
            insights.append("Strong net short exposure")
        strength += 2
    elif allocation.net_exposure_ratio < 0.2:
        insights.append("Balanced long/short, market neutral")
        strength += 1

    if triggered_by_asset:
        item = next(
            (i for i in allocation.asset_breakdown if i.asset == triggered_by_asset),
            None,
        )
        if item is not None:
            if item.percentage > 0.3:
                insights.append(f"{triggered_by_asset} is a core position")
                strength += 1
            else:
                insights.append(f"{triggered_by_asset} is an exploratory position")

    return StrategyInsights(
        signal_strength=min(strength, MAX_SIGNAL_STRENGTH),
        market_sentiment=assess_market_sentiment(allocation),
        insights=tuple(insights),
        risk_warnings=tuple(warnings),
        recommendations=generate_recommendations(exposure, allocation, thresholds),
    )


def build_report(
    state: UserPositionState,
    thresholds: RiskThresholdsConfig,
    triggered_by_asset: str | None = None,
    account_label: str = "",
) -> AnalysisReport:
    """Full analysis of one position snapshot; no I/O."""
    exposure = analyze_risk_exposure(state, thresholds)
    allocation = analyze_asset_allocation(state, thresholds)
    return AnalysisReport(
        account_address=state.user_address,
        account_label=account_label,
        user_position=state,
        risk_exposure=exposure,
        asset_allocation=allocation,
        trading_metrics=analyze_trading_metrics(state),
        overall_risk=calculate_overall_risk(exposure, allocation, thresholds),
        strategic_insights=generate_strategic_insights(
            exposure, allocation, thresholds, triggered_by_asset
        ),
        triggered_by_asset=triggered_by_asset,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AnalyzerStats:
    total_analyses: int
    unavailable: int
    errors: int
    risk_levels: dict[str, int]


class PositionAnalyzer:
    """Analyse an account's current book from the snapshot cache."""

    def __init__(
        self, cache: PositionSnapshotCache, thresholds: RiskThresholdsConfig
    ) -> None:
        validate_thresholds(thresholds)
        self._cache = cache
        self.thresholds = thresholds
        self._total = 0
        self._unavailable = 0
        self._errors = 0
        self._risk_levels: Counter[str] = Counter()

    async def analyze(
        self, account: AccountConfig, triggered_by_asset: str | None = None
    ) -> AnalysisReport | None:
        """Return a report, or None when the account state is unavailable."""
        self._total += 1
        state = await self._cache.get(account.address)
        if state is None:
            self._unavailable += 1
            logger.warning("No position state for %s, skipping analysis", account.label)
            return None

        try:
            report = build_report(state, self.thresholds, triggered_by_asset, account.label)
        except Exception as e:
            self._errors += 1
            logger.error("Position analysis failed for %s: %s", account.label, e)
            return None

        self._risk_levels[report.overall_risk.level] += 1
        logger.info(
            "Analysis for %s: risk %s (%.3f), leverage %.2fx, %d positions, notional $%.2f",
            account.label,
            report.overall_risk.level,
            report.overall_risk.score,
            report.risk_exposure.effective_leverage,
            len(state.positions),
            state.total_notional_value,
        )
        return report

    @property
    def stats(self) -> AnalyzerStats:
        return AnalyzerStats(
            total_analyses=self._total,
            unavailable=self._unavailable,
            errors=self._errors,
            risk_levels=dict(self._risk_levels),
        )
