"""Classify logical orders against before/after position snapshots."""
from __future__ import annotations

import asyncio
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Awaitable, Callable

from ..config import AccountConfig, ClassifierConfig
from ..models import (
    AggregatedOrder,
    AssetPosition,
    ClassifiedTrade,
    Confidence,
    EventType,
    Side,
)
from .position_cache import PositionSnapshotCache, format_address

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class Classification:
    event_type: EventType
    confidence: Confidence
    side: Side
    description: str


@dataclass(frozen=True)
class ClassifierStats:
    total_classifications: int
    fallbacks: int
    errors: int
    by_type: dict[str, int]


def _open_event(side: Side) -> EventType:
    return "open_long" if side == "long" else "open_short"


def _present(side: Side | None) -> bool:
    return side in ("long", "short")


def fallback_classification(fill_side: Side, reason: str = "position change not confirmed") -> Classification:
    """Open in the fill's own direction, with low confidence."""
    return Classification(
        event_type=_open_event(fill_side),
        confidence="low",
        side=fill_side,
        description=f"open {fill_side} ({reason})",
    )


def classify_change(
    fill_side: Side,
    fill_size: float,
    before: AssetPosition | None,
    after: AssetPosition | None,
) -> Classification:
    """Evaluate the position-change state machine.

    Rules are checked in a fixed order; the first match wins. ``None``
    snapshots count as size 0 with an unknown side.
    """
    before_size = abs(before.size) if before else 0.0
    after_size = abs(after.size) if after else 0.0
    before_side = before.side if before else None
    after_side = after.side if after else None

    if before_size == 0 and after_size > 0:
        return Classification(_open_event(fill_side), "high", fill_side, f"open {fill_side}")

    if before_size > 0 and after_size == 0:
        side = before_side if _present(before_side) else fill_side
        return Classification("close", "high", side, f"close {side}")

    if before_size > 0 and after_size > before_size:
        side = after_side if _present(after_side) else fill_side
        return Classification("increase", "high", side, f"increase {side}")

    if before_size > 0 and 0 < after_size < before_size:
        side = after_side if _present(after_side) else before_side
        if not _present(side):
            side = fill_side
        return Classification("decrease", "high", side, f"decrease {side}")

    if _present(before_side) and _present(after_side) and before_side != after_side:
        return Classification(
            "reverse", "high", after_side, f"reverse {before_side} -> {after_side}"
        )

    if before_size == after_size:
        # No observable change; infer from the fill against the existing position.
        if before_size > 0 and _present(before_side):
            if fill_side == before_side:
                return Classification(
                    "increase", "medium", before_side, f"increase {before_side} (inferred)"
                )
            if fill_size >= before_size:
                return Classification(
                    "close", "medium", before_side, f"close {before_side} (inferred)"
                )
            return Classification(
                "decrease", "medium", before_side, f"decrease {before_side} (inferred)"
            )
        if before_size == 0:
            return Classification(
                _open_event(fill_side), "medium", fill_side, f"open {fill_side} (inferred)"
            )

    logger.warning(
        "Could not classify from snapshots: before=%s/%s after=%s/%s fill=%s",
        before_size, before_side, after_size, after_side, fill_side,
    )
    return fallback_classification(fill_side, "snapshots inconclusive")


def calculate_realized_pnl(
    before: AssetPosition | None,
    after: AssetPosition | None,
    exit_price: float,
) -> float | None:
    """Realized PnL of the closed portion, or None when it cannot be computed.

    long:  (exit - entry) * closed_size
    short: (entry - exit) * closed_size
    """
    if before is None or before.size == 0 or before.entry_price == 0:
        return None

    closed_size = abs(before.size) - abs(after.size if after else 0.0)
    if closed_size <= 0:
        return None

    if before.side == "long":
        return (exit_price - before.entry_price) * closed_size
    return (before.entry_price - exit_price) * closed_size


class TradeClassifier:
    """Turns aggregated orders into ``ClassifiedTrade`` results.

    ``classify`` never raises: fetch failures and unknown snapshots degrade to
    a low-confidence classification in the fill's own direction.
    """

    def __init__(
        self,
        cache: PositionSnapshotCache,
        config: ClassifierConfig,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._cache = cache
        self._settlement_delay = config.settlement_delay_seconds
        self._sleep = sleep
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._total = 0
        self._fallbacks = 0
        self._errors = 0
        self._by_type: Counter[str] = Counter()

    async def classify(
        self, order: AggregatedOrder, account: AccountConfig
    ) -> ClassifiedTrade:
        """Snapshot, wait for settlement, re-snapshot, then classify."""
        async with self._locks[account.address.lower()]:
            try:
                before, after = await self._capture_snapshots(order, account)
            except Exception as e:
                self._errors += 1
                logger.error(
                    "Snapshot capture failed for %s %s: %s",
                    account.label or format_address(account.address), order.asset, e,
                )
                before = after = None
                classification = fallback_classification(order.side, "position fetch failed")
            else:
                if before is None or after is None:
                    logger.warning(
                        "Position state unknown for %s, cannot confirm %s change",
                        account.label or format_address(account.address), order.asset,
                    )
                    classification = fallback_classification(order.side)
                else:
                    classification = classify_change(
                        order.side, order.total_size, before, after
                    )

        return self._build_trade(order, account, classification, before, after)

    async def _capture_snapshots(
        self, order: AggregatedOrder, account: AccountConfig
    ) -> tuple[AssetPosition | None, AssetPosition | None]:
        before = await self._cache.get_asset_position(account.address, order.asset)
        await self._sleep(self._settlement_delay)
        after = await self._cache.get_asset_position(
            account.address, order.asset, refresh=True
        )
        logger.debug(
            "Snapshots for %s %s: before=%s after=%s",
            account.label, order.asset, before, after,
        )
        return before, after

    def _build_trade(
        self,
        order: AggregatedOrder,
        account: AccountConfig,
        classification: Classification,
        before: AssetPosition | None,
        after: AssetPosition | None,
    ) -> ClassifiedTrade:
        before_size = before.size if before else 0.0
        after_size = after.size if after else 0.0
        side_changed = (
            before is not None
            and after is not None
            and _present(before.side)
            and _present(after.side)
            and before.side != after.side
        )

        realized_pnl = None
        if classification.event_type in ("close", "decrease"):
            realized_pnl = calculate_realized_pnl(before, after, order.avg_price)

        self._total += 1
        self._by_type[classification.event_type] += 1
        if classification.confidence == "low":
            self._fallbacks += 1

        trade = ClassifiedTrade(
            account_address=account.address.lower(),
            asset=order.asset,
            event_type=classification.event_type,
            confidence=classification.confidence,
            side=classification.side,
            position_before=before,
            position_after=after,
            size_change=after_size - before_size,
            side_changed=side_changed,
            description=classification.description,
            order=order,
            realized_pnl=realized_pnl,
        )
        logger.info(
            "Classified %s %s: %s (%s) size change %+.6f pnl %s",
            account.label or format_address(account.address),
            order.asset,
            trade.event_type,
            trade.confidence,
            trade.size_change,
            "n/a" if realized_pnl is None else f"{realized_pnl:.2f}",
        )
        return trade

    @property
    def stats(self) -> ClassifierStats:
        return ClassifierStats(
            total_classifications=self._total,
            fallbacks=self._fallbacks,
            errors=self._errors,
            by_type=dict(self._by_type),
        )
