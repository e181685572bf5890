"""Unit tests for the position-change state machine and trade classifier."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from perp_monitor.config import AccountConfig, ClassifierConfig
from perp_monitor.errors import TransientExchangeError
from perp_monitor.models import AssetPosition
from perp_monitor.services.trade_classifier import (
    TradeClassifier,
    calculate_realized_pnl,
    classify_change,
    fallback_classification,
)

ACCOUNT = AccountConfig(label="main", address="0xAbC0000000000000000000000000000000000001")


def pos(size: float, side: str = "long", entry: float = 100.0, asset: str = "BTC") -> AssetPosition:
    if size == 0:
        return AssetPosition.flat(asset)
    return AssetPosition(
        asset=asset, size=size, side=side, entry_price=entry,  # type: ignore[arg-type]
        notional_value=size * entry,
    )


class TestClassifyChange:
    def test_open_long_from_flat(self) -> None:
        result = classify_change("long", 1, pos(0), pos(1, "long"))
        assert result.event_type == "open_long"
        assert result.confidence == "high"

    def test_open_short_from_flat(self) -> None:
        result = classify_change("short", 1, pos(0), pos(1, "short"))
        assert result.event_type == "open_short"
        assert result.side == "short"

    def test_close(self) -> None:
        result = classify_change("short", 5, pos(5, "long"), pos(0))
        assert result.event_type == "close"
        assert result.confidence == "high"
        assert result.side == "long"

    def test_increase(self) -> None:
        result = classify_change("long", 2, pos(5, "long"), pos(7, "long"))
        assert result.event_type == "increase"
        assert result.confidence == "high"

    def test_decrease(self) -> None:
        result = classify_change("short", 3, pos(5, "long"), pos(2, "long"))
        assert result.event_type == "decrease"
        assert result.side == "long"

    def test_reverse(self) -> None:
        result = classify_change("short", 10, pos(5, "long"), pos(5, "short"))
        assert result.event_type == "reverse"
        assert result.confidence == "high"
        assert result.side == "short"

    def test_unchanged_same_direction_is_inferred_increase(self) -> None:
        result = classify_change("long", 1, pos(5, "long"), pos(5, "long"))
        assert result.event_type == "increase"
        assert result.confidence == "medium"

    def test_unchanged_opposite_full_size_is_inferred_close(self) -> None:
        result = classify_change("short", 5, pos(5, "long"), pos(5, "long"))
        assert result.event_type == "close"
        assert result.confidence == "medium"

    def test_unchanged_opposite_partial_is_inferred_decrease(self) -> None:
        result = classify_change("short", 2, pos(5, "long"), pos(5, "long"))
        assert result.event_type == "decrease"
        assert result.confidence == "medium"

    def test_unchanged_flat_is_inferred_open(self) -> None:
        result = classify_change("short", 1, pos(0), pos(0))
        assert result.event_type == "open_short"
        assert result.confidence == "medium"

    def test_none_snapshots_count_as_flat(self) -> None:
        result = classify_change("long", 1, None, pos(1, "long"))
        assert result.event_type == "open_long"

    def test_idempotent(self) -> None:
        before, after = pos(5, "long"), pos(2, "long")
        assert classify_change("short", 3, before, after) == classify_change(
            "short", 3, before, after
        )

    def test_fallback(self) -> None:
        result = fallback_classification("short", "position fetch failed")
        assert result.event_type == "open_short"
        assert result.confidence == "low"
        assert "position fetch failed" in result.description


class TestRealizedPnl:
    def test_long_decrease(self) -> None:
        assert calculate_realized_pnl(pos(5, "long", 100), pos(2, "long"), 110) == pytest.approx(30)

    def test_short_close(self) -> None:
        assert calculate_realized_pnl(pos(2, "short", 100), pos(0), 90) == pytest.approx(20)

    def test_zero_entry_is_undefined(self) -> None:
        assert calculate_realized_pnl(pos(5, "long", 0), pos(2, "long"), 110) is None

    def test_no_closed_size_is_undefined(self) -> None:
        assert calculate_realized_pnl(pos(5, "long"), pos(5, "long"), 110) is None

    def test_missing_before_is_undefined(self) -> None:
        assert calculate_realized_pnl(None, pos(0), 110) is None


def _classifier(before, after) -> tuple[TradeClassifier, AsyncMock, AsyncMock]:
    cache = AsyncMock()
    cache.get_asset_position = AsyncMock(side_effect=[before, after])
    sleep = AsyncMock()
    classifier = TradeClassifier(cache, ClassifierConfig(settlement_delay_seconds=5), sleep=sleep)
    return classifier, cache, sleep


class TestTradeClassifier:
    @pytest.mark.asyncio
    async def test_snapshot_sequence(self, make_order) -> None:
        classifier, cache, sleep = _classifier(pos(0), pos(1, "long"))
        await classifier.classify(make_order(), ACCOUNT)

        first, second = cache.get_asset_position.await_args_list
        assert first.args == (ACCOUNT.address, "BTC")
        assert second.args == (ACCOUNT.address, "BTC")
        assert second.kwargs == {"refresh": True}
        sleep.assert_awaited_once_with(5)

    @pytest.mark.asyncio
    async def test_open_long(self, make_order) -> None:
        classifier, _, _ = _classifier(pos(0), pos(1, "long"))
        trade = await classifier.classify(make_order(side="long", size=1), ACCOUNT)
        assert trade.event_type == "open_long"
        assert trade.confidence == "high"
        assert trade.position_confirmed
        assert trade.size_change == 1
        assert trade.side_changed is False
        assert trade.realized_pnl is None
        assert trade.account_address == ACCOUNT.address.lower()

    @pytest.mark.asyncio
    async def test_decrease_with_pnl(self, make_order) -> None:
        classifier, _, _ = _classifier(pos(5, "long", 100), pos(2, "long", 100))
        trade = await classifier.classify(make_order(side="short", size=3, price=110), ACCOUNT)
        assert trade.event_type == "decrease"
        assert trade.realized_pnl == pytest.approx(30)
        assert trade.size_change == -3

    @pytest.mark.asyncio
    async def test_reverse_marks_side_changed(self, make_order) -> None:
        classifier, _, _ = _classifier(pos(5, "long"), pos(5, "short"))
        trade = await classifier.classify(make_order(side="short", size=10), ACCOUNT)
        assert trade.event_type == "reverse"
        assert trade.side_changed is True
        assert trade.size_change == 0
        assert trade.realized_pnl is None

    @pytest.mark.asyncio
    async def test_flat_placeholder_is_not_a_side_change(self, make_order) -> None:
        classifier, _, _ = _classifier(pos(5, "long"), pos(0))
        trade = await classifier.classify(make_order(side="short", size=5), ACCOUNT)
        assert trade.event_type == "close"
        assert trade.side_changed is False

    @pytest.mark.asyncio
    async def test_fetch_error_falls_back(self, make_order) -> None:
        cache = AsyncMock()
        cache.get_asset_position = AsyncMock(side_effect=TransientExchangeError("down"))
        classifier = TradeClassifier(cache, ClassifierConfig(), sleep=AsyncMock())

        trade = await classifier.classify(make_order(side="short"), ACCOUNT)
        assert trade.event_type == "open_short"
        assert trade.confidence == "low"
        assert not trade.position_confirmed
        assert trade.position_before is None
        assert trade.size_change == 0
        assert classifier.stats.errors == 1

    @pytest.mark.asyncio
    async def test_unknown_snapshot_falls_back(self, make_order) -> None:
        classifier, _, _ = _classifier(None, pos(1, "long"))
        trade = await classifier.classify(make_order(side="long"), ACCOUNT)
        assert trade.confidence == "low"
        assert classifier.stats.fallbacks == 1

    @pytest.mark.asyncio
    async def test_conservation_of_size_change(self, make_order) -> None:
        for before, after in [
            (pos(0), pos(3, "long")),
            (pos(4, "short"), pos(1, "short")),
            (pos(2, "long"), pos(6, "long")),
        ]:
            classifier, _, _ = _classifier(before, after)
            trade = await classifier.classify(make_order(), ACCOUNT)
            assert trade.size_change == pytest.approx(after.size - before.size)

    @pytest.mark.asyncio
    async def test_same_account_is_serialized(self, make_order) -> None:
        active = 0
        peak = 0

        async def fake_position(address, asset, refresh=False):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return pos(1, "long")

        cache = AsyncMock()
        cache.get_asset_position = fake_position
        classifier = TradeClassifier(cache, ClassifierConfig(settlement_delay_seconds=0))

        await asyncio.gather(
            classifier.classify(make_order(order_id=1), ACCOUNT),
            classifier.classify(make_order(order_id=2), ACCOUNT),
        )
        assert peak == 1

    @pytest.mark.asyncio
    async def test_settlement_waits_overlap_across_accounts(self, make_order) -> None:
        delay = 0.3
        cache = AsyncMock()
        cache.get_asset_position = AsyncMock(return_value=pos(1, "long"))
        classifier = TradeClassifier(cache, ClassifierConfig(settlement_delay_seconds=delay))
        other = AccountConfig(label="alt", address="0xDeF0000000000000000000000000000000000002")

        loop = asyncio.get_running_loop()
        started = loop.time()
        first, second = await asyncio.gather(
            classifier.classify(make_order(order_id=1), ACCOUNT),
            classifier.classify(make_order(order_id=2), other),
        )
        elapsed = loop.time() - started

        assert elapsed < 2 * delay
        assert first.account_address == ACCOUNT.address.lower()
        assert second.account_address == other.address.lower()

    @pytest.mark.asyncio
    async def test_stats_by_type(self, make_order) -> None:
        classifier, _, _ = _classifier(pos(0), pos(1, "long"))
        await classifier.classify(make_order(), ACCOUNT)
        stats = classifier.stats
        assert stats.total_classifications == 1
        assert stats.by_type == {"open_long": 1}
        assert stats.fallbacks == 0
