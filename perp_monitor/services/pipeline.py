"""Fill → order → classified trade → analysis orchestration."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable

from ..config import AccountConfig, AppConfig
from ..errors import FillDataError
from ..exchange.hyperliquid import HyperliquidClient
from ..exchange.hyperliquid.parser import parse_fill
from ..interfaces.exchange import ExchangeClient
from ..interfaces.trade_sink import TradeSink
from ..models import AggregatedOrder, Fill, TradeEvent
from .order_aggregator import AggregatorStats, FillDeduplicator, OrderAggregator
from .position_analyzer import AnalyzerStats, PositionAnalyzer
from .position_cache import CacheStats, PositionSnapshotCache, format_address
from .rate_limit import ErrorBackoff, MinIntervalLimiter
from .trade_classifier import ClassifierStats, TradeClassifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineStats:
    fills_dropped: int
    events_published: int
    in_flight: int
    cache: CacheStats
    aggregator: AggregatorStats
    classifier: ClassifierStats
    analyzer: AnalyzerStats


class TradePipeline:
    """Wires the snapshot cache, aggregator, classifier and analyzer together.

    Each completed order is processed in its own task so one account's
    settlement wait never holds up another account.
    """

    def __init__(
        self,
        config: AppConfig,
        client: ExchangeClient | None = None,
        sinks: Iterable[TradeSink] = (),
    ) -> None:
        self._config = config
        self._client: ExchangeClient = client or HyperliquidClient(config.exchange)
        self._sinks: list[TradeSink] = list(sinks)
        self._accounts: dict[str, AccountConfig] = {
            a.address.lower(): a for a in config.accounts
        }

        self.limiter = MinIntervalLimiter(config.cache.min_api_interval_seconds)
        self.backoff = ErrorBackoff(config.backoff)
        self.cache = PositionSnapshotCache(
            self._client, config.cache, self.limiter, self.backoff
        )
        self.aggregator = OrderAggregator(
            config.aggregator,
            on_order=self._on_order,
            deduplicator=FillDeduplicator(config.aggregator.dedup_capacity),
        )
        self.classifier = TradeClassifier(self.cache, config.classifier)
        self.analyzer = PositionAnalyzer(self.cache, config.risk)

        self._tasks: set[asyncio.Task[TradeEvent | None]] = set()
        self._fills_dropped = 0
        self._events_published = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.cache.start()
        logger.info("Trade pipeline started for %d accounts", len(self._accounts))

    async def drain(self) -> None:
        """Wait for every in-flight order to finish processing."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Flush pending orders, finish in-flight work, stop background tasks."""
        self.aggregator.flush()
        await self.drain()
        await self.cache.stop()
        logger.info(
            "Trade pipeline stopped (%d events published)", self._events_published
        )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def _parse(self, raw: dict[str, Any], account: AccountConfig) -> Fill:
        fill = parse_fill(raw)
        if fill.user and fill.user != account.address.lower():
            raise FillDataError(
                f"Fill belongs to {fill.user}, not {account.address.lower()}"
            )
        return fill

    def _is_relevant(self, fill: Fill) -> bool:
        if fill.asset.startswith("@"):
            logger.debug("Skipping spot fill %s", fill.asset)
            return False
        if fill.notional_value < self._config.aggregator.min_notional_value:
            logger.debug(
                "Skipping %s fill below min notional ($%.2f)",
                fill.asset, fill.notional_value,
            )
            return False
        return True

    async def submit_fills(
        self, account: AccountConfig, raw_fills: Iterable[dict[str, Any]]
    ) -> int:
        """Parse, filter and aggregate raw fills; returns how many were accepted."""
        self._accounts.setdefault(account.address.lower(), account)

        fills: list[Fill] = []
        for raw in raw_fills:
            try:
                fill = self._parse(raw, account)
            except FillDataError as e:
                self._fills_dropped += 1
                logger.warning("Dropping fill for %s: %s", account.label, e)
                continue
            if not self._is_relevant(fill):
                self._fills_dropped += 1
                continue
            fills.append(fill)

        return self.aggregator.add_fills(account.address, fills)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def _on_order(self, order: AggregatedOrder) -> None:
        task = asyncio.create_task(self.process_order(order))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _account_for(self, address: str) -> AccountConfig:
        return self._accounts.get(address.lower()) or AccountConfig(
            label=format_address(address), address=address
        )

    async def process_order(self, order: AggregatedOrder) -> TradeEvent | None:
        """Classify one completed order, analyse the book and publish."""
        account = self._account_for(order.account_address)
        try:
            trade = await self.classifier.classify(order, account)
            report = await self.analyzer.analyze(account, triggered_by_asset=order.asset)
        except Exception as e:
            logger.error(
                "Processing order %s for %s failed: %s", order.order_id, account.label, e
            )
            return None

        event = TradeEvent(trade=trade, report=report)
        await self._publish(event)
        return event

    async def _publish(self, event: TradeEvent) -> None:
        for sink in self._sinks:
            try:
                await sink.publish(event)
            except Exception as e:
                logger.error("Trade sink publish failed: %s", e)
        self._events_published += 1

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    @property
    def stats(self) -> PipelineStats:
        return PipelineStats(
            fills_dropped=self._fills_dropped,
            events_published=self._events_published,
            in_flight=len(self._tasks),
            cache=self.cache.stats,
            aggregator=self.aggregator.stats,
            classifier=self.classifier.stats,
            analyzer=self.analyzer.stats,
        )
