"""Merge raw fills sharing an order id into logical orders."""
from __future__ import annotations

import asyncio
import bisect
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Iterable

from ..config import AggregatorConfig
from ..models import AggregatedOrder, Fill, Side
from .rate_limit import Clock

logger = logging.getLogger(__name__)

OrderCallback = Callable[[AggregatedOrder], None]
OrderKey = tuple[str, str]


class FillDeduplicator:
    """Bounded set of seen fill identities with oldest-first eviction."""

    def __init__(self, capacity: int = 10_000) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._seen: OrderedDict[str, None] = OrderedDict()

    def is_duplicate(self, fill: Fill) -> bool:
        """Return True if ``fill`` was seen before, otherwise remember it."""
        identity = fill.identity
        if identity in self._seen:
            return True
        self._seen[identity] = None
        if len(self._seen) > self.capacity:
            self._seen.popitem(last=False)
        return False

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, identity: object) -> bool:
        return identity in self._seen


@dataclass
class PendingOrder:
    """Mutable accumulation state for one in-flight order."""

    account_address: str
    order_id: int | str | None
    asset: str
    side: Side
    fills: list[Fill] = field(default_factory=list)
    total_size: float = 0.0
    avg_price: float = 0.0
    last_update: float = 0.0

    def add(self, fill: Fill, now: float) -> None:
        new_total = self.total_size + fill.size
        self.avg_price = (self.avg_price * self.total_size + fill.price * fill.size) / new_total
        self.total_size = new_total
        bisect.insort(self.fills, fill, key=lambda f: f.timestamp)
        self.last_update = now

    def to_order(self) -> AggregatedOrder:
        return AggregatedOrder(
            account_address=self.account_address,
            order_id=self.order_id,
            asset=self.asset,
            side=self.side,
            fills=tuple(self.fills),
            total_size=self.total_size,
            avg_price=self.avg_price,
            first_fill_time=self.fills[0].timestamp,
            last_update_time=self.fills[-1].timestamp,
        )


@dataclass(frozen=True)
class AggregatorStats:
    fills_received: int
    duplicates: int
    orders_emitted: int
    pending: int


class OrderAggregator:
    """Groups fills by ``(account, order_id)`` and emits quiescent orders.

    An order is complete once no fill for it has arrived for
    ``completion_delay_seconds``. A fill that arrives after its order was
    emitted starts a new logical order under the same id.
    """

    def __init__(
        self,
        config: AggregatorConfig,
        on_order: OrderCallback,
        deduplicator: FillDeduplicator | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self._delay = config.completion_delay_seconds
        self._on_order = on_order
        self._dedup = deduplicator or FillDeduplicator(config.dedup_capacity)
        self._clock = clock
        self._pending: dict[OrderKey, PendingOrder] = {}
        self._timers: dict[OrderKey, asyncio.TimerHandle] = {}
        self._fills_received = 0
        self._duplicates = 0
        self._orders_emitted = 0

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def add_fill(self, account_address: str, fill: Fill) -> bool:
        """Ingest one fill; returns False when it was dropped as a duplicate.

        Must be called from within a running event loop.
        """
        self._fills_received += 1
        if self._dedup.is_duplicate(fill):
            self._duplicates += 1
            logger.debug("Dropping duplicate fill %s", fill.identity)
            return False

        account = account_address.lower()
        pending = PendingOrder(
            account_address=account,
            order_id=fill.order_id,
            asset=fill.asset,
            side=fill.side,
        )

        if fill.order_id is None:
            pending.add(fill, self._clock())
            self._emit(pending)
            return True

        key = (account, str(fill.order_id))
        pending = self._pending.setdefault(key, pending)
        pending.add(fill, self._clock())
        self._schedule(key, self._delay)
        return True

    def add_fills(self, account_address: str, fills: Iterable[Fill]) -> int:
        """Ingest a batch in timestamp order; returns how many were accepted."""
        accepted = 0
        for fill in sorted(fills, key=lambda f: f.timestamp):
            if self.add_fill(account_address, fill):
                accepted += 1
        return accepted

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _schedule(self, key: OrderKey, delay: float) -> None:
        previous = self._timers.pop(key, None)
        if previous is not None:
            previous.cancel()
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay, self._check_completed, key)

    def _check_completed(self, key: OrderKey) -> None:
        self._timers.pop(key, None)
        self.emit_completed()
        pending = self._pending.get(key)
        if pending is not None:
            self._schedule(key, self._delay - (self._clock() - pending.last_update))

    def emit_completed(self) -> list[AggregatedOrder]:
        """Emit every order that has been quiet for the completion delay."""
        now = self._clock()
        ready = [
            key for key, pending in self._pending.items()
            if now - pending.last_update >= self._delay
        ]
        return [self._finalize(key) for key in ready]

    def flush(self) -> list[AggregatedOrder]:
        """Emit all pending orders immediately, e.g. on shutdown."""
        if self._pending:
            logger.info("Flushing %d pending orders", len(self._pending))
        return [self._finalize(key) for key in list(self._pending)]

    def _finalize(self, key: OrderKey) -> AggregatedOrder:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        return self._emit(self._pending.pop(key))

    def _emit(self, pending: PendingOrder) -> AggregatedOrder:
        order = pending.to_order()
        self._orders_emitted += 1
        logger.info(
            "Order %s complete: %s %s %.6f @ %.6f (%d fills)",
            order.order_id, order.asset, order.side,
            order.total_size, order.avg_price, len(order.fills),
        )
        try:
            self._on_order(order)
        except Exception as e:
            logger.error("Order callback failed for %s: %s", order.order_id, e)
        return order

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def stats(self) -> AggregatorStats:
        return AggregatorStats(
            fills_received=self._fills_received,
            duplicates=self._duplicates,
            orders_emitted=self._orders_emitted,
            pending=len(self._pending),
        )
