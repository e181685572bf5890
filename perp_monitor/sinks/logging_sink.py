"""Trade sink that writes a one-line summary per event to the log."""
import logging

from ..models import TradeEvent


class LoggingSink:
    """Log classified trades; stands in for an alert composer."""

    def __init__(self, logger_name: str = "perp_monitor.trades") -> None:
        self._logger = logging.getLogger(logger_name)

    @staticmethod
    def summarize(event: TradeEvent) -> str:
        trade = event.trade
        parts = [
            f"{trade.account_address} {trade.asset} {trade.event_type}",
            f"confidence={trade.confidence}",
            f"size={trade.order.total_size:g} @ {trade.order.avg_price:g}",
            f"change={trade.size_change:+g}",
        ]
        if not trade.position_confirmed:
            parts.append("could not confirm position change")
        if trade.realized_pnl is not None:
            parts.append(f"pnl={trade.realized_pnl:.2f}")
        if event.report is not None:
            risk = event.report.overall_risk
            parts.append(f"risk={risk.level} ({risk.score:.2f})")
        return " | ".join(parts)

    async def publish(self, event: TradeEvent) -> None:
        self._logger.info("%s", self.summarize(event))
