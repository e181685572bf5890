"""Command-line interface for the perp position monitor."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .config import AccountConfig, AppConfig, load_config
from .logging_setup import configure_logging
from .models import AnalysisReport, UserPositionState
from .services import TradePipeline
from .sinks import LoggingSink

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="perp-monitor",
        description="Perp position reconciliation and trade classification",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("positions", help="Show current positions for every account")
    sub.add_parser("analyze", help="Risk and allocation analysis for every account")

    replay_parser = sub.add_parser(
        "replay", help="Run a JSON file of raw fills through the pipeline"
    )
    replay_parser.add_argument("fills", help="Path to a JSON list of raw fills")
    replay_parser.add_argument(
        "--account",
        default=None,
        help="Account address or label (default: first configured account)",
    )

    return parser


def format_positions(label: str, state: UserPositionState | None) -> str:
    if state is None:
        return f"{label}: position state unavailable"
    lines = [
        f"{label}: account ${state.account_value:,.2f} · "
        f"margin ${state.total_margin_used:,.2f} · "
        f"notional ${state.total_notional_value:,.2f}"
    ]
    if not state.positions:
        lines.append("  No open positions.")
    for p in state.positions:
        lines.append(
            f"  {p.asset:<8} {p.side:<5} {p.size:>14.4f} @ {p.entry_price:,.4f} "
            f"(${p.notional_value:,.2f}, uPnL {p.unrealized_pnl:+,.2f})"
        )
    return "\n".join(lines)


def format_report(label: str, report: AnalysisReport | None) -> str:
    if report is None:
        return f"{label}: analysis unavailable"
    exposure = report.risk_exposure
    risk = report.overall_risk
    insights = report.strategic_insights
    lines = [
        f"{label}: risk {risk.level} ({risk.score:.3f})",
        f"  Leverage: {exposure.effective_leverage:.2f}x · "
        f"Utilization: {exposure.capital_utilization * 100:.1f}% · "
        f"Top asset: {exposure.max_asset_name or '-'} "
        f"({exposure.max_single_asset_exposure * 100:.1f}%)",
        f"  Diversification: {report.asset_allocation.diversification_score:.2f} · "
        f"Sentiment: {insights.market_sentiment} · "
        f"Signal: {insights.signal_strength}/5",
    ]
    for warning in exposure.warnings:
        lines.append(f"  ! {warning}")
    for rec in insights.recommendations:
        lines.append(f"  - {rec}")
    return "\n".join(lines)


def _select_account(config: AppConfig, selector: str | None) -> AccountConfig:
    if selector is None:
        return config.accounts[0]
    for account in config.accounts:
        if selector.lower() in (account.address.lower(), account.label.lower()):
            return account
    return AccountConfig(label=selector, address=selector)


async def _show_positions(pipeline: TradePipeline, config: AppConfig) -> None:
    for account in config.accounts:
        state = await pipeline.cache.get(account.address)
        print(format_positions(account.label, state))


async def _show_analysis(pipeline: TradePipeline, config: AppConfig) -> None:
    for account in config.accounts:
        report = await pipeline.analyzer.analyze(account)
        print(format_report(account.label, report))


async def _replay(
    pipeline: TradePipeline, config: AppConfig, fills_path: str, selector: str | None
) -> None:
    raw_fills = json.loads(Path(fills_path).read_text())
    if not isinstance(raw_fills, list):
        raise ValueError(f"{fills_path} must contain a JSON list of fills")

    account = _select_account(config, selector)
    pipeline.start()
    try:
        accepted = await pipeline.submit_fills(account, raw_fills)
        logger.info("Accepted %d of %d fills", accepted, len(raw_fills))
    finally:
        await pipeline.shutdown()

    stats = pipeline.stats
    print(
        f"Published {stats.events_published} trade events "
        f"({stats.aggregator.duplicates} duplicate and "
        f"{stats.fills_dropped} invalid fills dropped)"
    )


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    pipeline = TradePipeline(config, sinks=[LoggingSink()])

    if args.command == "positions":
        await _show_positions(pipeline, config)
    elif args.command == "analyze":
        await _show_analysis(pipeline, config)
    elif args.command == "replay":
        await _replay(pipeline, config, args.fills, args.account)
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    asyncio.run(_run(args))
