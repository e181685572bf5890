"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Callable
from unittest.mock import AsyncMock

import pytest

from perp_monitor.config import (
    AccountConfig,
    AggregatorConfig,
    AppConfig,
    BackoffConfig,
    CacheConfig,
    ClassifierConfig,
    ExchangeConfig,
    RiskThresholdsConfig,
)
from perp_monitor.models import AggregatedOrder, AssetPosition, Fill, UserPositionState

ADDRESS = "0xabcdef0123456789abcdef0123456789abcdef01"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_thresholds() -> RiskThresholdsConfig:
    return RiskThresholdsConfig()


@pytest.fixture()
def sample_account() -> AccountConfig:
    return AccountConfig(label="main", address=ADDRESS)


@pytest.fixture()
def sample_app_config(
    sample_thresholds: RiskThresholdsConfig, sample_account: AccountConfig
) -> AppConfig:
    return AppConfig(
        exchange=ExchangeConfig(
            api_urls=("https://api1.example.com/info", "https://api2.example.com/info"),
            request_timeout=5,
        ),
        cache=CacheConfig(ttl_seconds=300, sweep_interval_seconds=600, min_api_interval_seconds=0),
        backoff=BackoffConfig(),
        aggregator=AggregatorConfig(completion_delay_seconds=0.05),
        classifier=ClassifierConfig(settlement_delay_seconds=0),
        risk=sample_thresholds,
        accounts=(sample_account,),
    )


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_position() -> Callable[..., AssetPosition]:
    def _make(
        asset: str = "BTC",
        size: float = 1.0,
        side: str = "long",
        entry_price: float = 100.0,
        unrealized_pnl: float = 0.0,
    ) -> AssetPosition:
        return AssetPosition(
            asset=asset,
            size=size,
            side=side,  # type: ignore[arg-type]
            entry_price=entry_price,
            unrealized_pnl=unrealized_pnl,
            notional_value=size * entry_price,
        )

    return _make


@pytest.fixture()
def make_state() -> Callable[..., UserPositionState]:
    def _make(
        positions: tuple[AssetPosition, ...] = (),
        account_value: float = 10_000.0,
        margin_used: float = 0.0,
        address: str = ADDRESS,
    ) -> UserPositionState:
        return UserPositionState(
            user_address=address,
            positions=tuple(positions),
            total_notional_value=sum(p.notional_value for p in positions),
            account_value=account_value,
            total_margin_used=margin_used,
            timestamp=1_700_000_000_000,
        )

    return _make


@pytest.fixture()
def make_fill() -> Callable[..., Fill]:
    def _make(
        asset: str = "BTC",
        size: float = 1.0,
        price: float = 100.0,
        side: str = "long",
        timestamp: int = 1_700_000_000_000,
        order_id: int | None = 1,
        tx_hash: str | None = None,
        fill_id: int | None = None,
    ) -> Fill:
        return Fill(
            asset=asset,
            size=size,
            price=price,
            side=side,  # type: ignore[arg-type]
            timestamp=timestamp,
            order_id=order_id,
            tx_hash=tx_hash,
            fill_id=fill_id,
        )

    return _make


@pytest.fixture()
def make_order(make_fill: Callable[..., Fill]) -> Callable[..., AggregatedOrder]:
    def _make(
        asset: str = "BTC",
        side: str = "long",
        size: float = 1.0,
        price: float = 100.0,
        order_id: int = 1,
    ) -> AggregatedOrder:
        fill = make_fill(asset=asset, size=size, price=price, side=side, order_id=order_id)
        return AggregatedOrder(
            account_address=ADDRESS,
            order_id=order_id,
            asset=asset,
            side=side,  # type: ignore[arg-type]
            fills=(fill,),
            total_size=size,
            avg_price=price,
            first_fill_time=fill.timestamp,
            last_update_time=fill.timestamp,
        )

    return _make


@pytest.fixture()
def mock_exchange() -> AsyncMock:
    client = AsyncMock()
    client.fetch_positions = AsyncMock()
    return client


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    exchange:
      api_urls: ["https://api.example.com/info"]
      request_timeout: 10
    cache:
      ttl_seconds: 120
      sweep_interval_seconds: 300
      min_api_interval_seconds: 1.5
    backoff:
      error_backoff_seconds: 4
      rate_limit_backoff_seconds: 8
      max_backoff_seconds: 60
    aggregator:
      completion_delay_seconds: 2
      dedup_capacity: 500
      min_notional_value: 10
    classifier:
      settlement_delay_seconds: 3
    risk:
      single_asset_concentration: 0.5
      leverage_warning: 4
      capital_utilization: 0.7
      risk_tiers:
        low: 0.25
        medium: 0.5
        high: 0.75
    accounts:
      - label: main
        address: "0xTEST"
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file


# ---------------------------------------------------------------------------
# Sample exchange payloads
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_raw_fill() -> dict:
    return {
        "coin": "ETH",
        "px": "2500.5",
        "sz": "0.4",
        "side": "B",
        "time": 1_700_000_000_123,
        "oid": 987654,
        "tid": 1122,
        "hash": "0x6f1c0e2b4a",
        "user": ADDRESS.upper().replace("0X", "0x"),
    }


@pytest.fixture()
def sample_clearinghouse_state() -> dict:
    return {
        "assetPositions": [
            {
                "type": "oneWay",
                "position": {
                    "coin": "BTC",
                    "szi": "0.5",
                    "entryPx": "60000.0",
                    "unrealizedPnl": "250.0",
                },
            },
            {
                "type": "oneWay",
                "position": {
                    "coin": "ETH",
                    "szi": "-4.0",
                    "entryPx": "2500.0",
                    "unrealizedPnl": "-80.5",
                },
            },
            {
                "type": "oneWay",
                "position": {"coin": "SOL", "szi": "0.0", "entryPx": "150.0"},
            },
        ],
        "marginSummary": {
            "accountValue": "20000.0",
            "totalMarginUsed": "4000.0",
            "totalNtlPos": "40000.0",
        },
    }
