"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExchangeConfig:
    api_urls: tuple[str, ...] = ("https://api.hyperliquid.xyz/info",)
    request_timeout: int = 15


@dataclass(frozen=True)
class CacheConfig:
    ttl_seconds: float = 300.0
    sweep_interval_seconds: float = 600.0
    min_api_interval_seconds: float = 2.0


@dataclass(frozen=True)
class BackoffConfig:
    error_backoff_seconds: float = 5.0
    rate_limit_backoff_seconds: float = 10.0
    max_backoff_seconds: float = 180.0


@dataclass(frozen=True)
class AggregatorConfig:
    completion_delay_seconds: float = 3.0
    dedup_capacity: int = 10_000
    min_notional_value: float = 0.0


@dataclass(frozen=True)
class ClassifierConfig:
    settlement_delay_seconds: float = 5.0


@dataclass(frozen=True)
class RiskTiersConfig:
    low: float = 0.3
    medium: float = 0.6
    high: float = 0.8


@dataclass(frozen=True)
class RiskThresholdsConfig:
    single_asset_concentration: float = 0.6
    leverage_warning: float = 5.0
    capital_utilization: float = 0.8
    risk_tiers: RiskTiersConfig = field(default_factory=RiskTiersConfig)


@dataclass(frozen=True)
class AccountConfig:
    label: str = ""
    address: str = ""


@dataclass(frozen=True)
class AppConfig:
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    aggregator: AggregatorConfig = field(default_factory=AggregatorConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    risk: RiskThresholdsConfig = field(default_factory=RiskThresholdsConfig)
    accounts: tuple[AccountConfig, ...] = ()


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_exchange(raw: dict[str, Any]) -> ExchangeConfig:
    urls = raw.get("api_urls") or list(ExchangeConfig.api_urls)
    return ExchangeConfig(
        api_urls=tuple(urls),
        request_timeout=int(raw.get("request_timeout", 15)),
    )


def _build_cache(raw: dict[str, Any]) -> CacheConfig:
    return CacheConfig(
        ttl_seconds=float(raw.get("ttl_seconds", 300.0)),
        sweep_interval_seconds=float(raw.get("sweep_interval_seconds", 600.0)),
        min_api_interval_seconds=float(raw.get("min_api_interval_seconds", 2.0)),
    )


def _build_backoff(raw: dict[str, Any]) -> BackoffConfig:
    return BackoffConfig(
        error_backoff_seconds=float(raw.get("error_backoff_seconds", 5.0)),
        rate_limit_backoff_seconds=float(raw.get("rate_limit_backoff_seconds", 10.0)),
        max_backoff_seconds=float(raw.get("max_backoff_seconds", 180.0)),
    )


def _build_aggregator(raw: dict[str, Any]) -> AggregatorConfig:
    return AggregatorConfig(
        completion_delay_seconds=float(raw.get("completion_delay_seconds", 3.0)),
        dedup_capacity=int(raw.get("dedup_capacity", 10_000)),
        min_notional_value=float(raw.get("min_notional_value", 0.0)),
    )


def _build_classifier(raw: dict[str, Any]) -> ClassifierConfig:
    return ClassifierConfig(
        settlement_delay_seconds=float(raw.get("settlement_delay_seconds", 5.0)),
    )


def _build_risk(raw: dict[str, Any]) -> RiskThresholdsConfig:
    tiers = raw.get("risk_tiers", {})
    return RiskThresholdsConfig(
        single_asset_concentration=float(raw.get("single_asset_concentration", 0.6)),
        leverage_warning=float(raw.get("leverage_warning", 5.0)),
        capital_utilization=float(raw.get("capital_utilization", 0.8)),
        risk_tiers=RiskTiersConfig(
            low=float(tiers.get("low", 0.3)),
            medium=float(tiers.get("medium", 0.6)),
            high=float(tiers.get("high", 0.8)),
        ),
    )


def _build_accounts(raw: list[dict[str, Any]]) -> tuple[AccountConfig, ...]:
    accounts: list[AccountConfig] = []
    for a in raw:
        accounts.append(
            AccountConfig(
                label=a.get("label", ""),
                address=a.get("address", ""),
            )
        )
    return tuple(accounts)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (two levels up from this file).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        exchange=_build_exchange(raw.get("exchange", {})),
        cache=_build_cache(raw.get("cache", {})),
        backoff=_build_backoff(raw.get("backoff", {})),
        aggregator=_build_aggregator(raw.get("aggregator", {})),
        classifier=_build_classifier(raw.get("classifier", {})),
        risk=_build_risk(raw.get("risk", {})),
        accounts=_build_accounts(raw.get("accounts", [])),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def validate_thresholds(risk: RiskThresholdsConfig) -> None:
    """Raise on risk thresholds that cannot be applied consistently."""
    tiers = risk.risk_tiers
    if not 0 < tiers.low < tiers.medium < tiers.high:
        raise ValueError(
            f"Risk tiers must satisfy 0 < low < medium < high, got "
            f"{tiers.low}/{tiers.medium}/{tiers.high}"
        )
    if risk.leverage_warning <= 0:
        raise ValueError("leverage_warning must be positive")
    if not 0 < risk.capital_utilization <= 1:
        raise ValueError("capital_utilization must be in (0, 1]")
    if not 0 < risk.single_asset_concentration <= 1:
        raise ValueError("single_asset_concentration must be in (0, 1]")


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.accounts:
        raise ValueError("At least one account must be configured")

    for account in cfg.accounts:
        if not account.address:
            raise ValueError(f"Account '{account.label}' has no address")

    if not cfg.exchange.api_urls:
        raise ValueError("At least one exchange API URL must be configured")

    if cfg.cache.ttl_seconds <= 0:
        raise ValueError("cache.ttl_seconds must be positive")
    if cfg.cache.min_api_interval_seconds < 0:
        raise ValueError("cache.min_api_interval_seconds must not be negative")
    if cfg.aggregator.completion_delay_seconds <= 0:
        raise ValueError("aggregator.completion_delay_seconds must be positive")
    if cfg.aggregator.dedup_capacity <= 0:
        raise ValueError("aggregator.dedup_capacity must be positive")
    if cfg.classifier.settlement_delay_seconds < 0:
        raise ValueError("classifier.settlement_delay_seconds must not be negative")

    validate_thresholds(cfg.risk)
