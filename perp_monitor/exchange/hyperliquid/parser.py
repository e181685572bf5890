"""Pure parsing functions for Hyperliquid info API payloads — no I/O."""
from __future__ import annotations

import math
from typing import Any

from ...errors import FillDataError
from ...models import AssetPosition, Fill, Side, UserPositionState

_ZERO_HASH_CHARS = frozenset("0x")


def to_float(value: Any, default: float = 0.0) -> float:
    """Parse a decimal string (the API sends numbers as strings)."""
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def normalize_timestamp_ms(value: Any) -> int:
    """Return an epoch timestamp in milliseconds.

    Values below 1e12 are taken to be seconds.
    """
    ts = float(value)
    if ts < 1e12:
        ts *= 1000
    return int(ts)


def parse_side(raw_side: Any) -> Side:
    """Map exchange side codes: "B" (bid) → long, "A" (ask) → short."""
    if raw_side == "B":
        return "long"
    if raw_side == "A":
        return "short"
    raise FillDataError(f"Unknown fill side: {raw_side!r}")


def _clean_hash(raw_hash: Any) -> str | None:
    # Fills not tied to an L1 transaction carry an all-zero hash.
    if not raw_hash or not isinstance(raw_hash, str):
        return None
    if set(raw_hash.lower()) <= _ZERO_HASH_CHARS:
        return None
    return raw_hash


def parse_fill(raw: dict[str, Any]) -> Fill:
    """Parse one raw fill record.

    Raises:
        FillDataError: when a required field is missing or malformed.
    """
    if not isinstance(raw, dict):
        raise FillDataError(f"Fill is not an object: {raw!r}")

    coin = raw.get("coin")
    if not coin or not isinstance(coin, str):
        raise FillDataError(f"Fill has no asset: {raw!r}")

    if raw.get("sz") in (None, "") or raw.get("px") in (None, ""):
        raise FillDataError(f"Fill for {coin} is missing size or price")

    try:
        size = abs(float(raw["sz"]))
        price = float(raw["px"])
    except (TypeError, ValueError) as e:
        raise FillDataError(f"Fill for {coin} has non-numeric size/price: {e}") from e

    if not math.isfinite(size) or not math.isfinite(price):
        raise FillDataError(f"Fill for {coin} has non-finite size or price")
    if size <= 0 or price <= 0:
        raise FillDataError(f"Fill for {coin} has non-positive size or price")

    if raw.get("time") is None:
        raise FillDataError(f"Fill for {coin} has no timestamp")
    try:
        timestamp = normalize_timestamp_ms(raw["time"])
    except (TypeError, ValueError, OverflowError) as e:
        raise FillDataError(f"Fill for {coin} has a bad timestamp: {e}") from e

    user = raw.get("user")
    return Fill(
        asset=coin,
        size=size,
        price=price,
        side=parse_side(raw.get("side")),
        timestamp=timestamp,
        order_id=raw.get("oid"),
        tx_hash=_clean_hash(raw.get("hash")),
        fill_id=raw.get("tid"),
        user=user.lower() if isinstance(user, str) else None,
    )


def parse_asset_position(entry: dict[str, Any]) -> AssetPosition | None:
    """Parse one ``assetPositions`` entry; returns None for flat positions.

    Notional is valued at entry price: notional = |szi| * entryPx
    """
    position = entry.get("position") or {}
    coin = position.get("coin")
    signed_size = to_float(position.get("szi"))
    if not coin or signed_size == 0:
        return None

    size = abs(signed_size)
    entry_price = to_float(position.get("entryPx"))
    return AssetPosition(
        asset=coin,
        size=size,
        side="long" if signed_size > 0 else "short",
        entry_price=entry_price,
        unrealized_pnl=to_float(position.get("unrealizedPnl")),
        notional_value=size * entry_price,
    )


def parse_clearinghouse_state(
    address: str, raw: dict[str, Any], timestamp_ms: int
) -> UserPositionState:
    """Build a ``UserPositionState`` from a ``clearinghouseState`` response."""
    positions: dict[str, AssetPosition] = {}
    for entry in raw.get("assetPositions") or []:
        parsed = parse_asset_position(entry)
        if parsed is not None:
            positions[parsed.asset] = parsed

    margin = raw.get("marginSummary") or {}
    ordered = tuple(positions.values())
    return UserPositionState(
        user_address=address.lower(),
        positions=ordered,
        total_notional_value=sum(p.notional_value for p in ordered),
        account_value=to_float(margin.get("accountValue")),
        total_margin_used=to_float(margin.get("totalMarginUsed")),
        timestamp=timestamp_ms,
    )
