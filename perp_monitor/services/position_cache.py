"""Rate-limited, TTL-bounded cache of account position snapshots."""
from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass

from ..config import CacheConfig
from ..interfaces.exchange import ExchangeClient
from ..models import AssetPosition, CachedSnapshot, UserPositionState
from .rate_limit import Clock, ErrorBackoff, MinIntervalLimiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheStats:
    cache_hits: int
    cache_misses: int
    api_calls: int
    errors: int
    stale_served: int
    cache_size: int

    @property
    def hit_rate(self) -> float:
        lookups = self.cache_hits + self.cache_misses
        return self.cache_hits / lookups if lookups else 0.0


def format_address(address: str) -> str:
    if len(address) > 12:
        return f"{address[:6]}...{address[-4:]}"
    return address


class PositionSnapshotCache:
    """Owns every ``UserPositionState``; other components only read them.

    Network failures never reach the caller: ``get`` degrades to the stale
    entry when one exists and to ``None`` ("unknown") otherwise.
    """

    def __init__(
        self,
        client: ExchangeClient,
        config: CacheConfig,
        limiter: MinIntervalLimiter,
        backoff: ErrorBackoff,
        clock: Clock = time.monotonic,
    ) -> None:
        self._client = client
        self._config = config
        self._limiter = limiter
        self._backoff = backoff
        self._clock = clock
        self._entries: dict[str, CachedSnapshot] = {}
        self._sweeper: asyncio.Task[None] | None = None
        self.reset_stats()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _is_expired(self, cached: CachedSnapshot) -> bool:
        return self._clock() - cached.timestamp > self._config.ttl_seconds

    async def get(self, address: str) -> UserPositionState | None:
        """Return the account's position state, fetching it when stale."""
        key = address.lower()
        cached = self._entries.get(key)
        if cached is not None and not self._is_expired(cached):
            self._hits += 1
            logger.debug(
                "Using cached positions for %s (age %.1fs)",
                format_address(address), self._clock() - cached.timestamp,
            )
            return cached.data

        self._misses += 1

        if not self._backoff.ready():
            logger.debug(
                "Exchange backoff active (%.1fs left), skipping fetch for %s",
                self._backoff.remaining(), format_address(address),
            )
            return self._degrade(address, cached)

        await self._limiter.acquire()
        self._api_calls += 1
        try:
            state = await self._client.fetch_positions(address)
        except Exception as e:
            self._errors += 1
            self._backoff.record_error(e)
            logger.error(
                "Failed to fetch positions for %s: %s", format_address(address), e
            )
            return self._degrade(address, cached)

        self._backoff.record_success()
        self._entries[key] = CachedSnapshot(data=state, timestamp=self._clock())
        logger.debug(
            "Updated positions for %s: %d positions, notional $%.2f",
            format_address(address), len(state.positions), state.total_notional_value,
        )
        return state

    def _degrade(
        self, address: str, cached: CachedSnapshot | None
    ) -> UserPositionState | None:
        if cached is None:
            return None
        self._stale_served += 1
        logger.warning(
            "Serving stale positions for %s (age %.1fs)",
            format_address(address), self._clock() - cached.timestamp,
        )
        return cached.data

    async def refresh(self, address: str) -> UserPositionState | None:
        """Evict the cached entry and fetch a fresh snapshot."""
        self._entries.pop(address.lower(), None)
        return await self.get(address)

    async def get_asset_position(
        self, address: str, asset: str, refresh: bool = False
    ) -> AssetPosition | None:
        """Return one asset's position.

        ``None`` means the account state is unknown; a known account with no
        position in ``asset`` yields a flat placeholder.
        """
        state = await (self.refresh(address) if refresh else self.get(address))
        if state is None:
            return None
        return state.position_for(asset) or AssetPosition.flat(asset)

    # ------------------------------------------------------------------
    # Expiry sweep
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Delete entries older than the TTL; returns how many were removed."""
        expired = [k for k, v in self._entries.items() if self._is_expired(v)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(
                "Swept %d expired snapshots, %d remaining",
                len(expired), len(self._entries),
            )
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.sweep_interval_seconds)
            self.sweep()

    def start(self) -> None:
        """Start the background sweep task (requires a running loop)."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and address.lower() in self._entries

    @property
    def stats(self) -> CacheStats:
        return CacheStats(
            cache_hits=self._hits,
            cache_misses=self._misses,
            api_calls=self._api_calls,
            errors=self._errors,
            stale_served=self._stale_served,
            cache_size=len(self._entries),
        )

    def reset_stats(self) -> None:
        self._hits = 0
        self._misses = 0
        self._api_calls = 0
        self._errors = 0
        self._stale_served = 0
