"""Hyperliquid info API client with endpoint fallback."""
from __future__ import annotations

import asyncio
import logging
import ssl
import time
from typing import Any

import aiohttp
import certifi

from ...config import ExchangeConfig
from ...errors import ExchangeError, RateLimitError, TransientExchangeError
from ...models import UserPositionState
from . import parser

logger = logging.getLogger(__name__)


class HyperliquidClient:
    """Read-only Hyperliquid ``/info`` client with automatic endpoint fallback.

    Rate-limit responses are raised immediately instead of moving on to the
    next endpoint, so a 429 never turns into a burst against every endpoint.
    """

    def __init__(self, config: ExchangeConfig) -> None:
        self.endpoints = list(config.api_urls)
        self.timeout = config.request_timeout
        self.current_endpoint_index = 0

    @staticmethod
    def _retry_after(response: aiohttp.ClientResponse) -> float | None:
        value = response.headers.get("Retry-After")
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    async def info_request(self, payload: dict[str, Any]) -> Any:
        """POST an info request, falling back across endpoints on transient errors."""
        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            index = (self.current_endpoint_index + attempt) % len(self.endpoints)
            url = self.endpoints[index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        if response.status == 429:
                            raise RateLimitError(
                                f"Rate limited by {url}",
                                retry_after=self._retry_after(response),
                            )
                        if response.status >= 500:
                            raise TransientExchangeError(
                                f"HTTP {response.status} from {url}"
                            )
                        if response.status != 200:
                            raise ExchangeError(f"HTTP {response.status} from {url}")

                        result = await response.json()

                        if index != self.current_endpoint_index:
                            logger.info("Switched to API endpoint: %s", url)
                            self.current_endpoint_index = index

                        return result
            except TransientExchangeError as e:
                last_error = e
            except ExchangeError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                last_error = TransientExchangeError(f"{type(e).__name__}: {e}")

            logger.warning("API endpoint %s failed: %s", url, last_error)
            if attempt < len(self.endpoints) - 1:
                logger.info("Trying next endpoint...")

        raise TransientExchangeError(
            f"All API endpoints failed. Last error: {last_error}"
        )

    async def fetch_positions(self, address: str) -> UserPositionState:
        """Fetch the account's clearinghouse state as a position snapshot."""
        raw = await self.info_request({"type": "clearinghouseState", "user": address})
        if not isinstance(raw, dict):
            raise ExchangeError(f"Unexpected clearinghouseState payload for {address}")
        return parser.parse_clearinghouse_state(address, raw, int(time.time() * 1000))
