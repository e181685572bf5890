"""Hyperliquid perpetuals exchange."""
from .client import HyperliquidClient

__all__ = ["HyperliquidClient"]
