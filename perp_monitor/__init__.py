"""Perp position reconciliation and trade classification."""

__version__ = "0.1.0"
