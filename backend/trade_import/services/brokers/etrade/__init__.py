"""E*TRADE transaction history adapter."""

from .adapter import ETradeAdapter

__all__ = ["ETradeAdapter"]
