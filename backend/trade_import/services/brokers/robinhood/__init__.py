"""Robinhood account activity adapter."""

from .adapter import RobinhoodAdapter

__all__ = ["RobinhoodAdapter"]
