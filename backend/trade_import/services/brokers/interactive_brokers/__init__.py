"""Interactive Brokers trade report adapter."""

from .adapter import InteractiveBrokersAdapter

__all__ = ["InteractiveBrokersAdapter"]
