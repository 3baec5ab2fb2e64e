"""Charles Schwab transaction history adapter."""

from .adapter import SchwabAdapter

__all__ = ["SchwabAdapter"]
