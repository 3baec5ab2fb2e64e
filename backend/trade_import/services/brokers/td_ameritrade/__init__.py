"""TD Ameritrade transaction history adapter."""

from .adapter import TDAmeritradeAdapter

__all__ = ["TDAmeritradeAdapter"]
