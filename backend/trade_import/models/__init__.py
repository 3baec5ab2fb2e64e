"""SQLAlchemy ORM models."""

from trade_import.models.portfolio import Portfolio
from trade_import.models.symbol import Symbol
from trade_import.models.trade import Trade

__all__ = [
    "Portfolio",
    "Symbol",
    "Trade",
]
