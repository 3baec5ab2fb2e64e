"""Repository layer - data access abstraction.

Repositories handle all database queries. Services reach the database
through repositories (wrapped by the trade store) instead of querying
SQLAlchemy models directly.

Dependency direction: Services -> TradeStore -> Repositories -> Models
"""

from .exceptions import DuplicateError, NotFoundError, RepositoryError, TradeWriteError
from .portfolio_repository import PortfolioRepository
from .symbol_repository import SymbolRepository
from .trade_repository import TradeRepository

__all__ = [
    "DuplicateError",
    "NotFoundError",
    "PortfolioRepository",
    "RepositoryError",
    "SymbolRepository",
    "TradeRepository",
    "TradeWriteError",
]
