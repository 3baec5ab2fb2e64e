"""Data access exceptions for portfolios, symbols and trades.

The import pipeline tells a ticker that already exists (recoverable by a
re-lookup) apart from a trade row that could not be written (counted against
the import's error budget).
"""


class RepositoryError(Exception):
    """Base exception for repository operations."""


class NotFoundError(RepositoryError):
    """A portfolio, symbol or trade id that does not exist."""

    def __init__(self, entity_type: str, identifier: str | int):
        self.entity_type = entity_type
        self.identifier = identifier
        super().__init__(f"{entity_type} {identifier} does not exist")


class DuplicateError(RepositoryError):
    """A unique value is already taken, e.g. a ticker in the symbol master."""

    def __init__(self, entity_type: str, field: str, value: str):
        self.entity_type = entity_type
        self.field = field
        self.value = value
        super().__init__(f"{entity_type} {field} '{value}' is already registered")


class TradeWriteError(RepositoryError):
    """An imported trade could not be stored."""

    def __init__(self, portfolio_id: int, symbol_id: int, reason: str):
        self.portfolio_id = portfolio_id
        self.symbol_id = symbol_id
        super().__init__(
            f"Could not store trade for symbol id {symbol_id} "
            f"in portfolio {portfolio_id}: {reason}"
        )
