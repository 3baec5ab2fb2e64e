"""Symbol data access layer."""

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from trade_import.models import Symbol

from .exceptions import DuplicateError, NotFoundError

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)


class SymbolRepository:
    """Ticker master data access.

    Naming conventions:
    - find_* : Query that may return None
    - get_* : Query that raises NotFoundError if missing
    - create_* : Insert new record
    - update_* : Modify existing record
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def find_by_id(self, symbol_id: int) -> Symbol | None:
        """Find symbol by primary key."""
        return self._db.query(Symbol).filter(Symbol.id == symbol_id).first()

    def get_by_id(self, symbol_id: int) -> Symbol:
        symbol = self.find_by_id(symbol_id)
        if symbol is None:
            raise NotFoundError("Symbol", symbol_id)
        return symbol

    def find_by_symbol(self, symbol: str) -> Symbol | None:
        """Find symbol by ticker (exact match, tickers are stored uppercase)."""
        return self._db.query(Symbol).filter(Symbol.symbol == symbol).first()

    def find_by_symbols(self, symbols: list[str]) -> "Sequence[Symbol]":
        """Find multiple symbols by ticker."""
        return self._db.query(Symbol).filter(Symbol.symbol.in_(symbols)).all()

    def create_symbol(
        self,
        symbol: str,
        *,
        name: str | None = None,
        asset_type: str = "stock",
        exchange: str | None = None,
        sector: str | None = None,
        industry: str | None = None,
    ) -> Symbol:
        """Insert a new ticker master record.

        Raises:
            DuplicateError: If the ticker already exists
        """
        record = Symbol(
            symbol=symbol,
            name=name or symbol,
            asset_type=asset_type,
            exchange=exchange,
            sector=sector,
            industry=industry,
        )
        self._db.add(record)
        try:
            self._db.flush()
        except IntegrityError as e:
            self._db.rollback()
            raise DuplicateError("Symbol", "symbol", symbol) from e

        logger.info(f"Created symbol {symbol} with ID {record.id}")
        return record

    def update_symbol(
        self,
        record: Symbol,
        *,
        name: str | None = None,
        asset_type: str | None = None,
        exchange: str | None = None,
        sector: str | None = None,
        industry: str | None = None,
    ) -> bool:
        """Overwrite descriptive fields with non-empty values that differ.

        Returns:
            True if any field was updated.
        """
        updated = False
        for field_name, value in (
            ("name", name),
            ("asset_type", asset_type),
            ("exchange", exchange),
            ("sector", sector),
            ("industry", industry),
        ):
            if value and getattr(record, field_name) != value:
                setattr(record, field_name, value)
                updated = True

        if updated:
            self._db.flush()
            logger.debug(f"Updated descriptive fields for {record.symbol}")

        return updated
