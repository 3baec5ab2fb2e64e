"""Record store used by the import pipeline.

The pipeline only needs a handful of operations from storage, expressed as
the async TradeStore protocol. SqlAlchemyTradeStore implements it on top of
the repositories; tests can substitute an in-memory store.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from trade_import.models import Symbol
from trade_import.services.brokers.base_broker_adapter import NormalizedTrade, SymbolHints
from trade_import.services.repositories import (
    PortfolioRepository,
    RepositoryError,
    SymbolRepository,
    TradeRepository,
    TradeWriteError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SymbolRecord:
    """Ticker master entity as seen by the import pipeline."""

    id: int
    symbol: str
    name: str
    asset_type: str
    exchange: str | None = None
    sector: str | None = None
    industry: str | None = None

    @classmethod
    def from_model(cls, model: Symbol) -> "SymbolRecord":
        return cls(
            id=model.id,
            symbol=model.symbol,
            name=model.name,
            asset_type=model.asset_type,
            exchange=model.exchange,
            sector=model.sector,
            industry=model.industry,
        )


class TradeStore(Protocol):
    """Storage operations the import pipeline depends on."""

    async def portfolio_exists(self, portfolio_id: int) -> bool: ...

    async def find_symbol(self, symbol: str) -> SymbolRecord | None: ...

    async def create_symbol(
        self, symbol: str, hints: SymbolHints | None = None
    ) -> SymbolRecord: ...

    async def update_symbol(self, symbol_id: int, hints: SymbolHints) -> SymbolRecord: ...

    async def create_trade(
        self,
        portfolio_id: int,
        symbol_id: int,
        trade: NormalizedTrade,
        *,
        import_source: str | None = None,
        import_batch_id: str | None = None,
    ) -> int: ...

    def transaction(self) -> AbstractAsyncContextManager[None]: ...


class SqlAlchemyTradeStore:
    """TradeStore over a SQLAlchemy session.

    Each write commits on its own unless it runs inside transaction(), in
    which case the whole block commits or rolls back together.
    """

    def __init__(self, db: Session) -> None:
        self._db = db
        self._portfolios = PortfolioRepository(db)
        self._symbols = SymbolRepository(db)
        self._trades = TradeRepository(db)
        self._transaction_depth = 0

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._transaction_depth:
            # Nested blocks join the outer transaction
            yield
            return

        self._transaction_depth += 1
        try:
            yield
            self._db.commit()
        except Exception:
            self._db.rollback()
            raise
        finally:
            self._transaction_depth -= 1

    def _commit(self) -> None:
        if self._transaction_depth:
            return
        try:
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            raise RepositoryError(f"Commit failed: {e}") from e

    async def portfolio_exists(self, portfolio_id: int) -> bool:
        return self._portfolios.exists(portfolio_id)

    async def find_symbol(self, symbol: str) -> SymbolRecord | None:
        model = self._symbols.find_by_symbol(symbol)
        return SymbolRecord.from_model(model) if model else None

    async def create_symbol(self, symbol: str, hints: SymbolHints | None = None) -> SymbolRecord:
        hints = hints or SymbolHints()
        model = self._symbols.create_symbol(
            symbol,
            name=hints.name,
            asset_type=hints.asset_type or "stock",
            exchange=hints.exchange,
            sector=hints.sector,
            industry=hints.industry,
        )
        self._commit()
        return SymbolRecord.from_model(model)

    async def update_symbol(self, symbol_id: int, hints: SymbolHints) -> SymbolRecord:
        model = self._symbols.get_by_id(symbol_id)
        if self._symbols.update_symbol(model, **hints.as_dict()):
            self._commit()
        return SymbolRecord.from_model(model)

    async def create_trade(
        self,
        portfolio_id: int,
        symbol_id: int,
        trade: NormalizedTrade,
        *,
        import_source: str | None = None,
        import_batch_id: str | None = None,
    ) -> int:
        try:
            model = self._trades.create_trade(
                portfolio_id=portfolio_id,
                symbol_id=symbol_id,
                trade_date=trade.trade_date,
                action=trade.trade_action.value,
                quantity=trade.quantity,
                price=trade.premium,
                option_type=trade.option_type.value,
                strike_price=trade.strike_price,
                expiration_date=trade.expiration_date,
                fees=trade.fees,
                commissions=trade.commission,
                multiplier=trade.multiplier,
                notes=trade.notes,
                import_source=import_source,
                import_batch_id=import_batch_id,
            )
        except SQLAlchemyError as e:
            self._db.rollback()
            raise TradeWriteError(portfolio_id, symbol_id, str(e)) from e
        self._commit()
        return model.id
