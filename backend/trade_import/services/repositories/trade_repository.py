"""Trade data access layer."""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from trade_import.models import Trade

logger = logging.getLogger(__name__)


class TradeRepository:
    """Trade data access."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def find_by_id(self, trade_id: int) -> Trade | None:
        return self._db.query(Trade).filter(Trade.id == trade_id).first()

    def find_by_portfolio(
        self, portfolio_id: int, *, skip: int = 0, limit: int = 100
    ) -> list[Trade]:
        """Page through a portfolio's trades, newest trade date first."""
        return (
            self._db.query(Trade)
            .filter(Trade.portfolio_id == portfolio_id)
            .order_by(Trade.trade_date.desc(), Trade.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def find_by_import_batch(self, import_batch_id: str) -> list[Trade]:
        """All trades written by one import session."""
        return (
            self._db.query(Trade)
            .filter(Trade.import_batch_id == import_batch_id)
            .order_by(Trade.id)
            .all()
        )

    def count_by_portfolio(self, portfolio_id: int) -> int:
        return (
            self._db.query(func.count(Trade.id))
            .filter(Trade.portfolio_id == portfolio_id)
            .scalar()
        )

    def create_trade(
        self,
        *,
        portfolio_id: int,
        symbol_id: int,
        trade_date: date,
        action: str,
        quantity: int,
        price: Decimal,
        option_type: str,
        strike_price: Decimal,
        expiration_date: date,
        fees: Decimal = Decimal("0"),
        commissions: Decimal = Decimal("0"),
        multiplier: int = 100,
        notes: str | None = None,
        import_source: str | None = None,
        import_batch_id: str | None = None,
    ) -> Trade:
        """Insert a new option trade."""
        trade = Trade(
            portfolio_id=portfolio_id,
            symbol_id=symbol_id,
            trade_date=trade_date,
            action=action,
            instrument_type="option",
            quantity=quantity,
            price=price,
            fees=fees,
            commissions=commissions,
            option_type=option_type,
            strike_price=strike_price,
            expiration_date=expiration_date,
            multiplier=multiplier,
            notes=notes,
            import_source=import_source,
            import_batch_id=import_batch_id,
        )
        self._db.add(trade)
        self._db.flush()
        logger.debug(f"Created trade {trade.id} for portfolio {portfolio_id}")
        return trade
