"""Portfolio data access layer."""

from sqlalchemy.orm import Session

from trade_import.models import Portfolio

from .exceptions import NotFoundError


class PortfolioRepository:
    """Portfolio data access."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def find_by_id(self, portfolio_id: int) -> Portfolio | None:
        """Find portfolio by primary key."""
        return self._db.query(Portfolio).filter(Portfolio.id == portfolio_id).first()

    def get_by_id(self, portfolio_id: int) -> Portfolio:
        """Get portfolio by primary key.

        Raises:
            NotFoundError: If the portfolio does not exist
        """
        portfolio = self.find_by_id(portfolio_id)
        if portfolio is None:
            raise NotFoundError("Portfolio", portfolio_id)
        return portfolio

    def exists(self, portfolio_id: int) -> bool:
        return self.find_by_id(portfolio_id) is not None

    def create_portfolio(
        self,
        name: str,
        *,
        description: str | None = None,
        broker: str | None = None,
        default_currency: str = "USD",
    ) -> Portfolio:
        portfolio = Portfolio(
            name=name, description=description, broker=broker, default_currency=default_currency
        )
        self._db.add(portfolio)
        self._db.flush()
        return portfolio
