"""Trade model - one executed option trade."""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from trade_import.database import Base


class Trade(Base):
    """Trade model representing a single option execution imported from a broker file."""

    __tablename__ = "trades"
    __table_args__ = (
        Index("idx_trades_portfolio", "portfolio_id"),
        Index("idx_trades_symbol", "symbol_id"),
        Index("idx_trades_date", "trade_date"),
        Index("idx_trades_import_batch", "import_batch_id"),  # For import lineage
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id", ondelete="CASCADE"))
    symbol_id: Mapped[int] = mapped_column(ForeignKey("symbols.id", ondelete="RESTRICT"))
    trade_date: Mapped[date] = mapped_column(Date)
    action: Mapped[str] = mapped_column(String(20))  # 'buy_to_open', 'sell_to_close', etc.
    instrument_type: Mapped[str] = mapped_column(String(20), default="option")
    quantity: Mapped[int] = mapped_column(Integer)
    price: Mapped[Decimal] = mapped_column(Numeric(15, 4))  # Premium per share
    fees: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"))
    commissions: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"))
    option_type: Mapped[str] = mapped_column(String(4))  # 'call' or 'put'
    strike_price: Mapped[Decimal] = mapped_column(Numeric(15, 4))
    expiration_date: Mapped[date] = mapped_column(Date)
    multiplier: Mapped[int] = mapped_column(Integer, default=100)
    notes: Mapped[str | None] = mapped_column(Text)
    import_source: Mapped[str | None] = mapped_column(String(50))
    import_batch_id: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())

    # Relationships
    portfolio: Mapped["Portfolio"] = relationship(back_populates="trades")  # noqa: F821
    symbol_record: Mapped["Symbol"] = relationship(back_populates="trades")  # noqa: F821

    def __repr__(self) -> str:
        return (
            f"<Trade(id={self.id}, action='{self.action}', option_type='{self.option_type}', "
            f"strike={self.strike_price}, expiration={self.expiration_date})>"
        )
