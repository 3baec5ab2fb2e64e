"""Symbol model - ticker master records referenced by trades."""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from trade_import.database import Base

if TYPE_CHECKING:
    from trade_import.models.trade import Trade


class Symbol(Base):
    """Underlying ticker (stock, ETF, index) that option trades are written on."""

    __tablename__ = "symbols"
    __table_args__ = (
        Index("idx_symbols_symbol", "symbol"),
        Index("idx_symbols_asset_type", "asset_type"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    symbol: Mapped[str] = mapped_column(String(10), unique=True)
    name: Mapped[str] = mapped_column(String(200))
    asset_type: Mapped[str] = mapped_column(String(20), default="stock")
    exchange: Mapped[str | None] = mapped_column(String(50))
    sector: Mapped[str | None] = mapped_column(String(100))
    industry: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())

    # Relationships
    trades: Mapped[list["Trade"]] = relationship(back_populates="symbol_record")

    def __repr__(self) -> str:
        return f"<Symbol(id={self.id}, symbol='{self.symbol}', name='{self.name}')>"
