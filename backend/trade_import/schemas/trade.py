"""Pydantic schemas for option trades."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from trade_import.constants import OptionType, TradeAction


class TradeSchema(BaseModel):
    """Structural shape of a normalized trade.

    Checks types and presence only; value rules (positive strike, sane
    premium, ...) belong to the validation service.
    """

    model_config = ConfigDict(from_attributes=True)

    symbol: str = Field(..., min_length=1)
    option_type: OptionType
    strike_price: Decimal
    expiration_date: date
    trade_action: TradeAction
    quantity: int
    premium: Decimal
    commission: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    trade_date: date
    notes: str | None = None


class Trade(BaseModel):
    """Schema for persisted trade responses."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    portfolio_id: int
    symbol_id: int
    trade_date: date
    action: str
    quantity: int
    price: Decimal
    fees: Decimal
    commissions: Decimal
    option_type: str
    strike_price: Decimal
    expiration_date: date
    multiplier: int
    notes: str | None = None
    import_source: str | None = None
    import_batch_id: str | None = None
