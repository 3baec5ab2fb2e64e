"""Pydantic schemas for Portfolio model."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PortfolioBase(BaseModel):
    """Base Portfolio schema with common fields."""

    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    broker: str | None = Field(None, max_length=50)
    default_currency: str = Field("USD", min_length=3, max_length=3)


class PortfolioCreate(PortfolioBase):
    """Schema for creating a new Portfolio."""

    pass


class Portfolio(PortfolioBase):
    """Schema for Portfolio responses."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    is_active: bool = True
    created_at: datetime
    updated_at: datetime


class PortfolioWithTradeCount(Portfolio):
    """Portfolio with the number of trades it holds."""

    trade_count: int = 0
