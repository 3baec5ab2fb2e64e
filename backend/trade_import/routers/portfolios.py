"""Portfolios API router."""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from trade_import.database import get_db
from trade_import.schemas.portfolio import PortfolioCreate, PortfolioWithTradeCount
from trade_import.schemas.trade import Trade as TradeSchema
from trade_import.services.repositories import (
    NotFoundError,
    PortfolioRepository,
    TradeRepository,
)

router = APIRouter(prefix="/api/portfolios", tags=["portfolios"])


def _portfolio_response(db: Session, portfolio) -> PortfolioWithTradeCount:
    response = PortfolioWithTradeCount.model_validate(portfolio)
    response.trade_count = TradeRepository(db).count_by_portfolio(portfolio.id)
    return response


@router.post("", response_model=PortfolioWithTradeCount, status_code=status.HTTP_201_CREATED)
async def create_portfolio(portfolio_data: PortfolioCreate, db: Session = Depends(get_db)):
    """Create a portfolio to import trades into."""
    portfolio = PortfolioRepository(db).create_portfolio(
        portfolio_data.name,
        description=portfolio_data.description,
        broker=portfolio_data.broker,
        default_currency=portfolio_data.default_currency,
    )
    db.commit()
    db.refresh(portfolio)
    return _portfolio_response(db, portfolio)


@router.get("/{portfolio_id}", response_model=PortfolioWithTradeCount)
async def get_portfolio(portfolio_id: int, db: Session = Depends(get_db)):
    try:
        portfolio = PortfolioRepository(db).get_by_id(portfolio_id)
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Portfolio {portfolio_id} not found",
        )
    return _portfolio_response(db, portfolio)


@router.get("/{portfolio_id}/trades", response_model=list[TradeSchema])
async def list_portfolio_trades(
    portfolio_id: int,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """Page through a portfolio's trades, newest first."""
    if not PortfolioRepository(db).exists(portfolio_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Portfolio {portfolio_id} not found",
        )
    return TradeRepository(db).find_by_portfolio(portfolio_id, skip=skip, limit=limit)
