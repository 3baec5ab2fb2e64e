"""Shared test fixtures: in-memory database, API client and an async fake trade store."""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from trade_import.config import settings
from trade_import.database import Base, get_db
from trade_import.main import app
from trade_import.models import Portfolio
from trade_import.services.progress_tracker import ProgressTrackerRegistry
from trade_import.services.repositories import DuplicateError, RepositoryError
from trade_import.services.storage import SymbolRecord

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def load_fixture(name: str) -> str:
    return (FIXTURES_DIR / name).read_text(encoding="utf-8")


@pytest.fixture
def engine():
    """Create in-memory SQLite engine with foreign keys enforced."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    """Create database session for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def portfolio(db) -> Portfolio:
    portfolio = Portfolio(name="Options", broker="robinhood")
    db.add(portfolio)
    db.commit()
    return portfolio


@pytest.fixture
def client(session_factory):
    """Test client backed by the in-memory database, with fresh import sessions."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.trackers = ProgressTrackerRegistry(
        max_finished=settings.finished_sessions_retained
    )
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


class FakeTradeStore:
    """In-memory TradeStore that yields to the event loop on every call.

    The suspension points let concurrently issued calls interleave the way
    real I/O-bound storage calls would.
    """

    def __init__(self, portfolio_ids=(1,)):
        self.portfolio_ids = set(portfolio_ids)
        self.symbols: dict[str, SymbolRecord] = {}
        self.trades: dict[int, dict] = {}
        self.create_symbol_calls: list[str] = []
        self.find_symbol_calls: list[str] = []
        # Tickers whose trade inserts fail
        self.failing_trade_symbols: set[str] = set()
        # Tickers whose symbol lookups fail
        self.failing_lookup_symbols: set[str] = set()
        self.transactions = 0
        self._next_symbol_id = 1
        self._next_trade_id = 1

    async def portfolio_exists(self, portfolio_id: int) -> bool:
        await asyncio.sleep(0)
        return portfolio_id in self.portfolio_ids

    async def find_symbol(self, symbol: str) -> SymbolRecord | None:
        self.find_symbol_calls.append(symbol)
        await asyncio.sleep(0)
        if symbol in self.failing_lookup_symbols:
            raise RepositoryError(f"Lookup failed for {symbol}")
        return self.symbols.get(symbol)

    async def create_symbol(self, symbol, hints=None) -> SymbolRecord:
        self.create_symbol_calls.append(symbol)
        await asyncio.sleep(0)
        if symbol in self.symbols:
            raise DuplicateError("Symbol", "symbol", symbol)
        record = SymbolRecord(
            id=self._next_symbol_id,
            symbol=symbol,
            name=(hints.name if hints and hints.name else symbol),
            asset_type=(hints.asset_type if hints and hints.asset_type else "stock"),
            exchange=hints.exchange if hints else None,
            sector=hints.sector if hints else None,
            industry=hints.industry if hints else None,
        )
        self._next_symbol_id += 1
        self.symbols[symbol] = record
        return record

    async def update_symbol(self, symbol_id, hints) -> SymbolRecord:
        await asyncio.sleep(0)
        record = next(r for r in self.symbols.values() if r.id == symbol_id)
        changes = {k: v for k, v in hints.as_dict().items() if v}
        updated = SymbolRecord(**{**record.__dict__, **changes})
        self.symbols[record.symbol] = updated
        return updated

    async def create_trade(
        self, portfolio_id, symbol_id, trade, *, import_source=None, import_batch_id=None
    ) -> int:
        await asyncio.sleep(0)
        if trade.symbol in self.failing_trade_symbols:
            raise RepositoryError(f"Insert failed for {trade.symbol}")
        trade_id = self._next_trade_id
        self._next_trade_id += 1
        self.trades[trade_id] = {
            "portfolio_id": portfolio_id,
            "symbol_id": symbol_id,
            "trade": trade,
            "import_source": import_source,
            "import_batch_id": import_batch_id,
        }
        return trade_id

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        yield


@pytest.fixture
def fake_store() -> FakeTradeStore:
    return FakeTradeStore()
