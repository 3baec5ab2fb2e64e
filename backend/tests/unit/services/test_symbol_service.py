"""Tests for ticker master resolution."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from trade_import.constants import OptionType, TradeAction
from trade_import.schemas.imports import SymbolNormalizationOptions
from trade_import.services.brokers import NormalizedTrade, SymbolHints
from trade_import.services.symbol_service import (
    SYMBOL_CHUNK_SIZE,
    SymbolLookupResult,
    SymbolNormalizationService,
)


def make_service(store, **options) -> SymbolNormalizationService:
    return SymbolNormalizationService(store, SymbolNormalizationOptions(**options))


def seed(store, *symbols: str) -> None:
    for symbol in symbols:
        asyncio.run(store.create_symbol(symbol))
    store.create_symbol_calls.clear()


def make_trade(symbol: str, hints: SymbolHints | None = None) -> NormalizedTrade:
    return NormalizedTrade(
        symbol=symbol,
        option_type=OptionType.PUT,
        strike_price=Decimal("100"),
        expiration_date=date(2025, 12, 19),
        trade_action=TradeAction.SELL_TO_OPEN,
        quantity=1,
        premium=Decimal("1.00"),
        trade_date=date(2025, 12, 1),
        symbol_hints=hints,
    )


class TestFormatSymbol:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("aapl", "AAPL"),
            (" brk.b ", "BRKB"),
            ("SPY-W", "SPYW"),
            ("ABCDEFGHIJKLMN", "ABCDEFGHIJ"),
            (None, ""),
            ("$$$", ""),
        ],
    )
    def test_format(self, raw, expected):
        assert SymbolNormalizationService.format_symbol(raw) == expected

    def test_validate_symbol_format(self):
        assert SymbolNormalizationService.validate_symbol_format("AAPL") == []
        assert SymbolNormalizationService.validate_symbol_format("") == ["Symbol cannot be empty"]
        assert SymbolNormalizationService.validate_symbol_format("aapl") == [
            "Symbol must contain only uppercase letters and numbers"
        ]


class TestNormalizeSymbol:
    """Test resolving one ticker."""

    def test_existing_symbol(self, fake_store):
        seed(fake_store, "AAPL")
        service = make_service(fake_store)

        result = asyncio.run(service.normalize_symbol("aapl"))

        assert result.success
        assert not result.created
        assert result.normalized_symbol == "AAPL"
        assert result.original_symbol == "aapl"
        assert fake_store.create_symbol_calls == []

    def test_creates_missing_symbol_with_defaults(self, fake_store):
        service = make_service(fake_store)

        result = asyncio.run(service.normalize_symbol("TSLA"))

        assert result.success
        assert result.created
        assert result.warnings == ["Created new symbol entry"]
        assert result.symbol.name == "TSLA"
        assert result.symbol.asset_type == "stock"
        assert fake_store.transactions == 1

    def test_creation_uses_hints(self, fake_store):
        service = make_service(fake_store)

        result = asyncio.run(
            service.normalize_symbol("SPY", SymbolHints(name="SPDR S&P 500", asset_type="etf"))
        )

        assert result.symbol.name == "SPDR S&P 500"
        assert result.symbol.asset_type == "etf"

    def test_idempotent(self, fake_store):
        service = make_service(fake_store)

        async def resolve_twice():
            first = await service.normalize_symbol("NVDA")
            second = await service.normalize_symbol("NVDA")
            return first, second

        first, second = asyncio.run(resolve_twice())

        assert first.symbol.id == second.symbol.id
        assert first.created and not second.created
        assert fake_store.create_symbol_calls == ["NVDA"]

    def test_empty_after_normalization(self, fake_store):
        result = asyncio.run(make_service(fake_store).normalize_symbol("$$$"))

        assert not result.success
        assert result.errors == ["Symbol is empty or invalid after normalization"]

    def test_auto_create_disabled(self, fake_store):
        service = make_service(fake_store, auto_create=False)

        result = asyncio.run(service.normalize_symbol("AMD"))

        assert not result.success
        assert result.errors == ["Symbol not found and auto-creation is disabled"]
        assert fake_store.create_symbol_calls == []

    def test_not_found_is_cached(self, fake_store):
        service = make_service(fake_store, auto_create=False)

        async def resolve_twice():
            await service.normalize_symbol("AMD")
            await service.normalize_symbol("AMD")

        asyncio.run(resolve_twice())

        assert fake_store.find_symbol_calls == ["AMD"]

    def test_lookup_result_flags_creation(self):
        missing = SymbolLookupResult.of("AMD", None)

        assert not missing.found
        assert missing.needs_creation

    def test_lookup_failure_becomes_result(self, fake_store):
        fake_store.failing_lookup_symbols.add("AAPL")

        result = asyncio.run(make_service(fake_store).normalize_symbol("AAPL"))

        assert not result.success
        assert result.errors == ["Symbol normalization failed: Lookup failed for AAPL"]

    def test_update_existing_with_new_hints(self, fake_store):
        seed(fake_store, "AAPL")
        service = make_service(fake_store, update_existing=True)

        result = asyncio.run(
            service.normalize_symbol("AAPL", SymbolHints(name="Apple Inc.", sector="Technology"))
        )

        assert result.success
        assert result.updated
        assert result.symbol.name == "Apple Inc."
        assert fake_store.symbols["AAPL"].sector == "Technology"

    def test_existing_symbol_left_alone_by_default(self, fake_store):
        seed(fake_store, "AAPL")

        result = asyncio.run(
            make_service(fake_store).normalize_symbol("AAPL", SymbolHints(name="Apple Inc."))
        )

        assert not result.updated
        assert fake_store.symbols["AAPL"].name == "AAPL"


class TestConcurrentCreation:
    """Test that a ticker is never created twice at once."""

    def test_second_concurrent_creation_fails_fast(self, fake_store):
        service = make_service(fake_store)

        async def resolve_concurrently():
            return await asyncio.gather(
                service.normalize_symbol("AAPL"), service.normalize_symbol("AAPL")
            )

        results = asyncio.run(resolve_concurrently())

        assert fake_store.create_symbol_calls == ["AAPL"]
        assert sum(r.success for r in results) == 1
        failed = next(r for r in results if not r.success)
        assert failed.errors == ["Symbol AAPL is already being created"]
        assert service.cache_stats()["in_flight"] == 0

    def test_created_symbol_is_served_from_cache_afterwards(self, fake_store):
        service = make_service(fake_store)

        async def resolve():
            await asyncio.gather(service.normalize_symbol("AAPL"), service.normalize_symbol("AAPL"))
            return await service.normalize_symbol("AAPL")

        result = asyncio.run(resolve())

        assert result.success
        assert not result.created
        assert len(fake_store.symbols) == 1


class TestCache:
    """Test the bounded lookup cache."""

    def test_evicts_oldest_entry(self, fake_store):
        seed(fake_store, "A", "B", "C")
        service = make_service(fake_store, max_cache_size=2)

        async def resolve(*symbols):
            for symbol in symbols:
                await service.normalize_symbol(symbol)

        asyncio.run(resolve("A", "B", "C", "A"))

        assert fake_store.find_symbol_calls == ["A", "B", "C", "A"]
        assert service.cache_stats()["size"] == 2

    def test_cache_hit_skips_store(self, fake_store):
        seed(fake_store, "A", "B")
        service = make_service(fake_store, max_cache_size=2)

        async def resolve(*symbols):
            for symbol in symbols:
                await service.normalize_symbol(symbol)

        asyncio.run(resolve("A", "B", "A", "B"))

        assert fake_store.find_symbol_calls == ["A", "B"]

    def test_cache_can_be_disabled(self, fake_store):
        seed(fake_store, "A")
        service = make_service(fake_store, cache_results=False)

        async def resolve_twice():
            await service.normalize_symbol("A")
            await service.normalize_symbol("A")

        asyncio.run(resolve_twice())

        assert fake_store.find_symbol_calls == ["A", "A"]
        assert service.cache_stats()["size"] == 0

    def test_clear_cache(self, fake_store):
        service = make_service(fake_store)
        asyncio.run(service.normalize_symbol("A"))

        service.clear_cache()

        assert service.cache_stats()["size"] == 0


class TestNormalizeBatch:
    """Test resolving many tickers."""

    def test_each_distinct_ticker_resolved_once(self, fake_store):
        seed(fake_store, "AAPL")
        trades = [
            make_trade("AAPL"),
            make_trade("TSLA"),
            make_trade("AAPL"),
            make_trade("TSLA", SymbolHints(name="Tesla, Inc.")),
        ]

        batch = asyncio.run(make_service(fake_store).normalize_batch_from_trades(trades))

        assert batch.total_symbols == 2
        assert batch.existing_symbols == 1
        assert batch.created_symbols == 1
        assert batch.failures == 0
        assert fake_store.create_symbol_calls == ["TSLA"]
        assert fake_store.symbols["TSLA"].name == "Tesla, Inc."
        assert batch.symbol_id_for("AAPL") == fake_store.symbols["AAPL"].id

    def test_spellings_of_one_ticker_resolve_together(self, fake_store):
        trades = [
            make_trade("BRK.B"),
            make_trade("BRKB", SymbolHints(name="Berkshire Hathaway Inc.")),
        ]

        batch = asyncio.run(make_service(fake_store).normalize_batch_from_trades(trades))

        assert batch.total_symbols == 1
        assert batch.created_symbols == 1
        assert batch.failures == 0
        assert fake_store.create_symbol_calls == ["BRKB"]
        assert fake_store.symbols["BRKB"].name == "Berkshire Hathaway Inc."
        assert batch.symbol_id_for("BRK.B") == batch.symbol_id_for("BRKB") is not None

    def test_failures_are_listed(self, fake_store):
        fake_store.failing_lookup_symbols.add("BAD")

        batch = asyncio.run(
            make_service(fake_store).normalize_batch({"GOOD": None, "BAD": None})
        )

        assert batch.failures == 1
        assert batch.errors[0].symbol == "BAD"
        assert batch.symbol_id_for("BAD") is None
        assert batch.symbol_id_for("GOOD") is not None

    def test_stops_between_chunks(self, fake_store):
        symbols = {f"S{i}": None for i in range(SYMBOL_CHUNK_SIZE + 10)}
        calls = []

        def should_continue():
            calls.append(True)
            return len(calls) == 1

        batch = asyncio.run(make_service(fake_store).normalize_batch(symbols, should_continue))

        assert batch.cancelled
        assert len(batch.results) == SYMBOL_CHUNK_SIZE
        assert len(fake_store.create_symbol_calls) == SYMBOL_CHUNK_SIZE
