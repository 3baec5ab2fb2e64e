"""Tests for the Interactive Brokers trade report adapter."""

from datetime import date
from decimal import Decimal

import pytest

from tests.conftest import load_fixture
from trade_import.constants import OptionType, TradeAction
from trade_import.services.brokers.interactive_brokers import InteractiveBrokersAdapter
from trade_import.services.csv_parser import CSVParser


@pytest.fixture
def adapter() -> InteractiveBrokersAdapter:
    return InteractiveBrokersAdapter()


@pytest.fixture
def rows() -> list[dict]:
    return CSVParser().parse_text(load_fixture("interactive_brokers_trades.csv")).rows


class TestResolveAction:
    """Test Buy/Sell plus the open/close indicator."""

    @pytest.mark.parametrize(
        "side,open_close,expected",
        [
            ("BUY", "O", TradeAction.BUY_TO_OPEN),
            ("BUY", "C", TradeAction.BUY_TO_CLOSE),
            ("SELL", "O", TradeAction.SELL_TO_OPEN),
            ("SLD", "C;P", TradeAction.SELL_TO_CLOSE),
            ("BOT", None, TradeAction.BUY_TO_OPEN),
            ("SELL", None, TradeAction.SELL_TO_OPEN),
        ],
    )
    def test_mapping(self, adapter, side, open_close, expected):
        assert adapter.resolve_action(side, open_close) == expected

    def test_unknown_side(self, adapter: InteractiveBrokersAdapter):
        assert adapter.resolve_action("HOLD", None) is None


class TestAdaptRow:
    """Test converting trade rows."""

    def test_opening_sale(self, adapter: InteractiveBrokersAdapter, rows):
        result = adapter.adapt_row(rows[0])

        assert result.is_success
        trade = result.trade
        assert trade.symbol == "AAPL"
        assert trade.option_type == OptionType.CALL
        assert trade.strike_price == Decimal("150")
        assert trade.expiration_date == date(2025, 12, 19)
        assert trade.trade_action == TradeAction.SELL_TO_OPEN
        assert trade.quantity == 1
        assert trade.premium == Decimal("2.50")
        assert trade.commission == Decimal("0.65")
        assert trade.trade_date == date(2025, 12, 1)
        assert trade.multiplier == 100

    def test_hints_from_underlying_category_and_exchange(self, adapter, rows):
        hints = adapter.adapt_row(rows[0]).trade.symbol_hints

        assert hints.asset_type == "stock"
        assert hints.exchange == "CBOE"

    def test_closing_purchase(self, adapter: InteractiveBrokersAdapter, rows):
        assert adapter.adapt_row(rows[1]).trade.trade_action == TradeAction.BUY_TO_CLOSE

    def test_stock_row_is_skipped(self, adapter: InteractiveBrokersAdapter, rows):
        result = adapter.adapt_row(rows[2])

        assert result.is_skipped
        assert result.skip_reason == "Non-option asset category: STK"

    def test_description_style_symbol_without_indicator(self, adapter, rows):
        trade = adapter.adapt_row(rows[3]).trade

        assert trade.symbol == "QQQ"
        assert trade.option_type == OptionType.PUT
        assert trade.strike_price == Decimal("500")
        assert trade.expiration_date == date(2026, 1, 16)
        # No open/close indicator: a sale is taken as opening
        assert trade.trade_action == TradeAction.SELL_TO_OPEN
        assert trade.quantity == 3
        assert trade.commission == Decimal("1.95")

    def test_contract_from_separate_columns(self, adapter: InteractiveBrokersAdapter):
        result = adapter.adapt_row(
            {
                "Symbol": "IWM",
                "AssetCategory": "OPT",
                "Put/Call": "P",
                "Strike": "200",
                "Expiry": "2026-03-20",
                "DateTime": "2025-12-01, 10:30:00",
                "Buy/Sell": "BUY",
                "Quantity": "1",
                "TradePrice": "3.40",
            }
        )

        assert result.is_success
        assert result.trade.symbol == "IWM"
        assert result.trade.expiration_date == date(2026, 3, 20)
        assert result.trade.trade_date == date(2025, 12, 1)

    def test_unknown_side_fails(self, adapter: InteractiveBrokersAdapter, rows):
        result = adapter.adapt_row(dict(rows[0], **{"Buy/Sell": "HOLD"}))

        assert not result.is_success
        assert result.errors[0].message == "Unknown Buy/Sell value: HOLD"
