"""Generic CSV adapter for files already in the canonical trade layout.

Columns: symbol, option_type, strike_price, expiration_date, trade_action,
quantity, premium, commission, fees, trade_date, notes. Optional name,
asset_type, exchange, sector and industry columns become symbol hints.
"""

from trade_import.constants import BrokerType
from trade_import.services.brokers.base_broker_adapter import (
    AdaptationResult,
    BaseBrokerAdapter,
    RawRow,
    SymbolHints,
    decode_option_code,
    parse_date,
    parse_option_type,
    parse_quantity,
    parse_trade_action,
)
from trade_import.services.issues import ImportIssue


class GenericAdapter(BaseBrokerAdapter):
    """Adapter for hand-made or pre-normalized trade files."""

    required_columns = (
        "symbol",
        "option_type",
        "strike_price",
        "expiration_date",
        "trade_action",
        "quantity",
        "premium",
        "trade_date",
    )
    optional_columns = (
        "commission",
        "fees",
        "notes",
        "name",
        "asset_type",
        "exchange",
        "sector",
        "industry",
    )
    indicator_columns = (
        "option_type",
        "strike_price",
        "expiration_date",
        "trade_action",
        "premium",
    )
    min_indicators = 3

    @classmethod
    def broker_type(cls) -> BrokerType:
        return BrokerType.GENERIC

    @classmethod
    def broker_name(cls) -> str:
        return "Generic CSV"

    def adapt_row(self, row: RawRow) -> AdaptationResult:
        errors: list[ImportIssue] = []

        symbol = self._get(row, "symbol", "ticker", "underlying")
        option_type = self._parse_field(
            errors,
            "option_type",
            self._get(row, "option_type", "type"),
            parse_option_type,
            "option type",
        )
        strike = self._parse_money(
            errors, "strike_price", self._get(row, "strike_price", "strike"), "strike price"
        )
        expiration = self._parse_field(
            errors,
            "expiration_date",
            self._get(row, "expiration_date", "expiration", "expiry"),
            parse_date,
            "expiration date",
        )

        # A compact code in the symbol column fills whatever the other columns left out
        contract = decode_option_code(symbol)
        if contract:
            symbol = contract.symbol
            option_type = option_type or contract.option_type
            strike = strike if strike is not None else contract.strike_price
            expiration = expiration or contract.expiration_date
            contract_fields = ("option_type", "strike_price", "expiration_date")
            errors = [e for e in errors if e.field not in contract_fields]

        action = self._parse_field(
            errors,
            "trade_action",
            self._get(row, "trade_action", "action"),
            parse_trade_action,
            "trade action",
        )
        quantity = self._parse_field(
            errors, "quantity", self._get(row, "quantity", "contracts"), parse_quantity, "quantity"
        )
        premium = self._parse_money(
            errors, "premium", self._get(row, "premium", "price"), "premium"
        )
        commission = self._parse_money(
            errors, "commission", self._get(row, "commission"), "commission"
        )
        fees = self._parse_money(errors, "fees", self._get(row, "fees"), "fees")
        trade_date = self._parse_field(
            errors, "trade_date", self._get(row, "trade_date", "date"), parse_date, "trade date"
        )

        hints = SymbolHints(
            name=self._get(row, "name", "company_name"),
            asset_type=self._get(row, "asset_type"),
            exchange=self._get(row, "exchange"),
            sector=self._get(row, "sector"),
            industry=self._get(row, "industry"),
        )

        return self._finalize(
            errors=errors,
            symbol=symbol,
            option_type=option_type,
            strike_price=strike,
            expiration_date=expiration,
            trade_action=action,
            quantity=quantity,
            premium=premium,
            trade_date=trade_date,
            commission=commission,
            fees=fees,
            notes=self._get(row, "notes"),
            hints=hints,
        )
