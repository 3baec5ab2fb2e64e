"""Interactive Brokers trade report CSV adapter.

IB reports carry the contract in dedicated columns (Put/Call, Strike, Expiry,
Multiplier) or as an OCC code in Symbol. The Buy/Sell column has no
open/close signal: without an Open/CloseIndicator column, BUY maps to
buy_to_open and SELL to sell_to_open. That default is an approximation and
closing trades are mislabelled when the indicator column is absent.
"""

import logging
import re
from collections.abc import Sequence
from decimal import Decimal

from trade_import.constants import AssetType, BrokerType, TradeAction
from trade_import.services.brokers.base_broker_adapter import (
    AdaptationResult,
    BaseBrokerAdapter,
    OptionContract,
    RawRow,
    SymbolHints,
    build_date,
    decode_option_code,
    parse_date,
    parse_month,
    parse_option_type,
    parse_quantity,
)
from trade_import.services.brokers.detection import find_column
from trade_import.services.issues import ImportIssue

logger = logging.getLogger(__name__)

BUY_SIDES = {"BUY", "BOT", "B"}
SELL_SIDES = {"SELL", "SLD", "S"}
OPTION_CATEGORIES = {"OPT", "FOP"}

# Asset category of the row (or its underlying) -> ticker master asset type
ASSET_CATEGORY_TYPES = {
    "STK": AssetType.STOCK,
    "OPT": AssetType.STOCK,
    "FOP": AssetType.FUTURES,
    "FUT": AssetType.FUTURES,
    "IND": AssetType.INDEX,
    "CASH": AssetType.FOREX,
    "CRYPTO": AssetType.CRYPTO,
}

CONTRACT_COLUMNS = ("Strike", "Expiry", "Put/Call", "Multiplier")

_IB_DESCRIPTION = re.compile(
    r"^(?P<symbol>[A-Z][A-Z0-9.]*)\s+(?P<day>\d{2})(?P<month>[A-Z]{3})(?P<year>\d{2})\s+"
    r"(?P<strike>\d+(?:\.\d+)?)\s+(?P<right>[CP])$",
    re.IGNORECASE,
)


class InteractiveBrokersAdapter(BaseBrokerAdapter):
    """Adapter for Interactive Brokers trade confirmation / activity exports."""

    required_columns = ("Symbol", "Quantity", "TradePrice", "DateTime", "Buy/Sell")
    optional_columns = (
        "Put/Call",
        "Strike",
        "Expiry",
        "Multiplier",
        "AssetCategory",
        "IBCommission",
        "Open/CloseIndicator",
        "UnderlyingSymbol",
        "Description",
    )
    indicator_columns = ("AssetCategory", "Multiplier", "Put/Call", "IBCommission", "DateTime")
    min_indicators = 2

    @classmethod
    def broker_type(cls) -> BrokerType:
        return BrokerType.INTERACTIVE_BROKERS

    @classmethod
    def broker_name(cls) -> str:
        return "Interactive Brokers"

    def structural_cues(self, headers: Sequence[str]) -> list[str]:
        present = [c for c in CONTRACT_COLUMNS if find_column(c, headers)]
        if len(present) >= 2:
            return ["separate option contract columns"]
        return []

    def resolve_action(self, side: str, open_close: str | None) -> TradeAction | None:
        """Map Buy/Sell plus an optional O/C indicator onto a canonical action."""
        closing = bool(open_close) and open_close.strip().upper().startswith("C")
        side = side.strip().upper()
        if side in BUY_SIDES:
            return TradeAction.BUY_TO_CLOSE if closing else TradeAction.BUY_TO_OPEN
        if side in SELL_SIDES:
            return TradeAction.SELL_TO_CLOSE if closing else TradeAction.SELL_TO_OPEN
        return None

    def parse_description(self, text: str | None) -> OptionContract | None:
        """Parse IB's "AAPL 15DEC23 150 C" contract description."""
        if not text:
            return None
        match = _IB_DESCRIPTION.match(text.strip())
        if not match:
            return None
        expiration = build_date(
            int(match.group("year")), parse_month(match.group("month")), int(match.group("day"))
        )
        if expiration is None:
            return None
        return OptionContract(
            symbol=match.group("symbol").upper(),
            expiration_date=expiration,
            option_type=parse_option_type(match.group("right")),
            strike_price=Decimal(match.group("strike")),
        )

    def _contract_from_columns(
        self, row: RawRow, ticker: str | None, errors: list[ImportIssue]
    ) -> OptionContract | None:
        option_type = self._parse_field(
            errors, "option_type", self._get(row, "Put/Call"), parse_option_type, "put/call"
        )
        strike = self._parse_money(errors, "strike_price", self._get(row, "Strike"), "strike")
        expiration = self._parse_field(
            errors, "expiration_date", self._get(row, "Expiry"), parse_date, "expiry"
        )
        if ticker is None or option_type is None or strike is None or expiration is None:
            return None
        return OptionContract(
            symbol=ticker.upper(),
            expiration_date=expiration,
            option_type=option_type,
            strike_price=strike,
        )

    def adapt_row(self, row: RawRow) -> AdaptationResult:
        category = (self._get(row, "AssetCategory", "Asset Class") or "").upper()
        if category and category not in OPTION_CATEGORIES:
            return AdaptationResult.skipped(f"Non-option asset category: {category}")

        errors: list[ImportIssue] = []
        side = self._get(row, "Buy/Sell")
        action = None
        if side:
            action = self.resolve_action(side, self._get(row, "Open/CloseIndicator", "Open/Close"))
            if action is None:
                errors.append(
                    ImportIssue(
                        message=f"Unknown Buy/Sell value: {side}",
                        field="trade_action",
                        code="invalid_format",
                        value=side,
                    )
                )

        symbol = self._get(row, "Symbol")
        underlying = self._get(row, "UnderlyingSymbol")
        contract = (
            decode_option_code(symbol)
            or self.parse_description(symbol)
            or self.parse_description(self._get(row, "Description"))
        )
        ticker = underlying or (symbol.split()[0] if symbol else None)
        if contract is None:
            contract = self._contract_from_columns(row, ticker, errors)

        trade_date = self._parse_field(
            errors,
            "trade_date",
            self._get(row, "DateTime", "Date/Time", "TradeDate"),
            parse_date,
            "date/time",
        )
        quantity = self._parse_field(
            errors, "quantity", self._get(row, "Quantity"), parse_quantity, "quantity"
        )
        premium = self._parse_money(
            errors, "premium", self._get(row, "TradePrice", "Price"), "trade price"
        )
        commission = self._parse_money(
            errors, "commission", self._get(row, "IBCommission", "Commission"), "commission"
        )
        fees = self._parse_money(errors, "fees", self._get(row, "Taxes"), "taxes")
        multiplier = self._parse_field(
            errors, "multiplier", self._get(row, "Multiplier"), parse_quantity, "multiplier"
        )

        hint_category = (self._get(row, "UnderlyingCategory") or category).upper()
        hints = SymbolHints(
            asset_type=ASSET_CATEGORY_TYPES.get(hint_category),
            exchange=self._get(row, "ListingExchange", "Exchange"),
        )

        return self._finalize(
            errors=errors,
            symbol=contract.symbol if contract else ticker,
            option_type=contract.option_type if contract else None,
            strike_price=contract.strike_price if contract else None,
            expiration_date=contract.expiration_date if contract else None,
            trade_action=action,
            quantity=quantity,
            premium=abs(premium) if premium is not None else None,
            trade_date=trade_date,
            # IB reports commissions as negative cash flows
            commission=abs(commission) if commission is not None else None,
            fees=abs(fees) if fees is not None else Decimal("0"),
            multiplier=multiplier,
            notes=self._get(row, "Description"),
            hints=hints,
        )
