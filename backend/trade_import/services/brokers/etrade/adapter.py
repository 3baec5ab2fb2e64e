"""E*TRADE transaction history CSV adapter."""

import logging
import re
from collections.abc import Sequence
from decimal import Decimal

from trade_import.constants import BrokerType, TradeAction
from trade_import.services.brokers.base_broker_adapter import (
    AdaptationResult,
    BaseBrokerAdapter,
    OptionContract,
    RawRow,
    build_date,
    decode_option_code,
    parse_date,
    parse_month,
    parse_option_type,
    parse_quantity,
    parse_trade_action,
)
from trade_import.services.brokers.detection import normalize_header_key
from trade_import.services.issues import ImportIssue

logger = logging.getLogger(__name__)

TRANSACTION_TYPES = {
    "optionbought": TradeAction.BUY_TO_OPEN,
    "optionsold": TradeAction.SELL_TO_OPEN,
    "bought": TradeAction.BUY_TO_OPEN,
    "sold": TradeAction.SELL_TO_OPEN,
    "buy": TradeAction.BUY_TO_OPEN,
    "sell": TradeAction.SELL_TO_OPEN,
}
# Plain buy/sell wording says nothing about the security; only option rows count
AMBIGUOUS_TYPES = {"bought", "sold", "buy", "sell"}
LIFECYCLE_TYPES = {
    "optionexpired",
    "optionassigned",
    "optionexercised",
    "expired",
    "assigned",
    "exercised",
}
OPTION_SECURITY_TYPES = {"optn", "option", "options", "opt"}
FEE_COLUMNS = ("Regulatory Fee", "Fees")

_DESCRIPTION = re.compile(
    r"^(?P<symbol>[A-Z][A-Z0-9.]*)\s+(?P<month>[A-Z]{3,9})\s+(?P<day>\d{1,2}),?\s+"
    r"'?(?P<year>\d{4}|\d{2})\s+\$?(?P<strike>[\d,]+(?:\.\d+)?)\s+(?P<right>CALL|PUT)\b",
    re.IGNORECASE,
)


class ETradeAdapter(BaseBrokerAdapter):
    """Adapter for E*TRADE transaction history exports.

    Contracts appear either as a compact code in Symbol ("AAPL231215C150")
    or spelled out ("AAPL DEC 15 2023 150 CALL", "AAPL Dec 15 '23 $150 Call").
    """

    required_columns = ("Symbol", "Quantity", "Price", "Transaction Date", "Transaction Type")
    optional_columns = ("Security Type", "Amount", "Commission", "Regulatory Fee", "Description")
    indicator_columns = (
        "Transaction Type",
        "Transaction Date",
        "Security Type",
        "Regulatory Fee",
        "Etrade",
    )
    min_indicators = 2

    @classmethod
    def broker_type(cls) -> BrokerType:
        return BrokerType.ETRADE

    @classmethod
    def broker_name(cls) -> str:
        return "E*TRADE"

    def structural_cues(self, headers: Sequence[str]) -> list[str]:
        for header in headers:
            key = normalize_header_key(header)
            if "transaction" in key and "type" in key:
                return ["transaction type column"]
        return []

    def parse_contract(self, text: str | None) -> OptionContract | None:
        if not text:
            return None
        contract = decode_option_code(text)
        if contract:
            return contract

        match = _DESCRIPTION.match(text.strip())
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
            strike_price=Decimal(match.group("strike").replace(",", "")),
        )

    def adapt_row(self, row: RawRow) -> AdaptationResult:
        type_text = self._get(row, "Transaction Type")
        if not type_text:
            return AdaptationResult.failed(
                [
                    ImportIssue(
                        message="Missing required field: transaction_type",
                        field="transaction_type",
                        code="missing_field",
                    )
                ]
            )
        type_key = normalize_header_key(type_text)
        if type_key in LIFECYCLE_TYPES:
            return AdaptationResult.skipped(f"Option lifecycle event ({type_text}) is not a trade")

        security_type = self._get(row, "Security Type")
        if security_type and normalize_header_key(security_type) not in OPTION_SECURITY_TYPES:
            return AdaptationResult.skipped(f"Non-option security type: {security_type}")

        action = parse_trade_action(type_text) or TRANSACTION_TYPES.get(type_key)
        if action is None:
            return AdaptationResult.skipped(f"Non-option transaction type: {type_text}")

        symbol = self._get(row, "Symbol")
        description = self._get(row, "Description")
        contract = self.parse_contract(symbol) or self.parse_contract(description)
        if contract is None and type_key in AMBIGUOUS_TYPES and not security_type:
            return AdaptationResult.skipped(f"Not an option transaction: {symbol}")

        errors: list[ImportIssue] = []
        if contract is None:
            errors.append(
                ImportIssue(
                    message=f"Could not determine option contract from symbol '{symbol}'",
                    field="symbol",
                    code="invalid_format",
                    value=symbol,
                )
            )

        trade_date = self._parse_field(
            errors, "trade_date", self._get(row, "Transaction Date"), parse_date, "transaction date"
        )
        quantity = self._parse_field(
            errors, "quantity", self._get(row, "Quantity"), parse_quantity, "quantity"
        )
        premium = self._parse_money(errors, "premium", self._get(row, "Price"), "price")
        commission = self._parse_money(
            errors, "commission", self._get(row, "Commission"), "commission"
        )
        fees = self._sum_money(errors, "fees", row, FEE_COLUMNS)

        return self._finalize(
            errors=errors,
            symbol=contract.symbol if contract else None,
            option_type=contract.option_type if contract else None,
            strike_price=contract.strike_price if contract else None,
            expiration_date=contract.expiration_date if contract else None,
            trade_action=action,
            quantity=quantity,
            premium=abs(premium) if premium is not None else None,
            trade_date=trade_date,
            commission=abs(commission) if commission is not None else None,
            fees=fees,
            notes=description,
        )
