"""Charles Schwab transaction history CSV adapter.

Schwab states open/close directly in the Action column ("Sell to Open") and
identifies the contract in Symbol, in one of several shapes:

    AAPL  231215C00150000           compact OCC code
    AAPL 12/15/2023 150.00 C        Schwab's own symbol form

with the Description as a fallback ("AAPL Dec 15 2023 $150.00 Call" or
"CALL APPLE INC $150 EXP 12/15/23").
"""

import logging
import re
from collections.abc import Sequence
from decimal import Decimal

from trade_import.constants import BrokerType
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
    parse_trade_action,
)
from trade_import.services.brokers.detection import normalize_header_key
from trade_import.services.issues import ImportIssue

logger = logging.getLogger(__name__)

LIFECYCLE_ACTIONS = {"expired", "assigned", "exchangeorexercise", "exercised"}

_SYMBOL_FORM = re.compile(
    r"^(?P<symbol>[A-Z][A-Z0-9.]*)\s+(?P<expiration>\d{1,2}/\d{1,2}/\d{4})\s+"
    r"(?P<strike>[\d,]+(?:\.\d+)?)\s+(?P<right>[CP])$",
    re.IGNORECASE,
)
_MONTH_NAME_DESCRIPTION = re.compile(
    r"^(?P<symbol>[A-Z][A-Z0-9.]*)\s+(?P<month>[A-Z]{3,9})\.?\s+(?P<day>\d{1,2}),?\s+"
    r"(?P<year>\d{4})\s+\$?(?P<strike>[\d,]+(?:\.\d+)?)\s+(?P<right>CALL|PUT)\b",
    re.IGNORECASE,
)
_SCHWAB_DESCRIPTION = re.compile(
    r"^(?P<right>CALL|PUT)\s+(?P<name>.+?)\s+\$(?P<strike>[\d,]+(?:\.\d+)?)\s+"
    r"EXP\s+(?P<expiration>\d{1,2}/\d{1,2}/\d{2,4})",
    re.IGNORECASE,
)


class SchwabAdapter(BaseBrokerAdapter):
    """Adapter for Charles Schwab transaction history exports."""

    required_columns = ("Date", "Action", "Symbol", "Quantity", "Price")
    optional_columns = ("Description", "Fees & Comm", "Amount")
    indicator_columns = ("Fees & Comm", "Schwab", "Security Description")
    min_indicators = 1

    @classmethod
    def broker_type(cls) -> BrokerType:
        return BrokerType.SCHWAB

    @classmethod
    def broker_name(cls) -> str:
        return "Charles Schwab"

    def structural_cues(self, headers: Sequence[str]) -> list[str]:
        keys = {normalize_header_key(h) for h in headers}
        if "symbol" in keys or "securitydescription" in keys:
            return ["symbol column"]
        return []

    def parse_contract(
        self, symbol: str | None, description: str | None
    ) -> tuple[OptionContract | None, SymbolHints | None]:
        """Find the option contract in Symbol, falling back to Description."""
        contract = decode_option_code(symbol)
        if contract:
            return contract, None

        if symbol:
            match = _SYMBOL_FORM.match(symbol.strip())
            if match:
                expiration = parse_date(match.group("expiration"))
                if expiration:
                    return (
                        OptionContract(
                            symbol=match.group("symbol").upper(),
                            expiration_date=expiration,
                            option_type=parse_option_type(match.group("right")),
                            strike_price=Decimal(match.group("strike").replace(",", "")),
                        ),
                        None,
                    )

        if not description:
            return None, None
        text = description.strip()

        match = _MONTH_NAME_DESCRIPTION.match(text)
        if match:
            expiration = build_date(
                int(match.group("year")),
                parse_month(match.group("month")),
                int(match.group("day")),
            )
            if expiration:
                return (
                    OptionContract(
                        symbol=match.group("symbol").upper(),
                        expiration_date=expiration,
                        option_type=parse_option_type(match.group("right")),
                        strike_price=Decimal(match.group("strike").replace(",", "")),
                    ),
                    None,
                )

        # "CALL APPLE INC $150 EXP 12/15/23" names the company, not the ticker
        match = _SCHWAB_DESCRIPTION.match(text)
        if match and symbol:
            expiration = parse_date(match.group("expiration"))
            if expiration:
                return (
                    OptionContract(
                        symbol=symbol.split()[0].upper(),
                        expiration_date=expiration,
                        option_type=parse_option_type(match.group("right")),
                        strike_price=Decimal(match.group("strike").replace(",", "")),
                    ),
                    SymbolHints(name=match.group("name").strip().title()),
                )

        return None, None

    def adapt_row(self, row: RawRow) -> AdaptationResult:
        action_text = self._get(row, "Action")
        if not action_text:
            return AdaptationResult.failed(
                [
                    ImportIssue(
                        message="Missing required field: action",
                        field="action",
                        code="missing_field",
                    )
                ]
            )
        if normalize_header_key(action_text) in LIFECYCLE_ACTIONS:
            return AdaptationResult.skipped(
                f"Option lifecycle event ({action_text}) is not a trade"
            )
        action = parse_trade_action(action_text)
        if action is None:
            return AdaptationResult.skipped(f"Non-option action: {action_text}")

        errors: list[ImportIssue] = []
        symbol = self._get(row, "Symbol")
        description = self._get(row, "Description")
        contract, hints = self.parse_contract(symbol, description)
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
            errors, "trade_date", self._get(row, "Date"), parse_date, "date"
        )
        quantity = self._parse_field(
            errors, "quantity", self._get(row, "Quantity"), parse_quantity, "quantity"
        )
        premium = self._parse_money(errors, "premium", self._get(row, "Price"), "price")
        commission = self._parse_money(
            errors, "commission", self._get(row, "Fees & Comm", "Commission"), "fees & comm"
        )

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
            fees=Decimal("0"),
            notes=description,
            hints=hints,
        )
