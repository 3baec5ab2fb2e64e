"""Robinhood account activity CSV adapter.

Robinhood exports one row per account event. Option trades carry a
transaction code (STO, BTO, STC, BTC) and describe the contract in free text:

    Activity Date,Process Date,Settle Date,Instrument,Description,Trans Code,Quantity,Price,Amount
    12/01/2025,12/01/2025,12/02/2025,AAPL,AAPL 12/19/2025 Call $150.00,STO,1,$2.50,$250.00
"""

import logging
import re
from collections.abc import Sequence
from decimal import Decimal

from trade_import.constants import CONTRACT_MULTIPLIER, BrokerType, TradeAction
from trade_import.services.brokers.base_broker_adapter import (
    AdaptationResult,
    BaseBrokerAdapter,
    OptionContract,
    RawRow,
    parse_date,
    parse_option_type,
    parse_quantity,
)
from trade_import.services.issues import ImportIssue

logger = logging.getLogger(__name__)

TRANS_CODES = {
    "STO": TradeAction.SELL_TO_OPEN,
    "BTO": TradeAction.BUY_TO_OPEN,
    "STC": TradeAction.SELL_TO_CLOSE,
    "BTC": TradeAction.BUY_TO_CLOSE,
}

# Expiration, assignment and exercise are position events, not trades
LIFECYCLE_CODES = {"OEXP", "OASGN", "OEXCS"}

_DESCRIPTION = re.compile(
    r"^(?P<symbol>[A-Z][A-Z0-9.]*)\s+(?P<expiration>\d{1,2}/\d{1,2}/\d{4})\s+"
    r"(?P<right>call|put)\s+\$?(?P<strike>[\d,]+(?:\.\d+)?)",
    re.IGNORECASE,
)


class RobinhoodAdapter(BaseBrokerAdapter):
    """Adapter for Robinhood account activity exports."""

    required_columns = (
        "Activity Date",
        "Instrument",
        "Description",
        "Trans Code",
        "Quantity",
        "Price",
    )
    optional_columns = ("Process Date", "Settle Date", "Amount")
    indicator_columns = ("Activity Date", "Process Date", "Settle Date", "Trans Code")
    min_indicators = 2

    @classmethod
    def broker_type(cls) -> BrokerType:
        return BrokerType.ROBINHOOD

    @classmethod
    def broker_name(cls) -> str:
        return "Robinhood"

    def structural_cues(self, headers: Sequence[str]) -> list[str]:
        if self._has_column(headers, "Trans Code"):
            return ["transaction code column"]
        return []

    def parse_description(self, description: str | None) -> OptionContract | None:
        """Parse "AAPL 12/15/2023 Call $150.00" into an option contract."""
        if not description:
            return None
        match = _DESCRIPTION.match(description.strip())
        if not match:
            return None

        expiration = parse_date(match.group("expiration"))
        option_type = parse_option_type(match.group("right"))
        if expiration is None or option_type is None:
            return None

        return OptionContract(
            symbol=match.group("symbol").upper(),
            expiration_date=expiration,
            option_type=option_type,
            strike_price=Decimal(match.group("strike").replace(",", "")),
        )

    def adapt_row(self, row: RawRow) -> AdaptationResult:
        code = (self._get(row, "Trans Code") or "").upper()
        if not code:
            return AdaptationResult.failed(
                [
                    ImportIssue(
                        message="Missing required field: trans_code",
                        field="trans_code",
                        code="missing_field",
                    )
                ]
            )
        if code in LIFECYCLE_CODES:
            return AdaptationResult.skipped(f"Option lifecycle event ({code}) is not a trade")
        action = TRANS_CODES.get(code)
        if action is None:
            return AdaptationResult.skipped(f"Non-option transaction code: {code}")

        errors: list[ImportIssue] = []
        description = self._get(row, "Description")
        contract = self.parse_description(description)
        if description and contract is None:
            errors.append(
                ImportIssue(
                    message=f"Could not parse option description: {description}",
                    field="description",
                    code="invalid_format",
                    value=description,
                )
            )

        trade_date = self._parse_field(
            errors, "trade_date", self._get(row, "Activity Date"), parse_date, "activity date"
        )
        quantity = self._parse_field(
            errors, "quantity", self._get(row, "Quantity"), parse_quantity, "quantity"
        )
        premium = self._parse_money(errors, "premium", self._get(row, "Price"), "price")
        amount = self._parse_money(errors, "amount", self._get(row, "Amount"), "amount")

        # Amount is net of regulatory fees; the gap to gross premium is the fee
        fees = Decimal("0")
        if amount is not None and premium is not None and quantity is not None:
            gross = abs(premium) * quantity * CONTRACT_MULTIPLIER
            fees = abs(abs(amount) - gross).quantize(Decimal("0.01"))

        symbol = self._get(row, "Instrument") or (contract.symbol if contract else None)

        return self._finalize(
            errors=errors,
            symbol=symbol,
            option_type=contract.option_type if contract else None,
            strike_price=contract.strike_price if contract else None,
            expiration_date=contract.expiration_date if contract else None,
            trade_action=action,
            quantity=quantity,
            premium=abs(premium) if premium is not None else None,
            trade_date=trade_date,
            commission=Decimal("0"),
            fees=fees,
            notes=description,
        )
