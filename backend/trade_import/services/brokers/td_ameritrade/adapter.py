"""TD Ameritrade transaction history CSV adapter.

TD Ameritrade puts the whole option trade in its DESCRIPTION column:

    SOLD -1 AAPL 100 15 DEC 23 150 CALL @2.50

The side is BOUGHT/SOLD; opening vs closing is only known when the
description (or an instruction column) says so explicitly.
"""

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
    parse_number,
    parse_option_type,
    parse_quantity,
)
from trade_import.services.brokers.detection import normalize_header_key
from trade_import.services.issues import ImportIssue

logger = logging.getLogger(__name__)

FEE_COLUMNS = ("REG FEE", "SHORT-TERM RDM FEE", "FUND REDEMPTION FEE", "DEFERRED SALES CHARGE")

_DESCRIPTION = re.compile(
    r"^(?P<verb>BOUGHT|SOLD)\s+(?P<quantity>[+-]?[\d,]+)\s+(?P<symbol>[A-Z][A-Z0-9.]*)\s+"
    r"(?:\d+\s+)?(?:\([^)]*\)\s+)?"
    r"(?P<day>\d{1,2})\s+(?P<month>[A-Z]{3,9})\s+(?P<year>\d{4}|\d{2})\s+"
    r"(?P<strike>[\d,]+(?:\.\d+)?)\s+(?P<right>CALL|PUT)"
    r"(?:\s*@\s*(?P<price>[\d,]+(?:\.\d+)?))?",
    re.IGNORECASE,
)
_OPTION_WORD = re.compile(r"\b(CALL|PUT)\b", re.IGNORECASE)
_LIFECYCLE = re.compile(r"\b(EXPIRATION|ASSIGNMENT|EXERCISE|REMOVAL OF OPTION)\b", re.IGNORECASE)
_VERB = re.compile(r"^(BOUGHT|SOLD)\b", re.IGNORECASE)


class TDAmeritradeAdapter(BaseBrokerAdapter):
    """Adapter for TD Ameritrade transaction history exports."""

    required_columns = ("SYMBOL", "QUANTITY", "PRICE", "DATE", "DESCRIPTION")
    optional_columns = ("TRANSACTION ID", "COMMISSION", "AMOUNT", *FEE_COLUMNS, "NET AMOUNT")
    indicator_columns = (
        "NET AMOUNT",
        "REG FEE",
        "SHORT-TERM RDM FEE",
        "FUND REDEMPTION FEE",
        "DEFERRED SALES CHARGE",
        "TRANSACTION ID",
    )
    min_indicators = 2

    @classmethod
    def broker_type(cls) -> BrokerType:
        return BrokerType.TD_AMERITRADE

    @classmethod
    def broker_name(cls) -> str:
        return "TD Ameritrade"

    def structural_cues(self, headers: Sequence[str]) -> list[str]:
        if any(normalize_header_key(h) == "description" for h in headers):
            return ["free-text description column"]
        return []

    def parse_description(
        self, description: str
    ) -> tuple[str, int | None, OptionContract, Decimal | None] | None:
        """Parse a trade description.

        Returns:
            Tuple of (verb, quantity, contract, price) or None if it does not match
        """
        match = _DESCRIPTION.match(description.strip())
        if not match:
            return None

        expiration = build_date(
            int(match.group("year")), parse_month(match.group("month")), int(match.group("day"))
        )
        if expiration is None:
            return None

        contract = OptionContract(
            symbol=match.group("symbol").upper(),
            expiration_date=expiration,
            option_type=parse_option_type(match.group("right")),
            strike_price=Decimal(match.group("strike").replace(",", "")),
        )
        price = parse_number(match.group("price")) if match.group("price") else None
        return (
            match.group("verb").upper(),
            parse_quantity(match.group("quantity")),
            contract,
            price,
        )

    def _resolve_action(
        self, verb: str | None, description: str, row: RawRow
    ) -> TradeAction | None:
        """BOUGHT/SOLD plus explicit open/close wording; opening when nothing says otherwise."""
        if verb is None:
            return None
        instruction = self._get(row, "INSTRUCTION", "POSITION EFFECT") or ""
        effect_text = f"{description} {instruction}".upper()
        closing = "TO CLOSE" in effect_text or "CLOSING" in effect_text
        if verb == "BOUGHT":
            return TradeAction.BUY_TO_CLOSE if closing else TradeAction.BUY_TO_OPEN
        return TradeAction.SELL_TO_CLOSE if closing else TradeAction.SELL_TO_OPEN

    def adapt_row(self, row: RawRow) -> AdaptationResult:
        description = self._get(row, "DESCRIPTION")
        if not description:
            return AdaptationResult.failed(
                [
                    ImportIssue(
                        message="Missing required field: description",
                        field="description",
                        code="missing_field",
                    )
                ]
            )
        if _LIFECYCLE.search(description):
            return AdaptationResult.skipped(f"Option lifecycle event: {description}")
        symbol_code = decode_option_code(self._get(row, "SYMBOL"))
        if not _OPTION_WORD.search(description) and not symbol_code:
            return AdaptationResult.skipped(f"Not an option transaction: {description}")

        errors: list[ImportIssue] = []
        parsed = self.parse_description(description)
        if parsed:
            verb, description_quantity, contract, description_price = parsed
        else:
            verb_match = _VERB.match(description)
            verb = verb_match.group(1).upper() if verb_match else None
            description_quantity, description_price = None, None
            contract = symbol_code
            if contract is None:
                errors.append(
                    ImportIssue(
                        message=f"Could not parse option description: {description}",
                        field="description",
                        code="invalid_format",
                        value=description,
                    )
                )

        trade_date = self._parse_field(
            errors, "trade_date", self._get(row, "DATE"), parse_date, "date"
        )
        quantity = self._parse_field(
            errors, "quantity", self._get(row, "QUANTITY"), parse_quantity, "quantity"
        )
        if quantity is None:
            quantity = description_quantity
        premium = self._parse_money(errors, "premium", self._get(row, "PRICE"), "price")
        if premium is None:
            premium = description_price
        commission = self._parse_money(
            errors, "commission", self._get(row, "COMMISSION"), "commission"
        )
        fees = self._sum_money(errors, "fees", row, FEE_COLUMNS)

        return self._finalize(
            errors=errors,
            symbol=contract.symbol if contract else None,
            option_type=contract.option_type if contract else None,
            strike_price=contract.strike_price if contract else None,
            expiration_date=contract.expiration_date if contract else None,
            trade_action=self._resolve_action(verb, description, row),
            quantity=quantity,
            premium=abs(premium) if premium is not None else None,
            trade_date=trade_date,
            commission=abs(commission) if commission is not None else None,
            fees=fees,
            notes=description,
        )
