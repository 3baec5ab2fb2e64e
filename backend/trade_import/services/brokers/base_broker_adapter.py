"""Base class for broker CSV row adapters.

This module defines the interface every broker-specific adapter implements,
the canonical trade record they produce, and the parsing helpers they share.
The adapter registry uses this interface to treat all brokers uniformly.
"""

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum

from trade_import.constants import CONTRACT_MULTIPLIER, BrokerType, OptionType, TradeAction
from trade_import.services.brokers.detection import (
    BrokerDetectionResult,
    find_column,
    normalize_header_key,
    score_headers,
)
from trade_import.services.issues import ImportIssue

logger = logging.getLogger(__name__)

RawRow = Mapping[str, str | None]

MONTHS = {
    "JAN": 1,
    "JANUARY": 1,
    "FEB": 2,
    "FEBRUARY": 2,
    "MAR": 3,
    "MARCH": 3,
    "APR": 4,
    "APRIL": 4,
    "MAY": 5,
    "JUN": 6,
    "JUNE": 6,
    "JUL": 7,
    "JULY": 7,
    "AUG": 8,
    "AUGUST": 8,
    "SEP": 9,
    "SEPT": 9,
    "SEPTEMBER": 9,
    "OCT": 10,
    "OCTOBER": 10,
    "NOV": 11,
    "NOVEMBER": 11,
    "DEC": 12,
    "DECEMBER": 12,
}

DATE_FORMATS = [
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%Y%m%d",
    "%Y%m%d;%H%M%S",
    "%Y-%m-%d, %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M:%S %p",
    "%d %b %Y",
    "%b %d %Y",
    "%b %d, %Y",
    "%d-%b-%Y",
    "%d-%b-%y",
]

# Spreadsheet serial dates count days from this epoch (Excel's 1900 leap-year bug included)
SPREADSHEET_EPOCH = date(1899, 12, 30)

_SERIAL_DATE = re.compile(r"^\d{1,5}(?:\.\d+)?$")
_OPTION_CODE = re.compile(r"^([A-Z]{1,6})\s*(\d{2})(\d{2})(\d{2})([CP])(\d+(?:\.\d+)?)$")
_CURRENCY_NOISE = re.compile(r"[$€£,\s]")

_ACTIONS = {
    "buytoopen": TradeAction.BUY_TO_OPEN,
    "bto": TradeAction.BUY_TO_OPEN,
    "buyopen": TradeAction.BUY_TO_OPEN,
    "boughttoopen": TradeAction.BUY_TO_OPEN,
    "selltoopen": TradeAction.SELL_TO_OPEN,
    "sto": TradeAction.SELL_TO_OPEN,
    "sellopen": TradeAction.SELL_TO_OPEN,
    "soldtoopen": TradeAction.SELL_TO_OPEN,
    "buytoclose": TradeAction.BUY_TO_CLOSE,
    "btc": TradeAction.BUY_TO_CLOSE,
    "buyclose": TradeAction.BUY_TO_CLOSE,
    "boughttoclose": TradeAction.BUY_TO_CLOSE,
    "selltoclose": TradeAction.SELL_TO_CLOSE,
    "stc": TradeAction.SELL_TO_CLOSE,
    "sellclose": TradeAction.SELL_TO_CLOSE,
    "soldtoclose": TradeAction.SELL_TO_CLOSE,
}


@dataclass
class SymbolHints:
    """Best-effort descriptive data for the underlying's ticker master record."""

    name: str | None = None
    asset_type: str | None = None
    exchange: str | None = None
    sector: str | None = None
    industry: str | None = None

    def merged_with(self, other: "SymbolHints | None") -> "SymbolHints":
        """Fill this hint set's empty fields from another (first non-empty value wins)."""
        if other is None:
            return SymbolHints(**self.as_dict())
        return SymbolHints(
            name=self.name or other.name,
            asset_type=self.asset_type or other.asset_type,
            exchange=self.exchange or other.exchange,
            sector=self.sector or other.sector,
            industry=self.industry or other.industry,
        )

    def as_dict(self) -> dict[str, str | None]:
        return {
            "name": self.name,
            "asset_type": self.asset_type,
            "exchange": self.exchange,
            "sector": self.sector,
            "industry": self.industry,
        }

    def is_empty(self) -> bool:
        return not any(self.as_dict().values())


@dataclass
class NormalizedTrade:
    """Canonical option trade produced by every adapter."""

    symbol: str
    option_type: OptionType
    strike_price: Decimal
    expiration_date: date
    trade_action: TradeAction
    quantity: int
    premium: Decimal  # Per share
    trade_date: date
    commission: Decimal = field(default_factory=lambda: Decimal("0"))
    fees: Decimal = field(default_factory=lambda: Decimal("0"))
    multiplier: int = CONTRACT_MULTIPLIER
    notes: str | None = None
    symbol_hints: SymbolHints | None = None
    record_index: int | None = None  # Data row position in the source file
    # Optional columns the source row left empty (filled with defaults)
    missing_fields: tuple[str, ...] = ()

    @property
    def gross_premium(self) -> Decimal:
        """Premium across all contracts (premium x quantity x multiplier)."""
        return self.premium * self.quantity * self.multiplier

    def as_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "option_type": self.option_type.value,
            "strike_price": self.strike_price,
            "expiration_date": self.expiration_date,
            "trade_action": self.trade_action.value,
            "quantity": self.quantity,
            "premium": self.premium,
            "commission": self.commission,
            "fees": self.fees,
            "trade_date": self.trade_date,
            "multiplier": self.multiplier,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class OptionContract:
    """Option identity decoded from a compact code or a description."""

    symbol: str
    expiration_date: date
    option_type: OptionType
    strike_price: Decimal


class AdaptationStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class AdaptationResult:
    """Outcome of adapting one raw row.

    Exactly one of three things happened: the row became a trade, the row was
    recognised as a non-trade and skipped, or the row was rejected with every
    field problem found.
    """

    status: AdaptationStatus
    trade: NormalizedTrade | None = None
    errors: list[ImportIssue] = field(default_factory=list)
    warnings: list[ImportIssue] = field(default_factory=list)
    skip_reason: str | None = None

    @classmethod
    def success(cls, trade: NormalizedTrade, warnings: list[ImportIssue] | None = None):
        return cls(AdaptationStatus.SUCCESS, trade=trade, warnings=warnings or [])

    @classmethod
    def skipped(cls, reason: str):
        return cls(AdaptationStatus.SKIPPED, skip_reason=reason)

    @classmethod
    def failed(cls, errors: list[ImportIssue], warnings: list[ImportIssue] | None = None):
        return cls(AdaptationStatus.ERROR, errors=errors, warnings=warnings or [])

    @property
    def is_success(self) -> bool:
        return self.status == AdaptationStatus.SUCCESS

    @property
    def is_skipped(self) -> bool:
        return self.status == AdaptationStatus.SKIPPED


def parse_number(value: str | None) -> Decimal | None:
    """Parse a broker money/number cell.

    Tolerates currency symbols, thousands separators and accounting-style
    parenthesis negatives: "($1,234.50)" -> Decimal("-1234.50").
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    negative = text.startswith("(") and text.endswith(")")
    text = _CURRENCY_NOISE.sub("", text.strip("()"))
    if not text:
        return None

    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return -abs(number) if negative else number


def parse_date(value: str | None) -> date | None:
    """Parse a date cell in any of the shapes brokers export.

    Handles ISO, US, compact YYYYMMDD, IB "YYYYMMDD;HHMMSS", datetime strings,
    month-name forms and spreadsheet serial numbers.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    if _SERIAL_DATE.match(text):
        serial = int(float(text))
        if serial <= 0:
            return None
        return SPREADSHEET_EPOCH + timedelta(days=serial)

    parsed = _parse_date_formats(text)
    if parsed:
        return parsed

    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass

    # "12/15/2023 as of 12/14/2023", "2023-12-15 10:30:00 EST"
    first_token = text.split()[0].rstrip(",")
    if first_token != text:
        return _parse_date_formats(first_token)
    return None


def _parse_date_formats(text: str) -> date | None:
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_quantity(value: str | None) -> int | None:
    """Contracts are whole and unsigned; brokers sign quantities by direction."""
    number = parse_number(value)
    if number is None:
        return None
    number = abs(number)
    if number != number.to_integral_value():
        return None
    return int(number)


def parse_option_type(value: str | None) -> OptionType | None:
    key = normalize_header_key(value)
    if key in ("c", "call", "calls"):
        return OptionType.CALL
    if key in ("p", "put", "puts"):
        return OptionType.PUT
    return None


def parse_trade_action(value: str | None) -> TradeAction | None:
    """Map the common open/close vocabulary ("Sell to Open", "BTC", "buy_to_close")."""
    return _ACTIONS.get(normalize_header_key(value))


def parse_month(token: str | None) -> int | None:
    """Month number from a name or abbreviation ("Dec", "DECEMBER", "Sept.")."""
    if not token:
        return None
    key = token.strip().rstrip(".").upper()
    if key in MONTHS:
        return MONTHS[key]
    if len(key) >= 3 and key.isalpha():
        return MONTHS.get(key[:3])
    return None


def expand_year(year: int) -> int:
    """Two-digit years are 2000+YY."""
    return 2000 + year if year < 100 else year


def build_date(year: int, month: int | None, day: int) -> date | None:
    if month is None:
        return None
    try:
        return date(expand_year(year), month, day)
    except ValueError:
        return None


def decode_option_code(code: str | None) -> OptionContract | None:
    """Decode a compact option code: ticker + YYMMDD + C/P + strike.

    The OCC form pads the strike to 8 digits in thousandths of a dollar
    ("AAPL231215C00150000" -> 150.000); shorter strikes are dollars
    ("AAPL231215C150").
    """
    if not code:
        return None
    text = code.strip().upper().lstrip(".-")
    match = _OPTION_CODE.match(text)
    if not match:
        return None

    ticker, yy, mm, dd, right, strike_text = match.groups()
    expiration = build_date(int(yy), int(mm), int(dd))
    if expiration is None:
        return None

    if len(strike_text) == 8 and strike_text.isdigit():
        strike = Decimal(int(strike_text)) / Decimal(1000)
    else:
        strike = Decimal(strike_text)

    return OptionContract(
        symbol=ticker,
        expiration_date=expiration,
        option_type=OptionType.CALL if right == "C" else OptionType.PUT,
        strike_price=strike,
    )


class BaseBrokerAdapter(ABC):
    """Abstract base class for all broker row adapters.

    Each broker (Robinhood, Schwab, ...) declares the columns its export
    carries and converts one raw row at a time into a NormalizedTrade.

    Example usage:
        adapter = RobinhoodAdapter()
        if adapter.can_handle(headers).confidence >= 0.7:
            result = adapter.adapt_row(row)
    """

    # Columns every export of this broker carries
    required_columns: tuple[str, ...] = ()
    # Columns that may be present
    optional_columns: tuple[str, ...] = ()
    # Columns distinctive enough to tell this broker apart
    indicator_columns: tuple[str, ...] = ()
    min_indicators: int = 1

    @classmethod
    @abstractmethod
    def broker_type(cls) -> BrokerType:
        """Return the broker type identifier."""
        pass

    @classmethod
    @abstractmethod
    def broker_name(cls) -> str:
        """Return the human-readable broker name (e.g., 'Charles Schwab')."""
        pass

    @abstractmethod
    def adapt_row(self, row: RawRow) -> AdaptationResult:
        """Convert one raw row into a canonical trade.

        Never raises for bad data; every problem found in the row is
        reported on the returned AdaptationResult.
        """
        pass

    def structural_cues(self, headers: Sequence[str]) -> list[str]:
        """Names of broker-specific structural features present in the headers."""
        return []

    def can_handle(self, headers: Sequence[str]) -> BrokerDetectionResult:
        """Score how well this adapter matches a header row."""
        score = score_headers(
            headers,
            self.required_columns,
            self.indicator_columns,
            min_indicators=self.min_indicators,
            cues=self.structural_cues(headers),
        )
        return BrokerDetectionResult(
            broker_type=self.broker_type(),
            broker_name=self.broker_name(),
            confidence=score.confidence,
            reason=score.reason,
            required_columns=tuple(self.required_columns),
            found_columns=score.found_columns,
        )

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _has_column(headers: Sequence[str], column: str) -> bool:
        return find_column(column, headers) is not None

    def _get(self, row: RawRow, *candidates: str) -> str | None:
        """First non-empty value among candidate columns.

        Exact normalized names are tried first. A candidate with no column of
        its own then falls back to the fuzzy match detection scores with
        ("Trade Date" serves "Date"), never borrowing another declared column.
        """
        by_key = {normalize_header_key(k): v for k, v in row.items() if k is not None}
        wanted = {normalize_header_key(c) for c in candidates}
        declared = {
            normalize_header_key(c) for c in (*self.required_columns, *self.optional_columns)
        }
        spare = [key for key in by_key if key not in declared or key in wanted]

        unmatched = []
        for candidate in candidates:
            key = normalize_header_key(candidate)
            if key not in by_key:
                unmatched.append(candidate)
                continue
            value = by_key[key]
            if value is not None and str(value).strip():
                return str(value).strip()

        for candidate in unmatched:
            header = find_column(candidate, spare)
            value = by_key.get(header) if header else None
            if value is not None and str(value).strip():
                return str(value).strip()
        return None

    @staticmethod
    def _parse_field(
        errors: list[ImportIssue],
        field_name: str,
        raw: str | None,
        parser: Callable[[str | None], object],
        label: str,
    ):
        """Parse a present value, recording an error when it does not parse.

        Missing values return None without an error; _finalize reports them.
        """
        if raw is None:
            return None
        value = parser(raw)
        if value is None:
            errors.append(
                ImportIssue(
                    message=f"Invalid {label}: {raw}",
                    field=field_name,
                    code="invalid_format",
                    value=raw,
                )
            )
        return value

    def _parse_money(
        self, errors: list[ImportIssue], field_name: str, raw: str | None, label: str
    ) -> Decimal | None:
        return self._parse_field(errors, field_name, raw, parse_number, label)

    def _sum_money(
        self, errors: list[ImportIssue], field_name: str, row: RawRow, columns: Sequence[str]
    ) -> Decimal:
        """Sum several optional fee columns, missing ones counting as zero."""
        total = Decimal("0")
        for column in columns:
            amount = self._parse_money(errors, field_name, self._get(row, column), column)
            if amount is not None:
                total += abs(amount)
        return total

    def _finalize(
        self,
        *,
        errors: list[ImportIssue],
        warnings: list[ImportIssue] | None = None,
        symbol: str | None,
        option_type: OptionType | None,
        strike_price: Decimal | None,
        expiration_date: date | None,
        trade_action: TradeAction | None,
        quantity: int | None,
        premium: Decimal | None,
        trade_date: date | None,
        commission: Decimal | None = None,
        fees: Decimal | None = None,
        multiplier: int | None = None,
        notes: str | None = None,
        hints: SymbolHints | None = None,
    ) -> AdaptationResult:
        """Assemble a trade, or fail with every missing and invalid field."""
        required = {
            "symbol": symbol,
            "option_type": option_type,
            "strike_price": strike_price,
            "expiration_date": expiration_date,
            "trade_action": trade_action,
            "quantity": quantity,
            "premium": premium,
            "trade_date": trade_date,
        }
        already_reported = {e.field for e in errors}
        for field_name, value in required.items():
            if value is None and field_name not in already_reported:
                errors.append(
                    ImportIssue(
                        message=f"Missing required field: {field_name}",
                        field=field_name,
                        code="missing_field",
                    )
                )

        if errors:
            return AdaptationResult.failed(errors, warnings)

        trade = NormalizedTrade(
            symbol=symbol.upper(),
            option_type=option_type,
            strike_price=strike_price,
            expiration_date=expiration_date,
            trade_action=trade_action,
            quantity=quantity,
            premium=premium,
            trade_date=trade_date,
            commission=commission if commission is not None else Decimal("0"),
            fees=fees if fees is not None else Decimal("0"),
            multiplier=multiplier or CONTRACT_MULTIPLIER,
            notes=notes,
            symbol_hints=hints if hints and not hints.is_empty() else None,
            missing_fields=tuple(
                name
                for name, value in (("commission", commission), ("fees", fees))
                if value is None
            ),
        )
        return AdaptationResult.success(trade, warnings)
