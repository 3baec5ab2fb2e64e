"""Record validation for normalized trades.

Every record gets a structural re-check against TradeSchema followed by
business rules. Errors block persistence; warnings are advisory unless
strict mode promotes them.
"""

import logging
import re
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from pydantic import ValidationError

from trade_import.schemas.imports import ValidationOptions
from trade_import.schemas.trade import TradeSchema
from trade_import.services.brokers.base_broker_adapter import NormalizedTrade
from trade_import.services.issues import ImportIssue

logger = logging.getLogger(__name__)

SYMBOL_PATTERN = re.compile(r"^[A-Z0-9]{1,10}$")

HIGH_PREMIUM = Decimal("100")
VERY_HIGH_PREMIUM = Decimal("1000")
LOW_STRIKE = Decimal("0.01")
LONG_SYMBOL_LENGTH = 5
HIGH_STRIKE = Decimal("10000")
HIGH_QUANTITY = 10_000
MAX_COST_RATIO = Decimal("0.1")
TOP_MESSAGES = 10


@dataclass(frozen=True)
class MessageCount:
    message: str
    count: int


@dataclass
class TradeValidationResult:
    trade: NormalizedTrade
    errors: list[ImportIssue] = field(default_factory=list)
    warnings: list[ImportIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class BatchValidationResult:
    total_records: int
    valid_records: int
    invalid_records: int
    results: list[TradeValidationResult] = field(default_factory=list)
    common_errors: list[MessageCount] = field(default_factory=list)
    common_warnings: list[MessageCount] = field(default_factory=list)

    @property
    def valid_trades(self) -> list[NormalizedTrade]:
        return [r.trade for r in self.results if r.is_valid]


def top_messages(issues: Sequence[ImportIssue], limit: int = TOP_MESSAGES) -> list[MessageCount]:
    """Most frequent "field: message" keys, most common first."""
    counts = Counter(f"{issue.field}: {issue.message}" for issue in issues)
    return [MessageCount(message=key, count=count) for key, count in counts.most_common(limit)]


class ImportValidationService:
    """Validates normalized trades before they are persisted.

    Example usage:
        validator = ImportValidationService(config.validation)
        batch = validator.validate_batch(trades)
        for trade in batch.valid_trades:
            ...
    """

    def __init__(
        self,
        options: ValidationOptions | None = None,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.options = options or ValidationOptions()
        self._today = today

    def validate_trade(self, trade: NormalizedTrade) -> TradeValidationResult:
        errors: list[ImportIssue] = []
        warnings: list[ImportIssue] = []

        try:
            schema_errors = self._check_schema(trade)
            if schema_errors:
                # Business rules assume well-typed values
                errors.extend(schema_errors)
            else:
                self._check_business_rules(trade, errors, warnings)
                self._check_symbol(trade, errors, warnings)
                self._check_dates(trade, errors, warnings)
                self._check_numeric_ranges(trade, warnings)
                self._check_partial_data(trade, errors)
        except Exception as e:
            logger.exception("Unexpected error validating trade for %s", trade.symbol)
            errors.append(
                ImportIssue(
                    message=f"Validation failed: {e}", field="general", code="validation_error"
                )
            )

        if self.options.strict_mode:
            errors.extend(w.promoted() for w in warnings)

        index = trade.record_index
        return TradeValidationResult(
            trade=trade,
            errors=[e.at(index) for e in errors],
            warnings=[w.at(index) for w in warnings],
        )

    def validate_batch(self, trades: Sequence[NormalizedTrade]) -> BatchValidationResult:
        results = [self.validate_trade(trade) for trade in trades]
        valid = sum(1 for r in results if r.is_valid)

        all_errors = [e for r in results for e in r.errors]
        all_warnings = [w for r in results for w in r.warnings]

        logger.info(
            "Validated %d records: %d valid, %d invalid", len(results), valid, len(results) - valid
        )
        return BatchValidationResult(
            total_records=len(results),
            valid_records=valid,
            invalid_records=len(results) - valid,
            results=results,
            common_errors=top_messages(all_errors),
            common_warnings=top_messages(all_warnings),
        )

    def _check_schema(self, trade: NormalizedTrade) -> list[ImportIssue]:
        try:
            TradeSchema.model_validate(
                {
                    "symbol": trade.symbol,
                    "option_type": trade.option_type,
                    "strike_price": trade.strike_price,
                    "expiration_date": trade.expiration_date,
                    "trade_action": trade.trade_action,
                    "quantity": trade.quantity,
                    "premium": trade.premium,
                    "commission": trade.commission,
                    "fees": trade.fees,
                    "trade_date": trade.trade_date,
                    "notes": trade.notes,
                }
            )
        except ValidationError as e:
            return [
                ImportIssue(
                    message=err["msg"],
                    field=".".join(str(part) for part in err["loc"]),
                    code=err["type"],
                    value=None if err.get("input") is None else str(err["input"]),
                )
                for err in e.errors()
            ]
        return []

    def _check_business_rules(
        self, trade: NormalizedTrade, errors: list[ImportIssue], warnings: list[ImportIssue]
    ) -> None:
        if trade.expiration_date < trade.trade_date:
            warnings.append(
                ImportIssue.warning(
                    "Option expiration date is before trade date",
                    field="expiration_date",
                    code="expiration_before_trade",
                    value=trade.expiration_date.isoformat(),
                )
            )

        if trade.strike_price <= 0:
            errors.append(
                ImportIssue(
                    message="Strike price must be positive",
                    field="strike_price",
                    code="invalid_strike_price",
                    value=str(trade.strike_price),
                )
            )

        if trade.premium < 0:
            errors.append(
                ImportIssue(
                    message="Premium cannot be negative",
                    field="premium",
                    code="invalid_premium",
                    value=str(trade.premium),
                )
            )

        if trade.quantity <= 0:
            errors.append(
                ImportIssue(
                    message="Quantity must be positive",
                    field="quantity",
                    code="invalid_quantity",
                    value=str(trade.quantity),
                )
            )

        if trade.commission < 0:
            warnings.append(
                ImportIssue.warning(
                    "Commission should not be negative",
                    field="commission",
                    code="negative_commission",
                    value=trade.commission,
                )
            )
        if trade.fees < 0:
            warnings.append(
                ImportIssue.warning(
                    "Fees should not be negative",
                    field="fees",
                    code="negative_fees",
                    value=trade.fees,
                )
            )

        total_costs = trade.commission + trade.fees
        gross = trade.gross_premium
        if total_costs > 0 and gross > 0 and total_costs > gross * MAX_COST_RATIO:
            warnings.append(
                ImportIssue.warning(
                    "Commission and fees are high relative to premium (>10%)",
                    field="commission",
                    code="high_costs",
                    value=total_costs,
                )
            )

    def _check_symbol(
        self, trade: NormalizedTrade, errors: list[ImportIssue], warnings: list[ImportIssue]
    ) -> None:
        if not trade.symbol:
            errors.append(
                ImportIssue(message="Symbol cannot be empty", field="symbol", code="empty_symbol")
            )
            return
        if len(trade.symbol) > LONG_SYMBOL_LENGTH:
            warnings.append(
                ImportIssue.warning(
                    "Symbol is unusually long (>5 characters), verify it is correct",
                    field="symbol",
                    code="long_symbol",
                    value=trade.symbol,
                )
            )
        if SYMBOL_PATTERN.match(trade.symbol):
            return

        if self.options.symbol_validation.auto_normalize:
            warnings.append(
                ImportIssue.warning(
                    "Symbol contains lowercase or special characters and will be normalized",
                    field="symbol",
                    code="symbol_normalized",
                    value=trade.symbol,
                )
            )
        else:
            errors.append(
                ImportIssue(
                    message="Symbol must be 1-10 uppercase letters and numbers",
                    field="symbol",
                    code="invalid_symbol_format",
                    value=trade.symbol,
                )
            )

    def _check_dates(
        self, trade: NormalizedTrade, errors: list[ImportIssue], warnings: list[ImportIssue]
    ) -> None:
        options = self.options
        today = self._today()
        earliest, latest = options.earliest_trade_date, options.latest_trade_date

        if earliest and trade.trade_date < earliest:
            errors.append(
                ImportIssue(
                    message=f"Trade date is before allowed range ({earliest.isoformat()})",
                    field="trade_date",
                    code="date_out_of_range",
                    value=trade.trade_date.isoformat(),
                )
            )
        if latest and trade.trade_date > latest:
            errors.append(
                ImportIssue(
                    message=f"Trade date is after allowed range ({latest.isoformat()})",
                    field="trade_date",
                    code="date_out_of_range",
                    value=trade.trade_date.isoformat(),
                )
            )

        if trade.trade_date > today:
            warnings.append(
                ImportIssue.warning(
                    "Trade date is in the future",
                    field="trade_date",
                    code="future_trade_date",
                    value=trade.trade_date.isoformat(),
                )
            )

        max_age = options.max_trade_age_days
        if max_age and trade.trade_date < today - timedelta(days=max_age):
            warnings.append(
                ImportIssue.warning(
                    f"Trade date is more than {max_age} days old",
                    field="trade_date",
                    code="old_trade_date",
                    value=trade.trade_date.isoformat(),
                )
            )

    def _check_numeric_ranges(self, trade: NormalizedTrade, warnings: list[ImportIssue]) -> None:
        if trade.premium > VERY_HIGH_PREMIUM:
            warnings.append(
                ImportIssue.warning(
                    "Premium is very high (>$1,000), verify it is per share and not a total",
                    field="premium",
                    code="very_high_premium",
                    value=trade.premium,
                )
            )
        elif trade.premium > HIGH_PREMIUM:
            warnings.append(
                ImportIssue.warning(
                    "Premium is unusually high (>$100), verify it is per share",
                    field="premium",
                    code="high_premium",
                    value=trade.premium,
                )
            )
        if trade.strike_price > HIGH_STRIKE:
            warnings.append(
                ImportIssue.warning(
                    "Strike price is very high (>$10,000), verify it is correct",
                    field="strike_price",
                    code="high_strike_price",
                    value=trade.strike_price,
                )
            )
        elif 0 < trade.strike_price < LOW_STRIKE:
            warnings.append(
                ImportIssue.warning(
                    "Strike price is very low (<$0.01), verify it is correct",
                    field="strike_price",
                    code="low_strike_price",
                    value=trade.strike_price,
                )
            )
        if trade.quantity > HIGH_QUANTITY:
            warnings.append(
                ImportIssue.warning(
                    "Quantity is very high (>10,000 contracts), verify it is correct",
                    field="quantity",
                    code="high_quantity",
                    value=trade.quantity,
                )
            )

    def _check_partial_data(self, trade: NormalizedTrade, errors: list[ImportIssue]) -> None:
        if self.options.allow_partial_data or not trade.missing_fields:
            return
        errors.append(
            ImportIssue(
                message=f"Missing optional fields: {', '.join(trade.missing_fields)}",
                field=trade.missing_fields[0],
                code="partial_data",
            )
        )
