"""Ticker master resolution for imported trades.

Normalizes tickers, looks them up (cache first, then the store) and creates
the missing ones. At most one creation per ticker is ever in flight: a second
concurrent request for a ticker that is still being created fails fast
instead of racing to insert a duplicate.
"""

import asyncio
import logging
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

from trade_import.constants import MAX_SYMBOL_LENGTH, AssetType
from trade_import.schemas.imports import SymbolNormalizationOptions
from trade_import.services.brokers.base_broker_adapter import NormalizedTrade, SymbolHints
from trade_import.services.exceptions import SymbolCreationInProgressError
from trade_import.services.repositories import DuplicateError
from trade_import.services.storage import SymbolRecord, TradeStore

logger = logging.getLogger(__name__)

SYMBOL_CHUNK_SIZE = 50

_NON_ALNUM = re.compile(r"[^A-Z0-9]")
_VALID_SYMBOL = re.compile(r"^[A-Z0-9]+$")


@dataclass(frozen=True)
class SymbolLookupResult:
    found: bool
    normalized_symbol: str
    symbol: SymbolRecord | None = None
    needs_creation: bool = False

    @classmethod
    def of(cls, normalized: str, record: SymbolRecord | None) -> "SymbolLookupResult":
        return cls(
            found=record is not None,
            normalized_symbol=normalized,
            symbol=record,
            needs_creation=record is None,
        )


@dataclass
class SymbolNormalizationResult:
    """Outcome of resolving one ticker."""

    success: bool
    original_symbol: str
    normalized_symbol: str
    symbol: SymbolRecord | None = None
    created: bool = False
    updated: bool = False
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SymbolFailure:
    symbol: str
    error: str


@dataclass
class BatchSymbolResult:
    total_symbols: int = 0
    existing_symbols: int = 0
    created_symbols: int = 0
    updated_symbols: int = 0
    failures: int = 0
    results: dict[str, SymbolNormalizationResult] = field(default_factory=dict)
    errors: list[SymbolFailure] = field(default_factory=list)
    cancelled: bool = False

    def result_for(self, ticker: str) -> SymbolNormalizationResult | None:
        """Result for a ticker under any of its spellings ("BRK.B" finds "BRKB")."""
        result = self.results.get(ticker)
        if result is None:
            result = self.results.get(SymbolNormalizationService.format_symbol(ticker))
        return result

    def symbol_id_for(self, ticker: str) -> int | None:
        """Resolved record id for a ticker as it appeared in the batch."""
        result = self.result_for(ticker)
        if result is None or not result.success or result.symbol is None:
            return None
        return result.symbol.id


class SymbolNormalizationService:
    """Resolves tickers to ticker master records, creating them when allowed.

    Example usage:
        service = SymbolNormalizationService(store, config.symbol_normalization)
        batch = await service.normalize_batch_from_trades(trades)
        symbol_id = batch.symbol_id_for("AAPL")
    """

    def __init__(
        self, store: TradeStore, options: SymbolNormalizationOptions | None = None
    ) -> None:
        self._store = store
        self.options = options or SymbolNormalizationOptions()
        # Insertion-ordered; eviction drops the oldest inserted entry
        self._cache: dict[str, SymbolLookupResult] = {}
        self._creating: set[str] = set()

    @staticmethod
    def format_symbol(symbol: str | None) -> str:
        """Uppercase, strip non-alphanumerics, truncate to the ticker length limit."""
        if not symbol:
            return ""
        return _NON_ALNUM.sub("", symbol.strip().upper())[:MAX_SYMBOL_LENGTH]

    @staticmethod
    def validate_symbol_format(symbol: str) -> list[str]:
        if not symbol:
            return ["Symbol cannot be empty"]
        errors = []
        if len(symbol) > MAX_SYMBOL_LENGTH:
            errors.append(f"Symbol cannot be longer than {MAX_SYMBOL_LENGTH} characters")
        if not _VALID_SYMBOL.match(symbol):
            errors.append("Symbol must contain only uppercase letters and numbers")
        return errors

    async def normalize_symbol(
        self, symbol: str, hints: SymbolHints | None = None
    ) -> SymbolNormalizationResult:
        """Resolve one ticker. Never raises; failures come back on the result."""
        normalized = self.format_symbol(symbol)
        if not normalized:
            return SymbolNormalizationResult(
                success=False,
                original_symbol=symbol,
                normalized_symbol="",
                errors=["Symbol is empty or invalid after normalization"],
            )

        if self.options.validate_format:
            format_errors = self.validate_symbol_format(normalized)
            if format_errors:
                return SymbolNormalizationResult(
                    success=False,
                    original_symbol=symbol,
                    normalized_symbol=normalized,
                    errors=format_errors,
                )

        try:
            return await self._resolve(symbol, normalized, hints)
        except SymbolCreationInProgressError as e:
            logger.warning(str(e))
            return SymbolNormalizationResult(
                success=False,
                original_symbol=symbol,
                normalized_symbol=normalized,
                errors=[str(e)],
            )
        except Exception as e:
            logger.exception("Symbol normalization failed for %s", normalized)
            return SymbolNormalizationResult(
                success=False,
                original_symbol=symbol,
                normalized_symbol=normalized,
                errors=[f"Symbol normalization failed: {e}"],
            )

    async def _resolve(
        self, original: str, normalized: str, hints: SymbolHints | None
    ) -> SymbolNormalizationResult:
        lookup = self._cache.get(normalized)
        if lookup is None:
            lookup = await self._lookup(normalized)
            self._remember(lookup)

        if lookup.needs_creation:
            if not self.options.auto_create:
                return SymbolNormalizationResult(
                    success=False,
                    original_symbol=original,
                    normalized_symbol=normalized,
                    errors=["Symbol not found and auto-creation is disabled"],
                )
            record = await self._create(normalized, hints)
            self._remember(SymbolLookupResult.of(normalized, record))
            return SymbolNormalizationResult(
                success=True,
                original_symbol=original,
                normalized_symbol=normalized,
                symbol=record,
                created=True,
                warnings=["Created new symbol entry"],
            )

        record = lookup.symbol
        result = SymbolNormalizationResult(
            success=True,
            original_symbol=original,
            normalized_symbol=normalized,
            symbol=record,
        )
        if self.options.update_existing and hints and self._differs(record, hints):
            result.symbol = await self._store.update_symbol(record.id, hints)
            result.updated = True
            result.warnings.append("Updated existing symbol with new information")
            self._remember(SymbolLookupResult.of(normalized, result.symbol))
        return result

    async def _lookup(self, normalized: str) -> SymbolLookupResult:
        return SymbolLookupResult.of(normalized, await self._store.find_symbol(normalized))

    async def _create(self, normalized: str, hints: SymbolHints | None) -> SymbolRecord:
        if normalized in self._creating:
            raise SymbolCreationInProgressError(normalized)

        self._creating.add(normalized)
        try:
            hints = hints or SymbolHints()
            request = SymbolHints(
                name=hints.name or normalized,
                asset_type=hints.asset_type or AssetType.STOCK,
                exchange=hints.exchange,
                sector=hints.sector,
                industry=hints.industry,
            )
            try:
                async with self._store.transaction():
                    record = await self._store.create_symbol(normalized, request)
            except DuplicateError:
                # Created elsewhere since our lookup
                record = await self._store.find_symbol(normalized)
                if record is None:
                    raise
            logger.info("Created symbol %s (id %s)", normalized, record.id)
            return record
        finally:
            self._creating.discard(normalized)

    @staticmethod
    def _differs(record: SymbolRecord, hints: SymbolHints) -> bool:
        return any(
            value and getattr(record, name) != value for name, value in hints.as_dict().items()
        )

    def _remember(self, lookup: SymbolLookupResult) -> None:
        if not self.options.cache_results:
            return
        key = lookup.normalized_symbol
        if key in self._cache:
            self._cache[key] = lookup
            return
        while len(self._cache) >= self.options.max_cache_size:
            oldest = next(iter(self._cache))
            del self._cache[oldest]
        self._cache[key] = lookup

    async def normalize_batch(
        self,
        symbols: Mapping[str, SymbolHints | None],
        should_continue: Callable[[], bool] | None = None,
    ) -> BatchSymbolResult:
        """Resolve many tickers in chunks of 50.

        All tickers in a chunk are resolved concurrently and the chunk is
        joined before the next one starts. should_continue is consulted
        before each chunk; returning False stops the batch.
        """
        batch = BatchSymbolResult(total_symbols=len(symbols))
        entries = list(symbols.items())

        for start in range(0, len(entries), SYMBOL_CHUNK_SIZE):
            if should_continue is not None and not should_continue():
                logger.info("Symbol resolution stopped after %d of %d tickers", start, len(entries))
                batch.cancelled = True
                break

            chunk = entries[start : start + SYMBOL_CHUNK_SIZE]
            outcomes = await asyncio.gather(
                *(self.normalize_symbol(ticker, hints) for ticker, hints in chunk)
            )
            for (ticker, _), result in zip(chunk, outcomes, strict=True):
                batch.results[ticker] = result
                if not result.success:
                    batch.failures += 1
                    error = "; ".join(result.errors)
                    batch.errors.append(SymbolFailure(symbol=ticker, error=error))
                elif result.created:
                    batch.created_symbols += 1
                else:
                    batch.existing_symbols += 1
                    if result.updated:
                        batch.updated_symbols += 1

        logger.info(
            "Resolved %d symbols: %d existing, %d created, %d failed",
            batch.total_symbols,
            batch.existing_symbols,
            batch.created_symbols,
            batch.failures,
        )
        return batch

    async def normalize_batch_from_trades(
        self,
        trades: Sequence[NormalizedTrade],
        should_continue: Callable[[], bool] | None = None,
    ) -> BatchSymbolResult:
        """Resolve each distinct ticker once, merging hints (first non-empty value wins).

        Tickers are keyed by their normalized form, so "BRK.B" and "BRKB"
        resolve together.
        """
        symbols: dict[str, SymbolHints | None] = {}
        for trade in trades:
            key = self.format_symbol(trade.symbol) or trade.symbol
            current = symbols.get(key)
            if current is None:
                symbols[key] = trade.symbol_hints
            else:
                symbols[key] = current.merged_with(trade.symbol_hints)
        return await self.normalize_batch(symbols, should_continue)

    def clear_cache(self) -> None:
        self._cache.clear()

    def cache_stats(self) -> dict[str, int]:
        return {
            "size": len(self._cache),
            "max_size": self.options.max_cache_size,
            "in_flight": len(self._creating),
        }
