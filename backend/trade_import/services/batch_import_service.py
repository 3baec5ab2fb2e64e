"""Batch import orchestration.

Drives one CSV import through its stages, strictly in order:

    preparing -> parsing -> (detect broker) -> normalizing -> validating
    -> (resolve symbols) -> importing -> completed | failed | cancelled

Every data row ends up counted exactly once, as successful, failed or
skipped. Failures are charged against the import's error budget; once the
budget is used up nothing further is processed. The public entry points
never raise: every outcome, including aborts, is an ImportReport.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO

from trade_import.constants import ImportStatus, ReportStatus
from trade_import.schemas.imports import ImportConfig
from trade_import.services.brokers import (
    BaseBrokerAdapter,
    BrokerAdapterRegistry,
    BrokerDetectionResult,
    NormalizedTrade,
)
from trade_import.services.csv_parser import CSVParser, CSVParseResult
from trade_import.services.exceptions import (
    BrokerDetectionError,
    CSVParseError,
    ErrorLimitReachedError,
    ImportCancelledError,
    ImportPipelineError,
    PortfolioNotFoundError,
)
from trade_import.services.issues import ImportIssue
from trade_import.services.progress_tracker import (
    ImportProgressTracker,
    ProgressCallback,
    ProgressFormatter,
    ProgressTrackerRegistry,
)
from trade_import.services.storage import TradeStore
from trade_import.services.symbol_service import BatchSymbolResult, SymbolNormalizationService
from trade_import.services.validation_service import (
    BatchValidationResult,
    ImportValidationService,
    MessageCount,
)

logger = logging.getLogger(__name__)

PREVIEW_ROWS = 10


@dataclass(frozen=True)
class ParseSummary:
    total_rows: int
    headers: tuple[str, ...]
    delimiter: str
    encoding: str | None
    tolerable_errors: int
    critical_errors: int

    @classmethod
    def from_result(cls, result: CSVParseResult) -> "ParseSummary":
        return cls(
            total_rows=len(result.rows),
            headers=tuple(result.headers),
            delimiter=result.delimiter,
            encoding=result.encoding,
            tolerable_errors=len(result.tolerable_errors),
            critical_errors=len(result.critical_errors),
        )


@dataclass(frozen=True)
class NormalizationSummary:
    total_rows: int
    successful: int
    skipped: int
    failed: int


@dataclass(frozen=True)
class ValidationSummary:
    total_records: int
    valid_records: int
    invalid_records: int
    common_errors: tuple[MessageCount, ...] = ()
    common_warnings: tuple[MessageCount, ...] = ()

    @classmethod
    def from_batch(cls, batch: BatchValidationResult) -> "ValidationSummary":
        return cls(
            total_records=batch.total_records,
            valid_records=batch.valid_records,
            invalid_records=batch.invalid_records,
            common_errors=tuple(batch.common_errors),
            common_warnings=tuple(batch.common_warnings),
        )


@dataclass(frozen=True)
class SymbolSummary:
    total_symbols: int
    created: int
    existing: int
    updated: int
    failed: int

    @classmethod
    def from_batch(cls, batch: BatchSymbolResult) -> "SymbolSummary":
        return cls(
            total_symbols=batch.total_symbols,
            created=batch.created_symbols,
            existing=batch.existing_symbols,
            updated=batch.updated_symbols,
            failed=batch.failures,
        )


@dataclass(frozen=True)
class ImportReport:
    """Final, immutable result of one import."""

    session_id: str
    status: ReportStatus
    message: str
    total_records: int
    processed_records: int
    successful_records: int
    failed_records: int
    skipped_records: int
    started_at: datetime
    finished_at: datetime
    duration_seconds: float
    broker_detection: BrokerDetectionResult | None = None
    parse_summary: ParseSummary | None = None
    normalization_summary: NormalizationSummary | None = None
    validation_summary: ValidationSummary | None = None
    symbol_summary: SymbolSummary | None = None
    errors: tuple[ImportIssue, ...] = ()
    warnings: tuple[ImportIssue, ...] = ()
    created_trade_ids: tuple[int, ...] = ()

    @property
    def is_success(self) -> bool:
        return self.status == ReportStatus.COMPLETED


@dataclass
class PreviewRecord:
    record_index: int
    status: str  # success, skipped, error, or invalid (adapted but failed validation)
    trade: dict | None = None
    skip_reason: str | None = None
    errors: list[ImportIssue] = field(default_factory=list)
    warnings: list[ImportIssue] = field(default_factory=list)


@dataclass
class ImportPreview:
    """What an import of this file would do, computed from its first rows."""

    headers: list[str]
    detected_delimiter: str
    total_estimated_rows: int
    broker_detection: BrokerDetectionResult | None = None
    structure_issues: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    records: list[PreviewRecord] = field(default_factory=list)
    validation_summary: ValidationSummary | None = None
    error: str | None = None


@dataclass
class _ImportRun:
    """Mutable state of one import while it runs."""

    session_id: str
    config: ImportConfig
    tracker: ImportProgressTracker
    detection: BrokerDetectionResult | None = None
    parse_summary: ParseSummary | None = None
    normalization_summary: NormalizationSummary | None = None
    validation_summary: ValidationSummary | None = None
    symbol_summary: SymbolSummary | None = None
    created_trade_ids: list[int] = field(default_factory=list)
    # File-level issues not tied to a row
    errors: list[ImportIssue] = field(default_factory=list)
    abort_message: str | None = None


def new_session_id() -> str:
    return f"import_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class BatchImportService:
    """Runs CSV imports end to end.

    Example usage:
        service = BatchImportService(SqlAlchemyTradeStore(db))
        report = await service.import_from_text(csv_text, ImportConfig(portfolio_id=1))
        print(report.status, report.message)
    """

    def __init__(
        self,
        store: TradeStore,
        parser: CSVParser | None = None,
        registry: BrokerAdapterRegistry | None = None,
        trackers: ProgressTrackerRegistry | None = None,
    ) -> None:
        self._store = store
        self._parser = parser or CSVParser()
        self._registry = registry or BrokerAdapterRegistry()
        self.trackers = trackers if trackers is not None else ProgressTrackerRegistry()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def import_from_text(
        self,
        content: str,
        config: ImportConfig,
        on_progress: ProgressCallback | None = None,
        session_id: str | None = None,
    ) -> ImportReport:
        """Import trades from CSV text.

        Pass session_id to follow or cancel the import through self.trackers
        while it runs; otherwise one is generated.
        """
        return await self._run(
            lambda: self._parser.parse_text(content, config.delimiter),
            config,
            on_progress,
            session_id,
        )

    async def import_from_file(
        self,
        source: bytes | BinaryIO,
        config: ImportConfig,
        on_progress: ProgressCallback | None = None,
        session_id: str | None = None,
    ) -> ImportReport:
        """Import trades from raw file bytes or a binary file object."""

        def parse() -> CSVParseResult:
            content = source if isinstance(source, bytes) else source.read()
            return self._parser.parse_bytes(content, config.delimiter, config.encoding)

        return await self._run(parse, config, on_progress, session_id)

    def preview_import(
        self, content: str | bytes, config: ImportConfig, max_rows: int = PREVIEW_ROWS
    ) -> ImportPreview:
        """Parse, detect, normalize and validate the first rows without touching storage."""
        if isinstance(content, bytes):
            try:
                content, _ = self._parser.decode(content, config.encoding)
            except (UnicodeDecodeError, LookupError) as e:
                return ImportPreview(
                    headers=[],
                    detected_delimiter=config.delimiter or ",",
                    total_estimated_rows=0,
                    error=f"Could not decode file: {e}",
                )

        structure = self._parser.validate_structure(content)
        sample = self._parser.preview(content, max_rows=max_rows, delimiter=config.delimiter)
        preview = ImportPreview(
            headers=sample.headers,
            detected_delimiter=sample.detected_delimiter,
            total_estimated_rows=sample.total_estimated_rows,
            structure_issues=structure.issues,
            suggestions=structure.suggestions,
        )
        if not sample.headers:
            preview.error = "CSV input is empty"
            return preview

        try:
            preview.broker_detection = self._detect(sample.headers, config)
        except BrokerDetectionError as e:
            preview.error = str(e)
            return preview
        adapter = self._registry.get_adapter(preview.broker_detection.broker_type)

        trades: list[NormalizedTrade] = []
        records: dict[int, PreviewRecord] = {}
        for index, row in enumerate(sample.rows):
            result = adapter.adapt_row(row)
            record = PreviewRecord(
                record_index=index,
                status=result.status.value,
                skip_reason=result.skip_reason,
                errors=[e.at(index) for e in result.errors],
                warnings=[w.at(index) for w in result.warnings],
            )
            if result.is_success:
                result.trade.record_index = index
                record.trade = result.trade.as_dict()
                trades.append(result.trade)
            records[index] = record

        batch = ImportValidationService(config.validation).validate_batch(trades)
        for outcome in batch.results:
            record = records[outcome.trade.record_index]
            record.errors.extend(outcome.errors)
            record.warnings.extend(outcome.warnings)
            if not outcome.is_valid:
                record.status = "invalid"

        preview.records = list(records.values())
        preview.validation_summary = ValidationSummary.from_batch(batch)
        return preview

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(
        self,
        parse: Callable[[], CSVParseResult],
        config: ImportConfig,
        on_progress: ProgressCallback | None,
        session_id: str | None = None,
    ) -> ImportReport:
        session_id = session_id or new_session_id()
        tracker = self.trackers.create(
            session_id, min_notify_interval=config.progress_update_interval_ms / 1000
        )
        unsubscribe = tracker.subscribe(on_progress) if on_progress else None
        run = _ImportRun(session_id=session_id, config=config, tracker=tracker)
        logger.info("Starting import %s into portfolio %s", session_id, config.portfolio_id)

        try:
            try:
                await self._execute(run, parse)
            except ImportCancelledError:
                logger.info("Import %s cancelled", session_id)
            except ErrorLimitReachedError as e:
                logger.warning("Import %s: %s", session_id, e)
                run.errors.append(ImportIssue(message=str(e), code="error_limit_reached"))
            except CSVParseError as e:
                logger.warning("Import %s aborted: %s", session_id, e)
                run.abort_message = str(e)
                run.errors.extend(
                    ImportIssue(message=issue.message, code=issue.code) for issue in e.errors
                )
            except ImportPipelineError as e:
                logger.warning("Import %s aborted: %s", session_id, e)
                run.abort_message = str(e)
                run.errors.append(ImportIssue(message=str(e), code="import_aborted"))
            except Exception as e:
                logger.exception("Import %s failed unexpectedly", session_id)
                run.abort_message = f"Import failed: {e}"
                run.errors.append(ImportIssue(message=run.abort_message, code="unexpected_error"))
            return self._finish(run)
        finally:
            if unsubscribe:
                unsubscribe()

    async def _execute(self, run: _ImportRun, parse: Callable[[], CSVParseResult]) -> None:
        tracker, config = run.tracker, run.config

        tracker.set_phase("Checking portfolio")
        if not await self._store.portfolio_exists(config.portfolio_id):
            raise PortfolioNotFoundError(config.portfolio_id)

        tracker.set_status(ImportStatus.PARSING)
        tracker.set_phase("Parsing CSV")
        parsed = parse()
        run.parse_summary = ParseSummary.from_result(parsed)
        for issue in parsed.tolerable_errors:
            tracker.record_warning(None, ImportIssue.warning(issue.message, code=issue.code))
        if parsed.has_critical_errors:
            raise CSVParseError(
                "CSV parsing failed: " + "; ".join(e.message for e in parsed.critical_errors),
                parsed.critical_errors,
            )
        tracker.set_total(len(parsed.rows))
        self._check_cancelled(tracker)

        tracker.set_phase("Detecting broker format")
        run.detection = self._detect(parsed.headers, config)
        adapter = self._registry.get_adapter(run.detection.broker_type)

        tracker.set_status(ImportStatus.NORMALIZING)
        tracker.set_phase(f"Normalizing {run.detection.broker_name} records")
        trades = self._normalize(run, adapter, parsed.rows)
        self._check_cancelled(tracker)

        tracker.set_status(ImportStatus.VALIDATING)
        tracker.set_phase("Validating records")
        valid_trades = self._validate(run, trades)
        if not config.skip_invalid_records and tracker.failed:
            raise ImportPipelineError(
                f"Import aborted: {tracker.failed} invalid records found "
                "and skipping invalid records is disabled"
            )
        self._check_cancelled(tracker)

        tracker.set_phase("Resolving symbols")
        pending = await self._resolve_symbols(run, valid_trades)

        tracker.set_status(ImportStatus.IMPORTING)
        tracker.set_phase("Importing trades")
        await self._persist(run, pending)

    def _detect(self, headers: Sequence[str], config: ImportConfig) -> BrokerDetectionResult:
        if config.force_broker_type is None and not config.auto_detect_broker:
            raise BrokerDetectionError(
                "Broker auto-detection is disabled and no broker type was given"
            )
        return self._registry.resolve(headers, config.force_broker_type)

    def _normalize(
        self, run: _ImportRun, adapter: BaseBrokerAdapter, rows: Sequence[dict]
    ) -> list[NormalizedTrade]:
        tracker = run.tracker
        trades: list[NormalizedTrade] = []
        skipped = failed = 0

        for index, row in enumerate(rows):
            try:
                result = adapter.adapt_row(row)
            except Exception as e:
                logger.exception("Adapter %s crashed on row %d", adapter.broker_name(), index)
                self._record_failure(
                    run,
                    index,
                    [ImportIssue(message=f"Failed to process row: {e}", code="adapter_error")],
                )
                failed += 1
                continue

            for warning in result.warnings:
                tracker.record_warning(index, warning)
            if result.is_success:
                result.trade.record_index = index
                trades.append(result.trade)
            elif result.is_skipped:
                logger.debug("Row %d skipped: %s", index, result.skip_reason)
                tracker.record_skip(index, result.skip_reason)
                skipped += 1
            else:
                self._record_failure(run, index, result.errors)
                failed += 1

        run.normalization_summary = NormalizationSummary(
            total_rows=len(rows), successful=len(trades), skipped=skipped, failed=failed
        )
        logger.info(
            "Normalized %d rows: %d trades, %d skipped, %d failed",
            len(rows),
            len(trades),
            skipped,
            failed,
        )
        return trades

    def _validate(self, run: _ImportRun, trades: list[NormalizedTrade]) -> list[NormalizedTrade]:
        batch = ImportValidationService(run.config.validation).validate_batch(trades)
        run.validation_summary = ValidationSummary.from_batch(batch)

        for result in batch.results:
            for warning in result.warnings:
                run.tracker.record_warning(result.trade.record_index, warning)
            if not result.is_valid:
                self._record_failure(run, result.trade.record_index, result.errors)
        return batch.valid_trades

    async def _resolve_symbols(
        self, run: _ImportRun, trades: list[NormalizedTrade]
    ) -> list[tuple[NormalizedTrade, int]]:
        """Resolve every distinct ticker once; returns the trades ready to persist."""
        tracker = run.tracker
        service = SymbolNormalizationService(self._store, run.config.symbol_normalization)
        batch = await service.normalize_batch_from_trades(
            trades, should_continue=lambda: not tracker.is_cancelled
        )
        run.symbol_summary = SymbolSummary.from_batch(batch)
        if batch.cancelled:
            raise ImportCancelledError()

        pending = []
        for trade in trades:
            symbol_id = batch.symbol_id_for(trade.symbol)
            if symbol_id is not None:
                pending.append((trade, symbol_id))
                continue
            result = batch.result_for(trade.symbol)
            reason = "; ".join(result.errors) if result else "not resolved"
            self._record_failure(
                run,
                trade.record_index,
                [
                    ImportIssue(
                        message=f"Symbol resolution failed: {reason}",
                        field="symbol",
                        code="symbol_resolution_failed",
                        value=trade.symbol,
                    )
                ],
            )
        return pending

    async def _persist(self, run: _ImportRun, pending: list[tuple[NormalizedTrade, int]]) -> None:
        """Create trades in concurrent sub-batches, joining each before the next.

        A sub-batch never holds more records than the error budget has left,
        so its failures cannot push the total past the limit.
        """
        tracker, config = run.tracker, run.config
        import_source = run.detection.broker_type.value

        position = 0
        while position < len(pending):
            # Give progress and cancel requests a turn between sub-batches
            await asyncio.sleep(0)
            self._check_cancelled(tracker)
            remaining_budget = config.error_budget - tracker.failed
            if remaining_budget <= 0:
                raise ErrorLimitReachedError(config.error_budget)

            chunk = pending[position : position + min(config.batch_size, remaining_budget)]
            position += len(chunk)
            outcomes = await asyncio.gather(
                *(
                    self._store.create_trade(
                        config.portfolio_id,
                        symbol_id,
                        trade,
                        import_source=import_source,
                        import_batch_id=run.session_id,
                    )
                    for trade, symbol_id in chunk
                ),
                return_exceptions=True,
            )

            successful = 0
            errors = []
            for (trade, _), outcome in zip(chunk, outcomes, strict=True):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    logger.warning(
                        "Failed to import record %s (%s): %s",
                        trade.record_index,
                        trade.symbol,
                        outcome,
                    )
                    errors.append(
                        ImportIssue(
                            message=f"Failed to import trade: {outcome}",
                            code="persistence_error",
                        ).at(trade.record_index)
                    )
                else:
                    successful += 1
                    run.created_trade_ids.append(outcome)
            tracker.batch_update(successful=successful, failed=len(errors), errors=errors)
            logger.debug(
                "Import %s: persisted %d of %d records", run.session_id, position, len(pending)
            )

    def _record_failure(
        self, run: _ImportRun, record_index: int | None, issues: list[ImportIssue]
    ) -> None:
        """Count one failed row, halting first if the error budget is spent."""
        budget = run.config.error_budget
        if run.tracker.failed >= budget:
            raise ErrorLimitReachedError(budget)
        run.tracker.batch_update(failed=1, errors=[issue.at(record_index) for issue in issues])

    @staticmethod
    def _check_cancelled(tracker: ImportProgressTracker) -> None:
        if tracker.is_cancelled:
            raise ImportCancelledError()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _finish(self, run: _ImportRun) -> ImportReport:
        tracker = run.tracker
        snapshot = tracker.snapshot()
        processed, total = snapshot.processed_records, snapshot.total_records
        successful, failed = snapshot.successful_records, snapshot.failed_records

        if tracker.is_cancelled:
            status = ReportStatus.CANCELLED
            message = f"Import cancelled after processing {processed} of {total} records"
        elif run.abort_message:
            status = ReportStatus.FAILED
            message = run.abort_message
        elif failed == 0:
            status = ReportStatus.COMPLETED
            message = f"Successfully imported {successful} trades"
        elif successful == 0:
            status = ReportStatus.FAILED
            message = f"Failed to import any trades ({failed} errors)"
        else:
            status = ReportStatus.PARTIAL
            message = f"Partially completed: {successful} successful, {failed} failed"

        if not tracker.is_cancelled:
            tracker.set_phase("Finished")
            tracker.set_status(
                ImportStatus.FAILED if status == ReportStatus.FAILED else ImportStatus.COMPLETED
            )
        snapshot = tracker.snapshot()
        summary = snapshot.summary

        logger.info(
            "Import %s %s: %s (%s of records in %s, %s)",
            run.session_id,
            status.value,
            message,
            ProgressFormatter.format_percentage(snapshot),
            ProgressFormatter.format_duration(summary.duration_seconds),
            ProgressFormatter.format_records_per_second(summary.average_records_per_second),
        )

        return ImportReport(
            session_id=run.session_id,
            status=status,
            message=message,
            total_records=snapshot.total_records,
            processed_records=snapshot.processed_records,
            successful_records=snapshot.successful_records,
            failed_records=snapshot.failed_records,
            skipped_records=snapshot.skipped_records,
            started_at=snapshot.started_at,
            finished_at=snapshot.finished_at,
            duration_seconds=summary.duration_seconds,
            broker_detection=run.detection,
            parse_summary=run.parse_summary,
            normalization_summary=run.normalization_summary,
            validation_summary=run.validation_summary,
            symbol_summary=run.symbol_summary,
            errors=snapshot.errors + tuple(run.errors),
            warnings=snapshot.warnings,
            created_trade_ids=tuple(run.created_trade_ids),
        )
