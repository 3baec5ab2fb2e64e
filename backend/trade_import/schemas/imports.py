"""Pydantic schemas for CSV import configuration and API responses."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from trade_import.config import settings
from trade_import.constants import BrokerType, ImportStatus, ReportStatus
from trade_import.services.issues import IssueSeverity


class SymbolValidationOptions(BaseModel):
    auto_normalize: bool = Field(
        True, description="Warn and normalize malformed tickers instead of rejecting them"
    )


class ValidationOptions(BaseModel):
    """Record validation rules."""

    strict_mode: bool = Field(False, description="Treat every warning as a blocking error")
    allow_partial_data: bool = Field(
        True, description="Accept records with missing optional fields (commission, fees)"
    )
    symbol_validation: SymbolValidationOptions = Field(default_factory=SymbolValidationOptions)
    earliest_trade_date: date | None = None
    latest_trade_date: date | None = None
    max_trade_age_days: int | None = Field(
        5 * 365, ge=1, description="Warn about trades older than this; None disables the check"
    )

    @model_validator(mode="after")
    def check_date_range(self) -> "ValidationOptions":
        if (
            self.earliest_trade_date
            and self.latest_trade_date
            and self.earliest_trade_date > self.latest_trade_date
        ):
            raise ValueError("earliest_trade_date must not be after latest_trade_date")
        return self


class SymbolNormalizationOptions(BaseModel):
    """Ticker master resolution rules."""

    auto_create: bool = Field(True, description="Create unknown tickers")
    validate_format: bool = Field(True, description="Reject tickers that normalize to nothing")
    update_existing: bool = Field(
        False, description="Overwrite descriptive fields of known tickers with new hints"
    )
    cache_results: bool = True
    max_cache_size: int = Field(default_factory=lambda: settings.symbol_cache_size, ge=1)


class ImportConfig(BaseModel):
    """Options for one CSV import."""

    portfolio_id: int
    auto_detect_broker: bool = True
    force_broker_type: BrokerType | None = None
    validation: ValidationOptions = Field(default_factory=ValidationOptions)
    symbol_normalization: SymbolNormalizationOptions = Field(
        default_factory=SymbolNormalizationOptions
    )
    batch_size: int = Field(default_factory=lambda: settings.import_batch_size, ge=1)
    progress_update_interval_ms: int = Field(
        default_factory=lambda: settings.progress_update_interval_ms, ge=0
    )
    stop_on_error: bool = False
    max_errors: int = Field(default_factory=lambda: settings.import_max_errors, ge=1)
    skip_invalid_records: bool = Field(
        True, description="Import the valid records when some are invalid instead of aborting"
    )
    delimiter: str | None = Field(None, min_length=1, max_length=1)
    encoding: str | None = None

    @property
    def error_budget(self) -> int:
        """Recorded failures allowed before processing halts."""
        return 1 if self.stop_on_error else self.max_errors


class ImportIssueResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    message: str
    field: str | None = None
    code: str
    severity: IssueSeverity
    record_index: int | None = None
    value: str | None = None


class BrokerDetectionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    broker_type: BrokerType
    broker_name: str
    confidence: float
    reason: str
    required_columns: list[str] = []
    found_columns: list[str] = []


class BrokerInfoResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: str
    name: str
    required_columns: list[str]
    optional_columns: list[str]


class MessageCount(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    message: str
    count: int


class ParseSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_rows: int
    headers: list[str]
    delimiter: str
    encoding: str | None = None
    tolerable_errors: int
    critical_errors: int


class NormalizationSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_rows: int
    successful: int
    skipped: int
    failed: int


class ValidationSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_records: int
    valid_records: int
    invalid_records: int
    common_errors: list[MessageCount] = []
    common_warnings: list[MessageCount] = []


class SymbolSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_symbols: int
    created: int
    existing: int
    updated: int
    failed: int


class ImportReportResponse(BaseModel):
    """Final result of an import."""

    model_config = ConfigDict(from_attributes=True)

    session_id: str
    status: ReportStatus
    message: str
    broker_detection: BrokerDetectionResponse | None = None
    total_records: int
    processed_records: int
    successful_records: int
    failed_records: int
    skipped_records: int
    started_at: datetime
    finished_at: datetime
    duration_seconds: float
    parse_summary: ParseSummaryResponse | None = None
    normalization_summary: NormalizationSummaryResponse | None = None
    validation_summary: ValidationSummaryResponse | None = None
    symbol_summary: SymbolSummaryResponse | None = None
    errors: list[ImportIssueResponse] = []
    warnings: list[ImportIssueResponse] = []
    created_trade_ids: list[int] = []


class PreviewRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    record_index: int
    status: str
    trade: dict | None = None
    skip_reason: str | None = None
    errors: list[ImportIssueResponse] = []
    warnings: list[ImportIssueResponse] = []


class ImportPreviewResponse(BaseModel):
    """Side-effect-free look at the first rows of a file."""

    model_config = ConfigDict(from_attributes=True)

    headers: list[str]
    detected_delimiter: str
    total_estimated_rows: int
    broker_detection: BrokerDetectionResponse | None = None
    structure_issues: list[str] = []
    suggestions: list[str] = []
    records: list[PreviewRecordResponse] = []
    validation_summary: ValidationSummaryResponse | None = None
    error: str | None = None


class ProgressResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    status: ImportStatus
    phase: str
    total_records: int
    processed_records: int
    successful_records: int
    failed_records: int
    skipped_records: int
    percentage: float
    records_per_second: float | None = None
    eta_seconds: float | None = None
