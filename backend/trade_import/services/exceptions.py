"""Import pipeline exceptions.

Row and record level problems are collected as issues on the import report;
these exceptions cover the conditions that stop a stage outright.
"""


class ImportPipelineError(Exception):
    """Base exception for import pipeline failures."""


class CSVParseError(ImportPipelineError):
    """Input could not be parsed as delimited text."""

    def __init__(self, message: str, errors: list | None = None):
        self.errors = errors or []
        super().__init__(message)


class BrokerDetectionError(ImportPipelineError):
    """No adapter matched the headers, or a forced broker has no adapter."""


class PortfolioNotFoundError(ImportPipelineError):
    """Target portfolio does not exist."""

    def __init__(self, portfolio_id: int):
        self.portfolio_id = portfolio_id
        super().__init__(f"Portfolio not found: {portfolio_id}")


class SymbolCreationInProgressError(ImportPipelineError):
    """Another creation for the same ticker is still pending."""

    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(f"Symbol {symbol} is already being created")


class ImportCancelledError(ImportPipelineError):
    """The import was cancelled; raised at the next chunk boundary."""


class ErrorLimitReachedError(ImportPipelineError):
    """Recorded failures used up the import's error budget."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Import stopped: error limit of {limit} reached")
