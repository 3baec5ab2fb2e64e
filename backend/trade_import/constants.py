"""Application constants to avoid magic strings."""

from enum import Enum


class BrokerType(str, Enum):
    """Broker export formats the importer understands."""

    TD_AMERITRADE = "td_ameritrade"
    SCHWAB = "schwab"
    ROBINHOOD = "robinhood"
    ETRADE = "etrade"
    INTERACTIVE_BROKERS = "interactive_brokers"
    GENERIC = "generic"


class OptionType(str, Enum):
    """Option right."""

    CALL = "call"
    PUT = "put"


class TradeAction(str, Enum):
    """Canonical option trade actions."""

    BUY_TO_OPEN = "buy_to_open"
    SELL_TO_OPEN = "sell_to_open"
    BUY_TO_CLOSE = "buy_to_close"
    SELL_TO_CLOSE = "sell_to_close"


class ImportStatus(str, Enum):
    """Lifecycle of a single import session."""

    PREPARING = "preparing"
    PARSING = "parsing"
    NORMALIZING = "normalizing"
    VALIDATING = "validating"
    IMPORTING = "importing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ImportStatus.COMPLETED, ImportStatus.FAILED, ImportStatus.CANCELLED)


class ReportStatus(str, Enum):
    """Final outcome recorded on an ImportReport."""

    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AssetType:
    """Symbol asset type constants."""

    STOCK = "stock"
    INDEX = "index"
    FUTURES = "futures"
    FOREX = "forex"
    CRYPTO = "crypto"


# Shares represented by one standard equity option contract
CONTRACT_MULTIPLIER = 100

# Longest ticker accepted by the symbol master
MAX_SYMBOL_LENGTH = 10
