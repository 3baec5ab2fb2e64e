"""Broker-specific CSV row adapters and the registry that selects them."""

from .base_broker_adapter import (
    AdaptationResult,
    AdaptationStatus,
    BaseBrokerAdapter,
    NormalizedTrade,
    SymbolHints,
)
from .broker_adapter_registry import BrokerAdapterRegistry, BrokerInfo
from .detection import BrokerDetectionResult, score_headers

__all__ = [
    "AdaptationResult",
    "AdaptationStatus",
    "BaseBrokerAdapter",
    "BrokerAdapterRegistry",
    "BrokerDetectionResult",
    "BrokerInfo",
    "NormalizedTrade",
    "SymbolHints",
    "score_headers",
]
