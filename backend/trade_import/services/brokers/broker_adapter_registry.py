"""Adapter registry for broker CSV formats.

Maps broker types to their adapter implementations, scores every adapter
against a header row, and picks the best match.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from trade_import.constants import BrokerType
from trade_import.services.brokers.base_broker_adapter import BaseBrokerAdapter
from trade_import.services.brokers.detection import BrokerDetectionResult, score_headers
from trade_import.services.exceptions import BrokerDetectionError

logger = logging.getLogger(__name__)

__all__ = [
    "BrokerAdapterRegistry",
    "BrokerDetectionResult",
    "BrokerInfo",
    "score_headers",
]


@dataclass
class BrokerInfo:
    """Information about a supported broker."""

    type: str
    name: str
    required_columns: list[str]
    optional_columns: list[str]


class BrokerAdapterRegistry:
    """Registry of broker row adapters.

    Registration order is detection tie-break order: TD Ameritrade, Schwab,
    Robinhood, E*TRADE, Interactive Brokers, then the generic layout.

    Example usage:
        registry = BrokerAdapterRegistry()
        detection = registry.resolve(headers)
        adapter = registry.get_adapter(detection.broker_type)
    """

    def __init__(self, adapters: Sequence[BaseBrokerAdapter] | None = None) -> None:
        if adapters is None:
            adapters = self._default_adapters()
        self._adapters: dict[BrokerType, BaseBrokerAdapter] = {}
        for adapter in adapters:
            self.register_adapter(adapter)
        logger.debug("Adapter registry initialized with %d adapters", len(self._adapters))

    @staticmethod
    def _default_adapters() -> list[BaseBrokerAdapter]:
        # Import adapters here to avoid circular imports
        from trade_import.services.brokers.etrade import ETradeAdapter
        from trade_import.services.brokers.generic import GenericAdapter
        from trade_import.services.brokers.interactive_brokers import InteractiveBrokersAdapter
        from trade_import.services.brokers.robinhood import RobinhoodAdapter
        from trade_import.services.brokers.schwab import SchwabAdapter
        from trade_import.services.brokers.td_ameritrade import TDAmeritradeAdapter

        return [
            TDAmeritradeAdapter(),
            SchwabAdapter(),
            RobinhoodAdapter(),
            ETradeAdapter(),
            InteractiveBrokersAdapter(),
            GenericAdapter(),
        ]

    def register_adapter(self, adapter: BaseBrokerAdapter) -> None:
        """Register (or replace) the adapter for its broker type."""
        if not isinstance(adapter, BaseBrokerAdapter):
            raise TypeError(f"Adapter must extend BaseBrokerAdapter, got {type(adapter)}")
        self._adapters[adapter.broker_type()] = adapter

    def get_adapter(self, broker_type: BrokerType | str) -> BaseBrokerAdapter:
        """Get the adapter for a broker type.

        Raises:
            ValueError: If broker type is not supported
        """
        key = self._coerce(broker_type)
        if key is None or key not in self._adapters:
            supported = [b.value for b in self._adapters]
            raise ValueError(f"Unsupported broker type '{broker_type}'. Supported: {supported}")
        return self._adapters[key]

    def is_supported(self, broker_type: BrokerType | str) -> bool:
        key = self._coerce(broker_type)
        return key is not None and key in self._adapters

    def get_supported_brokers(self) -> list[BrokerInfo]:
        return [
            BrokerInfo(
                type=adapter.broker_type().value,
                name=adapter.broker_name(),
                required_columns=list(adapter.required_columns),
                optional_columns=list(adapter.optional_columns),
            )
            for adapter in self._adapters.values()
        ]

    def get_all_detection_results(self, headers: Sequence[str]) -> list[BrokerDetectionResult]:
        """Score every adapter; highest confidence first, registration order on ties."""
        results = [adapter.can_handle(headers) for adapter in self._adapters.values()]
        # sorted() is stable, so equal scores keep registration order
        return sorted(results, key=lambda r: r.confidence, reverse=True)

    def detect_broker(self, headers: Sequence[str]) -> BrokerDetectionResult | None:
        """Best-matching broker for a header row, or None when nothing scores above zero."""
        results = self.get_all_detection_results(headers)
        if not results or results[0].confidence <= 0:
            logger.info("No broker format matched headers: %s", list(headers))
            return None
        best = results[0]
        logger.info(
            "Detected broker %s (confidence %.2f): %s",
            best.broker_type.value,
            best.confidence,
            best.reason,
        )
        return best

    def resolve(
        self, headers: Sequence[str], force_broker_type: BrokerType | str | None = None
    ) -> BrokerDetectionResult:
        """Pick the adapter for an import, honouring a forced broker type.

        Raises:
            BrokerDetectionError: If nothing matches, or the forced broker has no adapter
        """
        if force_broker_type:
            if not self.is_supported(force_broker_type):
                raise BrokerDetectionError(
                    f"No adapter registered for forced broker type '{force_broker_type}'"
                )
            adapter = self.get_adapter(force_broker_type)
            return BrokerDetectionResult(
                broker_type=adapter.broker_type(),
                broker_name=adapter.broker_name(),
                confidence=1.0,
                reason="Forced broker type",
                required_columns=tuple(adapter.required_columns),
                found_columns=tuple(headers),
            )

        detection = self.detect_broker(headers)
        if detection is None:
            raise BrokerDetectionError(
                "Could not detect broker format from CSV headers. "
                "Supported brokers: " + ", ".join(a.broker_name() for a in self._adapters.values())
            )
        return detection

    @staticmethod
    def _coerce(broker_type: BrokerType | str) -> BrokerType | None:
        if isinstance(broker_type, BrokerType):
            return broker_type
        try:
            return BrokerType(str(broker_type).lower())
        except ValueError:
            return None
