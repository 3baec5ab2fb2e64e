"""Tests for header scoring and the broker adapter registry."""

import pytest

from tests.conftest import load_fixture
from trade_import.constants import BrokerType
from trade_import.services.brokers import BrokerAdapterRegistry, score_headers
from trade_import.services.brokers.detection import column_matches, normalize_header_key
from trade_import.services.brokers.robinhood import RobinhoodAdapter
from trade_import.services.csv_parser import CSVParser
from trade_import.services.exceptions import BrokerDetectionError


def headers_of(fixture_name: str) -> list[str]:
    return CSVParser().parse_text(load_fixture(fixture_name)).headers


@pytest.fixture
def registry() -> BrokerAdapterRegistry:
    return BrokerAdapterRegistry()


class TestHeaderMatching:
    """Test header normalization and fuzzy column matching."""

    def test_normalize_header_key(self):
        assert normalize_header_key("Fees & Comm") == "feescomm"
        assert normalize_header_key("Buy/Sell") == "buysell"
        assert normalize_header_key(None) == ""

    def test_exact_after_normalization(self):
        assert column_matches("Trans Code", "trans_code")

    def test_containment_either_way(self):
        assert column_matches("Price", "TradePrice")
        assert column_matches("Transaction Date", "Date")

    def test_unrelated(self):
        assert not column_matches("Symbol", "Quantity")
        assert not column_matches("", "Quantity")


class TestScoreHeaders:
    """Test the confidence heuristic."""

    def test_required_indicators_and_cue(self):
        score = score_headers(
            ["Date", "Symbol", "Net Amount", "Reg Fee"],
            required=["Date", "Symbol"],
            indicators=["Net Amount", "Reg Fee"],
            min_indicators=2,
            cues=["free-text description column"],
        )

        assert score.confidence == pytest.approx(0.9)
        assert "all required columns present" in score.reason
        assert "free-text description column" in score.reason
        assert score.found_columns == ("Date", "Symbol")
        assert score.missing_columns == ()

    def test_indicator_bonus_is_capped(self):
        score = score_headers(
            ["a", "b", "c", "d", "e"], required=[], indicators=["a", "b", "c", "d", "e"]
        )
        assert score.confidence == pytest.approx(0.5)

    def test_too_few_indicators_earn_nothing(self):
        score = score_headers(["a"], required=[], indicators=["a", "b"], min_indicators=2)
        assert score.confidence == 0

    def test_missing_required_columns_are_named(self):
        score = score_headers(["Date"], required=["Date", "Symbol"])

        assert score.confidence == 0
        assert score.missing_columns == ("Symbol",)
        assert "missing required columns: Symbol" in score.reason

    def test_confidence_is_clamped(self):
        score = score_headers(
            ["a", "b", "c"],
            required=["a"],
            indicators=["a", "b", "c"],
            cues=["x", "y", "z", "w", "v"],
        )
        assert score.confidence == 1.0

    def test_no_match(self):
        score = score_headers(["Name"], required=[])

        assert score.confidence == 0
        assert score.reason == "no matching columns"


class TestDetectBroker:
    """Test detection against real export layouts."""

    @pytest.mark.parametrize(
        "fixture_name,broker_type",
        [
            ("robinhood_options.csv", BrokerType.ROBINHOOD),
            ("td_ameritrade_transactions.csv", BrokerType.TD_AMERITRADE),
            ("schwab_transactions.csv", BrokerType.SCHWAB),
            ("etrade_transactions.csv", BrokerType.ETRADE),
            ("interactive_brokers_trades.csv", BrokerType.INTERACTIVE_BROKERS),
            ("generic_trades.csv", BrokerType.GENERIC),
        ],
    )
    def test_detects_each_broker_confidently(self, registry, fixture_name, broker_type):
        detection = registry.detect_broker(headers_of(fixture_name))

        assert detection is not None
        assert detection.broker_type == broker_type
        assert detection.confidence >= 0.7
        assert detection.reason

    def test_robinhood_scores_full_confidence(self, registry):
        detection = registry.detect_broker(headers_of("robinhood_options.csv"))

        assert detection.confidence == pytest.approx(1.0)
        assert detection.broker_name == "Robinhood"
        assert "Instrument" in detection.found_columns

    def test_unrelated_headers(self, registry):
        assert registry.detect_broker(["Name", "Email", "Phone"]) is None

    def test_results_sorted_by_confidence(self, registry):
        results = registry.get_all_detection_results(headers_of("schwab_transactions.csv"))

        assert len(results) == 6
        confidences = [r.confidence for r in results]
        assert confidences == sorted(confidences, reverse=True)
        assert results[0].broker_type == BrokerType.SCHWAB

    def test_ties_go_to_registration_order(self, registry):
        headers = ["Date", "Action", "Symbol", "Description", "Quantity", "Price"]
        results = registry.get_all_detection_results(headers)

        assert results[0].confidence == results[1].confidence
        assert results[0].broker_type == BrokerType.TD_AMERITRADE
        assert results[1].broker_type == BrokerType.SCHWAB


class TestResolve:
    """Test choosing the adapter for an import."""

    def test_forced_broker_skips_detection(self, registry):
        detection = registry.resolve(["whatever"], force_broker_type="schwab")

        assert detection.broker_type == BrokerType.SCHWAB
        assert detection.confidence == 1.0
        assert detection.reason == "Forced broker type"

    def test_forced_broker_without_adapter(self):
        registry = BrokerAdapterRegistry([RobinhoodAdapter()])

        with pytest.raises(BrokerDetectionError, match="forced broker type"):
            registry.resolve(["Symbol"], force_broker_type=BrokerType.SCHWAB)

    def test_nothing_detected(self, registry):
        with pytest.raises(BrokerDetectionError, match="Could not detect broker format"):
            registry.resolve(["Name", "Email", "Phone"])


class TestRegistry:
    """Test adapter registration and lookup."""

    def test_default_adapters_in_tie_break_order(self, registry):
        types = [info.type for info in registry.get_supported_brokers()]
        assert types == [
            "td_ameritrade",
            "schwab",
            "robinhood",
            "etrade",
            "interactive_brokers",
            "generic",
        ]

    def test_get_adapter_accepts_strings(self, registry):
        assert registry.get_adapter("ROBINHOOD").broker_type() == BrokerType.ROBINHOOD

    def test_unknown_broker(self, registry):
        assert not registry.is_supported("fidelity")
        with pytest.raises(ValueError, match="Unsupported broker type"):
            registry.get_adapter("fidelity")

    def test_register_rejects_non_adapters(self, registry):
        with pytest.raises(TypeError):
            registry.register_adapter(object())

    def test_register_replaces_same_broker(self):
        registry = BrokerAdapterRegistry([])
        first, second = RobinhoodAdapter(), RobinhoodAdapter()

        registry.register_adapter(first)
        registry.register_adapter(second)

        assert registry.get_adapter(BrokerType.ROBINHOOD) is second
        assert len(registry.get_supported_brokers()) == 1

    def test_supported_broker_info(self, registry):
        info = next(i for i in registry.get_supported_brokers() if i.type == "robinhood")

        assert info.name == "Robinhood"
        assert "Trans Code" in info.required_columns
        assert "Amount" in info.optional_columns
