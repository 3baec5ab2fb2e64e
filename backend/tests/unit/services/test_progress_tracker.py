"""Tests for import session progress tracking."""

import pytest

from trade_import.constants import ImportStatus
from trade_import.services.issues import ImportIssue
from trade_import.services.progress_tracker import (
    ImportProgressTracker,
    ProgressFormatter,
    ProgressTrackerRegistry,
    group_issues,
)


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tracker(clock) -> ImportProgressTracker:
    return ImportProgressTracker("import_1", total_records=4, clock=clock)


@pytest.fixture
def received(tracker) -> list:
    snapshots = []
    tracker.subscribe(snapshots.append)
    return snapshots


class TestCounters:
    """Test record accounting."""

    def test_initial_snapshot(self, tracker: ImportProgressTracker):
        progress = tracker.snapshot()

        assert progress.session_id == "import_1"
        assert progress.status == ImportStatus.PREPARING
        assert progress.phase == "Initializing"
        assert progress.total_records == 4
        assert progress.processed_records == 0
        assert progress.percentage == 0.0
        assert progress.records_per_second is None
        assert progress.eta_seconds is None
        assert progress.finished_at is None

    def test_outcomes_add_up(self, tracker: ImportProgressTracker):
        tracker.record_success(0)
        tracker.record_failure(1, ImportIssue("Invalid price: abc", field="premium"))
        tracker.record_skip(2, "Non-option transaction code: BUY")

        progress = tracker.snapshot()
        assert progress.processed_records == 3
        assert progress.successful_records == 1
        assert progress.failed_records == 1
        assert progress.skipped_records == 1
        assert progress.current_record == 2
        assert progress.percentage == 75.0
        assert progress.errors[0].record_index == 1
        assert progress.warnings[0].message == "Record skipped: Non-option transaction code: BUY"
        assert progress.warnings[0].record_index == 2

    def test_warning_does_not_count_as_processed(self, tracker: ImportProgressTracker):
        tracker.record_warning(0, ImportIssue.warning("Option expires before trade date"))

        progress = tracker.snapshot()
        assert progress.processed_records == 0
        assert progress.warnings[0].record_index == 0

    def test_batch_update(self, tracker: ImportProgressTracker):
        tracker.batch_update(successful=2, failed=1, errors=[ImportIssue("Insert failed")])

        progress = tracker.snapshot()
        assert progress.processed_records == 3
        assert len(progress.errors) == 1

    def test_cannot_exceed_total(self, tracker: ImportProgressTracker):
        tracker.batch_update(successful=4)

        with pytest.raises(ValueError):
            tracker.record_success(4)
        with pytest.raises(ValueError):
            tracker.batch_update(skipped=1)

    def test_total_cannot_drop_below_processed(self, tracker: ImportProgressTracker):
        tracker.batch_update(successful=3)

        with pytest.raises(ValueError):
            tracker.set_total(2)
        tracker.set_total(3)
        assert tracker.snapshot().total_records == 3

    def test_empty_total_percentage(self):
        assert ImportProgressTracker("empty").snapshot().percentage == 0.0


class TestStatus:
    """Test the session lifecycle."""

    def test_terminal_status_is_final(self, tracker: ImportProgressTracker):
        tracker.set_status(ImportStatus.COMPLETED)
        tracker.set_status(ImportStatus.IMPORTING)
        tracker.cancel()

        assert tracker.status == ImportStatus.COMPLETED
        assert tracker.is_finished
        assert not tracker.is_cancelled

    def test_cancel(self, tracker: ImportProgressTracker):
        tracker.set_status(ImportStatus.IMPORTING)
        tracker.cancel()

        assert tracker.is_cancelled
        assert tracker.snapshot().finished_at is not None

    def test_summary_is_frozen_at_completion(self, tracker, clock):
        tracker.record_success(0)
        tracker.record_success(1)
        tracker.record_failure(2, ImportIssue("Insert failed"))
        tracker.record_skip(3, "Not an option transaction")
        clock.advance(2)
        tracker.set_status(ImportStatus.COMPLETED)
        clock.advance(10)

        summary = tracker.snapshot().summary
        assert summary.duration_seconds == 2.0
        assert summary.average_records_per_second == 2.0
        assert summary.success_rate == 0.5
        assert summary.common_errors[0].message == "Insert failed"
        assert summary.common_errors[0].affected_records == (2,)
        assert summary.common_warnings[0].count == 1

    def test_rates_and_eta(self, tracker, clock):
        tracker.batch_update(successful=2)
        clock.advance(4)

        progress = tracker.snapshot()
        assert progress.records_per_second == 0.5
        assert progress.eta_seconds == 4.0

    def test_reset(self, tracker: ImportProgressTracker, received):
        tracker.batch_update(successful=2)
        tracker.set_status(ImportStatus.FAILED)

        tracker.reset()

        progress = tracker.snapshot()
        assert progress.status == ImportStatus.PREPARING
        assert progress.processed_records == 0
        assert progress.total_records == 4
        assert progress.summary is None
        assert received[-1].status == ImportStatus.PREPARING


class TestNotifications:
    """Test observer delivery and throttling."""

    def test_first_change_is_delivered(self, tracker: ImportProgressTracker, received):
        tracker.set_phase("Parsing CSV")

        assert len(received) == 1
        assert received[0].phase == "Parsing CSV"

    def test_changes_within_interval_are_throttled(self, tracker, clock, received):
        tracker.record_success(0)
        clock.advance(0.05)
        tracker.record_success(1)
        clock.advance(0.06)
        tracker.record_success(2)

        assert [p.processed_records for p in received] == [1, 3]

    def test_terminal_status_is_always_delivered(self, tracker, received):
        tracker.record_success(0)
        tracker.set_status(ImportStatus.COMPLETED)

        assert [p.status for p in received] == [ImportStatus.PREPARING, ImportStatus.COMPLETED]

    def test_interval_has_a_floor(self, clock):
        tracker = ImportProgressTracker("import_2", 3, min_notify_interval=0, clock=clock)
        received = []
        tracker.subscribe(received.append)

        tracker.record_success(0)
        tracker.record_success(1)

        assert len(received) == 1

    def test_configured_interval(self, clock):
        tracker = ImportProgressTracker("import_3", 3, min_notify_interval=1.0, clock=clock)
        received = []
        tracker.subscribe(received.append)

        tracker.record_success(0)
        clock.advance(0.5)
        tracker.record_success(1)
        clock.advance(0.5)
        tracker.record_success(2)

        assert [p.processed_records for p in received] == [1, 3]

    def test_failing_callback_is_isolated(self, tracker: ImportProgressTracker, received):
        def broken(progress):
            raise RuntimeError("observer failed")

        tracker.subscribe(broken)
        tracker.subscribe(received.append)

        tracker.set_status(ImportStatus.COMPLETED)

        assert received[-1].status == ImportStatus.COMPLETED
        assert tracker.status == ImportStatus.COMPLETED

    def test_unsubscribe(self, tracker: ImportProgressTracker):
        received = []
        unsubscribe = tracker.subscribe(received.append)

        unsubscribe()
        unsubscribe()
        tracker.set_status(ImportStatus.COMPLETED)

        assert received == []


class TestGroupIssues:
    def test_most_frequent_first(self):
        issues = [
            ImportIssue("Invalid price", record_index=1),
            ImportIssue("Missing symbol", record_index=2),
            ImportIssue("Missing symbol", record_index=5),
            ImportIssue("Missing symbol"),
        ]

        groups = group_issues(issues)

        assert [g.message for g in groups] == ["Missing symbol", "Invalid price"]
        assert groups[0].count == 3
        assert groups[0].affected_records == (2, 5)

    def test_limit(self):
        issues = [ImportIssue(f"error {i}") for i in range(15)]
        assert len(group_issues(issues)) == 10


class TestRegistry:
    """Test the session id -> tracker map."""

    def test_create_and_get(self):
        registry = ProgressTrackerRegistry()

        tracker = registry.create("import_1", total_records=5)

        assert registry.get("import_1") is tracker
        assert registry.get("missing") is None
        assert len(registry) == 1

    def test_create_replaces_existing(self):
        registry = ProgressTrackerRegistry()
        first = registry.create("import_1")
        received = []
        first.subscribe(received.append)

        second = registry.create("import_1")
        first.set_status(ImportStatus.COMPLETED)

        assert registry.get("import_1") is second
        assert received == []
        assert len(registry) == 1

    def test_cleanup_finished(self):
        registry = ProgressTrackerRegistry()
        registry.create("done").set_status(ImportStatus.COMPLETED)
        registry.create("cancelled").cancel()
        registry.create("running").set_status(ImportStatus.IMPORTING)

        assert registry.cleanup_finished() == 2
        assert [t.session_id for t in registry.all()] == ["running"]

    def test_oldest_finished_sessions_are_pruned(self):
        registry = ProgressTrackerRegistry(max_finished=1)
        registry.create("first").set_status(ImportStatus.COMPLETED)
        registry.create("second").set_status(ImportStatus.FAILED)
        registry.create("running").set_status(ImportStatus.IMPORTING)

        assert [t.session_id for t in registry.all()] == ["second", "running"]
        assert registry.prune() == 0

    def test_unbounded_registry_keeps_everything(self):
        registry = ProgressTrackerRegistry()
        for i in range(5):
            registry.create(f"import_{i}").set_status(ImportStatus.COMPLETED)

        assert registry.prune() == 0
        assert len(registry) == 5

    def test_remove(self):
        registry = ProgressTrackerRegistry()
        registry.create("import_1")

        registry.remove("import_1")
        registry.remove("import_1")

        assert len(registry) == 0


class TestProgressFormatter:
    @pytest.mark.parametrize(
        "seconds,expected",
        [
            (None, "Unknown"),
            (0, "Unknown"),
            (45, "45s"),
            (125, "2m 5s"),
            (3725, "1h 2m"),
        ],
    )
    def test_time_remaining(self, seconds, expected):
        assert ProgressFormatter.format_time_remaining(seconds) == expected

    @pytest.mark.parametrize(
        "rate,expected",
        [(None, "0 rec/s"), (0.5, "30.0 rec/min"), (12.4, "12 rec/s")],
    )
    def test_records_per_second(self, rate, expected):
        assert ProgressFormatter.format_records_per_second(rate) == expected

    def test_percentage(self, tracker: ImportProgressTracker):
        assert ProgressFormatter.format_percentage(tracker.snapshot()) == "0%"
        tracker.record_success(0)
        assert ProgressFormatter.format_percentage(tracker.snapshot()) == "25%"

    def test_success_rate(self):
        assert ProgressFormatter.format_success_rate(0.5) == "50%"
