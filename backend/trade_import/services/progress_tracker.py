"""Progress tracking for import sessions.

One ImportProgressTracker per import, written only by the orchestrator that
owns it. Observers subscribe for snapshots; deliveries are throttled, except
for terminal statuses which always go out.
"""

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

from trade_import.constants import ImportStatus
from trade_import.services.issues import ImportIssue

logger = logging.getLogger(__name__)

MIN_NOTIFY_INTERVAL_SECONDS = 0.1
TOP_ISSUE_GROUPS = 10


@dataclass(frozen=True)
class IssueGroup:
    """Issues sharing one message, with the rows they hit."""

    message: str
    count: int
    affected_records: tuple[int, ...] = ()


@dataclass(frozen=True)
class ImportSummary:
    duration_seconds: float
    average_records_per_second: float
    success_rate: float  # 0-1, over total records
    common_errors: tuple[IssueGroup, ...] = ()
    common_warnings: tuple[IssueGroup, ...] = ()


@dataclass(frozen=True)
class ImportProgress:
    """Immutable snapshot of an import session."""

    session_id: str
    status: ImportStatus
    phase: str
    started_at: datetime
    total_records: int
    processed_records: int
    successful_records: int
    failed_records: int
    skipped_records: int
    finished_at: datetime | None = None
    current_record: int | None = None
    records_per_second: float | None = None
    eta_seconds: float | None = None
    errors: tuple[ImportIssue, ...] = ()
    warnings: tuple[ImportIssue, ...] = ()
    summary: ImportSummary | None = None

    @property
    def percentage(self) -> float:
        if self.total_records <= 0:
            return 0.0
        return round(self.processed_records / self.total_records * 100, 2)


ProgressCallback = Callable[[ImportProgress], None]


def group_issues(
    issues: Iterable[ImportIssue], limit: int = TOP_ISSUE_GROUPS
) -> tuple[IssueGroup, ...]:
    """Group by message, most frequent first (first seen first on ties)."""
    groups: dict[str, list[int]] = {}
    counts: dict[str, int] = {}
    for issue in issues:
        counts[issue.message] = counts.get(issue.message, 0) + 1
        indices = groups.setdefault(issue.message, [])
        if issue.record_index is not None:
            indices.append(issue.record_index)
    ordered = sorted(counts, key=lambda message: counts[message], reverse=True)[:limit]
    return tuple(
        IssueGroup(message=message, count=counts[message], affected_records=tuple(groups[message]))
        for message in ordered
    )


class ImportProgressTracker:
    """Mutable progress state for one import session.

    Invariant: processed == successful + failed + skipped <= total.
    """

    def __init__(
        self,
        session_id: str,
        total_records: int = 0,
        *,
        min_notify_interval: float = MIN_NOTIFY_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_id = session_id
        self._clock = clock
        self._min_notify_interval = max(min_notify_interval, MIN_NOTIFY_INTERVAL_SECONDS)
        self._callbacks: list[ProgressCallback] = []
        self._last_notified: float | None = None
        self._total = total_records
        self._init_state()

    def _init_state(self) -> None:
        self._status = ImportStatus.PREPARING
        self._phase = "Initializing"
        self._started_at = datetime.now(UTC)
        self._started_clock = self._clock()
        self._finished_at: datetime | None = None
        self._finished_clock: float | None = None
        self._successful = 0
        self._failed = 0
        self._skipped = 0
        self._current_record: int | None = None
        self._errors: list[ImportIssue] = []
        self._warnings: list[ImportIssue] = []
        self._summary: ImportSummary | None = None

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register an observer; returns a function that unsubscribes it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _notify(self, force: bool = False) -> None:
        if not self._callbacks:
            return
        now = self._clock()
        if (
            not force
            and self._last_notified is not None
            and now - self._last_notified < self._min_notify_interval
        ):
            return
        self._last_notified = now

        snapshot = self.snapshot()
        for callback in list(self._callbacks):
            try:
                callback(snapshot)
            except Exception:
                # A broken observer must not break the import
                logger.exception("Error in progress callback for %s", self.session_id)

    # ------------------------------------------------------------------
    # State changes
    # ------------------------------------------------------------------

    @property
    def status(self) -> ImportStatus:
        return self._status

    @property
    def is_cancelled(self) -> bool:
        return self._status == ImportStatus.CANCELLED

    @property
    def is_finished(self) -> bool:
        return self._status.is_terminal

    @property
    def processed(self) -> int:
        return self._successful + self._failed + self._skipped

    @property
    def failed(self) -> int:
        return self._failed

    def set_total(self, total_records: int) -> None:
        if total_records < self.processed:
            raise ValueError(
                f"Total {total_records} is below already processed count {self.processed}"
            )
        self._total = total_records
        self._notify()

    def set_phase(self, phase: str) -> None:
        self._phase = phase
        logger.debug("Import %s phase: %s", self.session_id, phase)
        self._notify()

    def set_status(self, status: ImportStatus) -> None:
        """Move to a new status. Terminal statuses are final and freeze the summary."""
        if self._status.is_terminal:
            logger.debug(
                "Ignoring status %s for finished import %s", status.value, self.session_id
            )
            return
        self._status = status
        if status.is_terminal:
            self._finished_at = datetime.now(UTC)
            self._finished_clock = self._clock()
            self._summary = self._build_summary()
            self._notify(force=True)
        else:
            self._notify()

    def cancel(self) -> None:
        """Request cancellation; takes effect at the orchestrator's next chunk boundary."""
        self.set_status(ImportStatus.CANCELLED)

    def reset(self) -> None:
        """Start over with zeroed counters, keeping subscribers and the total."""
        self._init_state()
        self._notify(force=True)

    def _ensure_capacity(self, count: int) -> None:
        if self.processed + count > self._total:
            raise ValueError(
                f"Recording {count} more records would exceed total {self._total} "
                f"(already processed {self.processed})"
            )

    def record_success(self, record_index: int | None = None) -> None:
        self._ensure_capacity(1)
        self._successful += 1
        self._current_record = record_index
        self._notify()

    def record_failure(self, record_index: int | None, issue: ImportIssue) -> None:
        self._ensure_capacity(1)
        self._failed += 1
        self._current_record = record_index
        self._errors.append(issue.at(record_index))
        self._notify()

    def record_skip(self, record_index: int | None, reason: str) -> None:
        self._ensure_capacity(1)
        self._skipped += 1
        self._current_record = record_index
        self._warnings.append(
            ImportIssue.warning(f"Record skipped: {reason}", code="record_skipped").at(record_index)
        )
        self._notify()

    def record_warning(self, record_index: int | None, issue: ImportIssue) -> None:
        """Attach an advisory issue; does not count as processing the record."""
        self._warnings.append(issue.at(record_index))
        self._notify()

    def batch_update(
        self,
        *,
        successful: int = 0,
        failed: int = 0,
        skipped: int = 0,
        errors: Iterable[ImportIssue] = (),
        warnings: Iterable[ImportIssue] = (),
    ) -> None:
        """Apply many record outcomes with a single notification."""
        self._ensure_capacity(successful + failed + skipped)
        self._successful += successful
        self._failed += failed
        self._skipped += skipped
        self._errors.extend(errors)
        self._warnings.extend(warnings)
        self._notify()

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _elapsed(self) -> float:
        end = self._finished_clock if self._finished_clock is not None else self._clock()
        return max(end - self._started_clock, 0.0)

    def _rates(self) -> tuple[float | None, float | None]:
        elapsed = self._elapsed()
        processed = self.processed
        if elapsed <= 0 or processed == 0:
            return None, None
        per_second = processed / elapsed
        remaining = max(self._total - processed, 0)
        return per_second, remaining / per_second

    def _build_summary(self) -> ImportSummary:
        elapsed = self._elapsed()
        return ImportSummary(
            duration_seconds=round(elapsed, 3),
            average_records_per_second=round(self.processed / elapsed, 3) if elapsed > 0 else 0.0,
            success_rate=self._successful / self._total if self._total else 0.0,
            common_errors=group_issues(self._errors),
            common_warnings=group_issues(self._warnings),
        )

    def snapshot(self) -> ImportProgress:
        per_second, eta = self._rates()
        return ImportProgress(
            session_id=self.session_id,
            status=self._status,
            phase=self._phase,
            started_at=self._started_at,
            finished_at=self._finished_at,
            total_records=self._total,
            processed_records=self.processed,
            successful_records=self._successful,
            failed_records=self._failed,
            skipped_records=self._skipped,
            current_record=self._current_record,
            records_per_second=per_second,
            eta_seconds=eta,
            errors=tuple(self._errors),
            warnings=tuple(self._warnings),
            summary=self._summary,
        )

    def close(self) -> None:
        """Drop all observers."""
        self._callbacks.clear()


class ProgressTrackerRegistry:
    """Session id -> tracker map, owned by whoever runs concurrent imports.

    Example usage:
        trackers = ProgressTrackerRegistry()
        tracker = trackers.create("import_1", total_records=10)
        trackers.get("import_1").snapshot()
    """

    def __init__(self, max_finished: int | None = None) -> None:
        """Initialize an empty registry.

        Args:
            max_finished: Finished sessions kept for later queries; None keeps all
        """
        self._trackers: dict[str, ImportProgressTracker] = {}
        self.max_finished = max_finished

    def create(self, session_id: str, total_records: int = 0, **kwargs) -> ImportProgressTracker:
        previous = self._trackers.pop(session_id, None)
        if previous is not None:
            logger.warning("Replacing existing progress tracker for %s", session_id)
            previous.close()
        self.prune()
        tracker = ImportProgressTracker(session_id, total_records, **kwargs)
        self._trackers[session_id] = tracker
        return tracker

    def prune(self) -> int:
        """Drop the oldest finished sessions beyond max_finished; returns how many went."""
        if self.max_finished is None:
            return 0
        finished = [sid for sid, tracker in self._trackers.items() if tracker.is_finished]
        excess = finished[: max(0, len(finished) - self.max_finished)]
        for session_id in excess:
            self.remove(session_id)
        return len(excess)

    def get(self, session_id: str) -> ImportProgressTracker | None:
        return self._trackers.get(session_id)

    def remove(self, session_id: str) -> None:
        tracker = self._trackers.pop(session_id, None)
        if tracker is not None:
            tracker.close()

    def all(self) -> list[ImportProgressTracker]:
        return list(self._trackers.values())

    def cleanup_finished(self) -> int:
        """Remove trackers in a terminal status; returns how many were removed."""
        finished = [sid for sid, tracker in self._trackers.items() if tracker.is_finished]
        for session_id in finished:
            self.remove(session_id)
        return len(finished)

    def __len__(self) -> int:
        return len(self._trackers)


class ProgressFormatter:
    """Human-readable progress strings."""

    @staticmethod
    def format_percentage(progress: ImportProgress) -> str:
        if progress.total_records == 0:
            return "0%"
        return f"{round(progress.processed_records / progress.total_records * 100)}%"

    @staticmethod
    def format_time_remaining(seconds: float | None) -> str:
        if not seconds or seconds <= 0:
            return "Unknown"
        total = round(seconds)
        if total < 60:
            return f"{total}s"
        minutes, secs = divmod(total, 60)
        if minutes < 60:
            return f"{minutes}m {secs}s"
        hours, minutes = divmod(minutes, 60)
        return f"{hours}h {minutes}m"

    @staticmethod
    def format_records_per_second(rate: float | None) -> str:
        if not rate:
            return "0 rec/s"
        if rate < 1:
            return f"{rate * 60:.1f} rec/min"
        return f"{round(rate)} rec/s"

    @classmethod
    def format_duration(cls, seconds: float) -> str:
        return cls.format_time_remaining(seconds)

    @staticmethod
    def format_success_rate(rate: float) -> str:
        return f"{round(rate * 100)}%"
