"""Progress aggregation for bulk edit jobs.

``ProgressReporter`` is a passive sink: it is handed to the queue (through the
coordinator) as the ``on_progress`` / ``on_error`` callbacks and derives the
figures a front end needs. It renders nothing itself.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from ..models.results import ChunkError, ProgressSnapshot

logger = structlog.get_logger(__name__)


@dataclass
class ErrorEntry:
    """One failure as shown to a user."""

    timestamp: str
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProgressSummary:
    """Final figures for a finished job."""

    total: int
    succeeded: int
    failed: int
    duration_seconds: float

    @property
    def has_errors(self) -> bool:
        return self.failed > 0


def format_eta(seconds: float) -> str:
    """
    Format an ETA the way the progress panel shows it.

    Args:
        seconds: Estimated seconds remaining

    Returns:
        str: "Less than a second", "N seconds", "N minutes" or "N hours"
    """
    if seconds < 1:
        return "Less than a second"
    if seconds < 60:
        return f"{round(seconds)} seconds"
    if seconds < 3600:
        return f"{round(seconds / 60)} minutes"
    return f"{round(seconds / 3600)} hours"


class ProgressReporter:
    """
    Derive percentage, ETA and an error log from queue progress events.

    Progress is measured in work items (chunks): ``total`` is the number of
    items submitted and an item counts as processed once it succeeded,
    exhausted its retries or was rejected by an abort.
    """

    def __init__(
        self,
        total: int,
        clock: Callable[[], float] = time.monotonic,
        listener: Callable[["ProgressReporter"], None] | None = None,
    ) -> None:
        """
        Initialize ProgressReporter.

        Args:
            total: Number of work items in the job
            clock: Monotonic clock in seconds, injectable for tests
            listener: Optional callback invoked after every update
        """
        self.total = total
        self._clock = clock
        self._listener = listener
        self.start_time = clock()
        self.last_snapshot: ProgressSnapshot | None = None
        self.error_log: list[ErrorEntry] = []

    def on_progress(self, snapshot: ProgressSnapshot) -> None:
        """Queue callback: record the latest snapshot."""
        self.last_snapshot = snapshot
        logger.debug(
            "Progress update",
            completed=snapshot.completed,
            errors=snapshot.errors,
            remaining=snapshot.remaining,
            active=snapshot.active,
            percentage=self.percentage,
        )
        self._notify()

    def on_error(self, chunk_error: ChunkError) -> None:
        """Queue callback: remember a terminal chunk failure."""
        self.error_log.append(
            ErrorEntry(
                timestamp=datetime.now().strftime("%H:%M:%S"),
                message=str(chunk_error.error) or type(chunk_error.error).__name__,
                metadata=dict(chunk_error.metadata),
            )
        )
        self._notify()

    def _notify(self) -> None:
        if self._listener is not None:
            self._listener(self)

    @property
    def completed(self) -> int:
        return self.last_snapshot.completed if self.last_snapshot else 0

    @property
    def failed(self) -> int:
        return self.last_snapshot.errors if self.last_snapshot else 0

    @property
    def aborted(self) -> int:
        return self.last_snapshot.aborted if self.last_snapshot else 0

    @property
    def processed(self) -> int:
        """Items that reached a terminal state, aborted ones included."""
        return self.completed + self.failed + self.aborted

    @property
    def percentage(self) -> int:
        """Whole-number percentage of processed items (100 for an empty job)."""
        if self.total <= 0:
            return 100
        return round(min(self.processed, self.total) / self.total * 100)

    @property
    def elapsed_seconds(self) -> float:
        return max(self._clock() - self.start_time, 0.0)

    def eta_seconds(self) -> float | None:
        """
        Estimate seconds remaining from the observed processing rate.

        Returns:
            float | None: None until at least one item has been processed
        """
        if self.processed == 0:
            return None
        elapsed = self.elapsed_seconds
        if elapsed <= 0:
            return 0.0
        rate = self.processed / elapsed
        remaining = max(self.total - self.processed, 0)
        return remaining / rate

    def eta_text(self) -> str | None:
        """ETA formatted for display, None when unknown."""
        eta = self.eta_seconds()
        if eta is None:
            return None
        return format_eta(eta)

    def summary(self) -> ProgressSummary:
        """Figures for the completion message."""
        return ProgressSummary(
            total=self.total,
            succeeded=self.completed,
            failed=self.failed,
            duration_seconds=round(self.elapsed_seconds, 3),
        )
