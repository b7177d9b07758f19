"""Result types for bulk mutation jobs."""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .requests import BulkMode, RelationshipField, SceneMetadata, SceneUpdateRequest


@dataclass(frozen=True)
class ProgressSnapshot:
    """
    Queue counts emitted after every terminal work item resolution.

    Attributes:
        completed: Items that succeeded
        errors: Items that failed after exhausting retries
        remaining: Items still waiting in the pending list
        active: Items executing when the snapshot was taken
        aborted: Items rejected by an abort before they could finish
        timestamp: Epoch seconds when the snapshot was taken
    """

    completed: int
    errors: int
    remaining: int
    active: int
    aborted: int = 0
    timestamp: float = field(default_factory=time.time)

    @property
    def processed(self) -> int:
        """Items that reached a terminal state."""
        return self.completed + self.errors + self.aborted


@dataclass(frozen=True)
class QueueStats:
    """Point-in-time statistics for a TaskQueue."""

    completed: int
    errors: int
    pending: int
    active: int
    retrying: int = 0
    aborted: int = 0
    peak_active: int = 0

    @property
    def total(self) -> int:
        """All items the queue still knows about or has resolved."""
        return self.completed + self.errors + self.pending + self.active + self.retrying


@dataclass(frozen=True)
class ChunkError:
    """Payload for the on_error callback: one terminal work item failure."""

    metadata: dict[str, Any]
    error: BaseException


@dataclass
class ChunkFailure:
    """
    A chunk that did not ultimately succeed.

    Attributes:
        request: The chunk request that failed
        error: The final exception
        metadata: Queue metadata for the chunk (batch index, item count, ...)
    """

    request: SceneUpdateRequest
    error: BaseException
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def error_message(self) -> str:
        """
        Human-readable error with its type.

        Returns:
            str: e.g. "SemanticError: invalid tag id"
        """
        return f"{type(self.error).__name__}: {self.error}"


@dataclass
class OperationResult:
    """
    Aggregate outcome of one bulk edit.

    Built incrementally as chunk tasks resolve and finalized once every chunk
    has reached a terminal state.

    Attributes:
        job_id: Identifier of the bulk edit
        mode: Mutation mode applied
        field: Relationship field modified (None for metadata edits)
        total_records: Number of record ids submitted
        batch_size: Chunk size used for partitioning
        total_chunks: Number of chunks the records were split into
        succeeded_chunks: Chunks that completed successfully
        failed_chunks: Chunks that did not succeed, with their errors
        acknowledged_ids: Record ids the server confirmed as updated
        started_at: Start timestamp
        completed_at: Completion timestamp
        metadata: Values written by a metadata edit
    """

    job_id: str
    mode: BulkMode
    field: RelationshipField | None
    total_records: int
    batch_size: int
    total_chunks: int
    succeeded_chunks: int = 0
    failed_chunks: list[ChunkFailure] = field(default_factory=list)
    acknowledged_ids: list[str] = field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    metadata: SceneMetadata | None = None

    @property
    def target(self) -> str:
        """What the edit changes: the relationship field or the metadata fields."""
        if self.field is not None:
            return self.field.value
        if self.metadata is not None:
            return ", ".join(self.metadata.field_names)
        return ""

    @property
    def operation(self) -> str:
        """e.g. "ADD tag_ids" or "SET rating100, organized"."""
        return f"{self.mode.value} {self.target}"

    def record_success(self, acknowledged_ids: list[str] | None = None) -> None:
        """Count a successful chunk and remember the ids the server confirmed."""
        self.succeeded_chunks += 1
        if acknowledged_ids:
            self.acknowledged_ids.extend(acknowledged_ids)

    def record_failure(
        self,
        request: SceneUpdateRequest,
        error: BaseException,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Attach a failed chunk to the result."""
        self.failed_chunks.append(ChunkFailure(request, error, dict(metadata or {})))

    def finalize(self) -> "OperationResult":
        """Stamp completion time and order failures by chunk position."""
        self.failed_chunks.sort(key=lambda failure: failure.request.batch_index)
        self.completed_at = datetime.now()
        return self

    @property
    def processed_item_estimate(self) -> int:
        """
        Approximate number of records processed.

        This is ``succeeded_chunks * batch_size``. It overcounts when the last
        chunk is short; use ``acknowledged_count`` for the exact figure.
        """
        return self.succeeded_chunks * self.batch_size

    @property
    def acknowledged_count(self) -> int:
        """Exact number of records the server acknowledged."""
        return len(self.acknowledged_ids)

    @property
    def errors(self) -> list[BaseException]:
        """Final exceptions of every chunk that did not succeed."""
        return [failure.error for failure in self.failed_chunks]

    @property
    def success(self) -> bool:
        """True when every chunk succeeded."""
        return not self.failed_chunks and self.succeeded_chunks == self.total_chunks

    @property
    def duration_seconds(self) -> float:
        """Elapsed time between start and completion (0 if not finished)."""
        if self.started_at is None or self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def get_summary(self) -> str:
        """
        Get a human-readable summary.

        Returns:
            str: Summary string with job ID, chunk counts and record counts.
        """
        return (
            f"Job {self.job_id}: {self.operation} - "
            f"{self.succeeded_chunks}/{self.total_chunks} chunks succeeded, "
            f"{len(self.failed_chunks)} failed, "
            f"{self.acknowledged_count}/{self.total_records} records acknowledged"
        )
