"""Bulk Mutation Coordinator - Turn one bulk edit into chunk tasks.

Two kinds of edit share this path: relationship edits (tags, performers,
galleries, studio) and scalar metadata edits (rating, date, organized,
details). They differ only in the request built for each chunk.

Execution Strategy:
1. Small edits (``len(ids) <= batch_size``) go straight to the RemoteExecutor
   as a single chunk request. No queue, no chunk-level retry.
2. Larger edits are partitioned into contiguous chunks, each wrapped in a
   ChunkMutationItem and submitted to a fresh TaskQueue.
3. Once every chunk has settled the outcomes are folded into one
   OperationResult. Chunk failures are recorded, never raised.

Every job gets its own queue and an explicit BulkEditHandle, so callers that
want to abort or poll a running edit hold a reference to it instead of looking
it up in shared state.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog

from ..config import BulkConfig, QueueConfig
from ..constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONCURRENCY,
    DEFAULT_QUEUE_RETRY_COUNT,
    DEFAULT_TASK_TIMEOUT,
)
from ..models.requests import (
    BulkMode,
    ChunkRequest,
    MetadataChunkRequest,
    RelationshipField,
    SceneMetadata,
    SceneUpdateRequest,
)
from ..models.results import ChunkError, OperationResult, ProgressSnapshot, QueueStats
from ..observability.logger import LogContext
from ..observability.metrics import MetricsCollector
from .partitioner import partition
from .task_queue import ErrorCallback, ProgressCallback, TaskQueue, settle
from .work_items import ChunkMutationItem

if TYPE_CHECKING:
    from ..client.executor import RemoteExecutor

logger = structlog.get_logger(__name__)


@dataclass
class BulkEditOptions:
    """
    Tuning knobs for ``apply_bulk_edit``.

    Attributes:
        concurrency: Chunks in flight at once
        retry_count: Chunk-level retries after the first attempt
        timeout: Per-attempt chunk timeout in seconds
        batch_size: Records per chunk
        on_progress: Called with a ProgressSnapshot after every finished chunk
        on_error: Called with a ChunkError for every chunk that finally failed
    """

    concurrency: int = DEFAULT_CONCURRENCY
    retry_count: int = DEFAULT_QUEUE_RETRY_COUNT
    timeout: float = DEFAULT_TASK_TIMEOUT
    batch_size: int = DEFAULT_BATCH_SIZE
    on_progress: ProgressCallback | None = None
    on_error: ErrorCallback | None = None

    def queue_config(self) -> QueueConfig:
        return QueueConfig(
            concurrency=self.concurrency,
            retry_count=self.retry_count,
            task_timeout=self.timeout,
        )

    def bulk_config(self) -> BulkConfig:
        return BulkConfig(batch_size=self.batch_size)


class BulkEditHandle:
    """
    Reference to one running bulk edit.

    ``queue`` is None for edits small enough to bypass the queue; such edits
    cannot be aborted once started.
    """

    def __init__(
        self,
        job_id: str,
        task: "asyncio.Task[OperationResult]",
        queue: TaskQueue | None = None,
    ) -> None:
        self.job_id = job_id
        self.queue = queue
        self._task = task

    def abort(self) -> int:
        """
        Reject all chunks that have not started yet.

        Returns:
            Number of pending chunks rejected
        """
        if self.queue is None:
            return 0
        logger.info("Aborting bulk edit", job_id=self.job_id)
        return self.queue.abort()

    def stats(self) -> QueueStats | None:
        """Queue statistics, None for direct (unqueued) edits."""
        return self.queue.get_stats() if self.queue else None

    @property
    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> OperationResult:
        """Wait for every chunk to settle and return the aggregate result."""
        return await self._task


class BulkMutationCoordinator:
    """
    Apply one edit across many records through partitioning and a TaskQueue.

    A coordinator can run several jobs over its lifetime; each job gets a new
    queue so their state never mixes.
    """

    def __init__(
        self,
        executor: "RemoteExecutor",
        bulk_config: BulkConfig | None = None,
        queue_config: QueueConfig | None = None,
        metrics: MetricsCollector | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            executor: Executor used for every chunk
            bulk_config: Partitioning settings
            queue_config: Concurrency, retry and timeout settings for the queue
            metrics: Optional collector shared with the queue
            sleep: Coroutine used for queue backoff waits, injectable for tests
        """
        self.executor = executor
        self.bulk_config = bulk_config or BulkConfig()
        self.queue_config = queue_config or QueueConfig()
        self.metrics = metrics
        self._sleep = sleep

    @property
    def batch_size(self) -> int:
        return self.bulk_config.batch_size

    def start(
        self,
        ids: Sequence[str | int],
        related_ids: Sequence[str | int],
        mode: BulkMode | str,
        field: RelationshipField | str = RelationshipField.TAGS,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> BulkEditHandle:
        """
        Start a relationship edit and return immediately.

        Must be called from a running event loop. Chunks are submitted before
        this returns, so ``handle.abort()`` right after ``start`` rejects every
        chunk that did not get a concurrency slot.

        Args:
            ids: Record identifiers to edit
            related_ids: Related entity identifiers to add, remove or set
            mode: ADD, REMOVE or SET
            field: Relationship field to modify
            on_progress: Called with a ProgressSnapshot after every finished chunk
            on_error: Called with a ChunkError for every chunk that finally failed

        Returns:
            BulkEditHandle for the running job

        Raises:
            ValueError: If the mode/field combination is invalid
        """
        mode = BulkMode(mode)
        field = RelationshipField(field)
        related = tuple(related_ids)

        def make_request(chunk: Sequence[str | int], batch_index: int) -> ChunkRequest:
            return ChunkRequest(tuple(chunk), related, mode, field, batch_index=batch_index)

        return self._launch(ids, make_request, mode, field, None, on_progress, on_error)

    def start_metadata(
        self,
        ids: Sequence[str | int],
        metadata: SceneMetadata,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> BulkEditHandle:
        """
        Start a metadata edit and return immediately.

        Every scene gets the same values for the fields set in ``metadata``.
        Partitioning, retry and abort behave exactly as for ``start``.
        """

        def make_request(chunk: Sequence[str | int], batch_index: int) -> MetadataChunkRequest:
            return MetadataChunkRequest(tuple(chunk), metadata, batch_index=batch_index)

        return self._launch(ids, make_request, BulkMode.SET, None, metadata, on_progress, on_error)

    async def apply(
        self,
        ids: Sequence[str | int],
        related_ids: Sequence[str | int],
        mode: BulkMode | str,
        field: RelationshipField | str = RelationshipField.TAGS,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> OperationResult:
        """Run a relationship edit to completion. See ``start`` for arguments."""
        handle = self.start(ids, related_ids, mode, field, on_progress, on_error)
        return await handle.wait()

    async def apply_metadata(
        self,
        ids: Sequence[str | int],
        metadata: SceneMetadata,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> OperationResult:
        """Run a metadata edit to completion."""
        handle = self.start_metadata(ids, metadata, on_progress, on_error)
        return await handle.wait()

    def _launch(
        self,
        ids: Sequence[str | int],
        make_request: Callable[[Sequence[str | int], int], SceneUpdateRequest],
        mode: BulkMode,
        field: RelationshipField | None,
        metadata: SceneMetadata | None,
        on_progress: ProgressCallback | None,
        on_error: ErrorCallback | None,
    ) -> BulkEditHandle:
        job_id = str(uuid.uuid4())
        result = OperationResult(
            job_id=job_id,
            mode=mode,
            field=field,
            total_records=len(ids),
            batch_size=self.batch_size,
            total_chunks=0,
            started_at=datetime.now(),
            metadata=metadata,
        )

        with LogContext(job_id=job_id):
            if not ids:
                logger.info("Bulk edit has no records, nothing to do")
                task = asyncio.create_task(self._finish_empty(result))
                return BulkEditHandle(job_id, task)

            if len(ids) <= self.batch_size:
                request = make_request(ids, 0)
                result.total_chunks = 1
                logger.info(
                    "Applying bulk edit directly",
                    records=len(ids),
                    description=request.describe(),
                )
                task = asyncio.create_task(
                    self._run_direct(request, result, on_progress, on_error)
                )
                return BulkEditHandle(job_id, task)

            chunks = partition(list(ids), self.batch_size)
            items = [
                ChunkMutationItem(
                    make_request(chunk, i),
                    self.executor,
                    metadata={
                        "batch_index": i,
                        "total_batches": len(chunks),
                        "item_count": len(chunk),
                    },
                )
                for i, chunk in enumerate(chunks)
            ]
            result.total_chunks = len(items)

            queue = TaskQueue(
                self.queue_config,
                on_progress=on_progress,
                on_error=on_error,
                metrics=self.metrics,
                sleep=self._sleep,
            )
            logger.info(
                "Submitting bulk edit",
                records=len(ids),
                chunks=len(items),
                batch_size=self.batch_size,
                concurrency=queue.concurrency,
                operation=result.operation,
            )
            futures = queue.submit_all(items)
            task = asyncio.create_task(self._collect(items, futures, result))
            return BulkEditHandle(job_id, task, queue)

    async def _finish_empty(self, result: OperationResult) -> OperationResult:
        return result.finalize()

    async def _run_direct(
        self,
        request: SceneUpdateRequest,
        result: OperationResult,
        on_progress: ProgressCallback | None,
        on_error: ErrorCallback | None,
    ) -> OperationResult:
        metadata = {"batch_index": 0, "total_batches": 1, "item_count": request.size}
        try:
            response = await self.executor.execute(request)
        except Exception as e:
            logger.error(
                "Bulk edit failed",
                error_type=type(e).__name__,
                error=str(e),
            )
            result.record_failure(request, e, metadata)
            _invoke(on_error, ChunkError(metadata, e))
            _invoke(on_progress, ProgressSnapshot(completed=0, errors=1, remaining=0, active=0))
        else:
            result.record_success(response.acknowledged_ids)
            _invoke(on_progress, ProgressSnapshot(completed=1, errors=0, remaining=0, active=0))

        return self._finalize(result)

    async def _collect(
        self,
        items: list[ChunkMutationItem],
        futures: list["asyncio.Future[Any]"],
        result: OperationResult,
    ) -> OperationResult:
        outcomes = await settle(items, futures)
        for item, settled in zip(items, outcomes, strict=True):
            if settled.fulfilled:
                result.record_success(settled.value.acknowledged_ids)
            else:
                result.record_failure(item.request, settled.reason, item.metadata)

        return self._finalize(result)

    def _finalize(self, result: OperationResult) -> OperationResult:
        result.finalize()
        log = logger.info if result.success else logger.warning
        log(
            "Bulk edit finished",
            succeeded_chunks=result.succeeded_chunks,
            failed_chunks=len(result.failed_chunks),
            acknowledged=result.acknowledged_count,
            total_records=result.total_records,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result


def _coordinator_for(
    options: BulkEditOptions,
    executor: "RemoteExecutor",
    metrics: MetricsCollector | None,
) -> BulkMutationCoordinator:
    return BulkMutationCoordinator(
        executor,
        bulk_config=options.bulk_config(),
        queue_config=options.queue_config(),
        metrics=metrics,
    )


def _invoke(callback: Callable[[Any], None] | None, payload: Any) -> None:
    if callback is None:
        return
    try:
        callback(payload)
    except Exception as e:
        logger.error("Callback failed", error=str(e), exc_info=True)


async def apply_bulk_edit(
    record_ids: Sequence[str | int],
    related_ids: Sequence[str | int],
    mode: BulkMode | str,
    options: BulkEditOptions | None = None,
    field: RelationshipField | str = RelationshipField.TAGS,
    *,
    executor: "RemoteExecutor",
    metrics: MetricsCollector | None = None,
) -> OperationResult:
    """
    Apply one edit to many records.

    Convenience wrapper that builds a BulkMutationCoordinator from
    ``options`` and runs the edit to completion.

    Args:
        record_ids: Record identifiers to edit
        related_ids: Related entity identifiers
        mode: ADD, REMOVE or SET
        options: Concurrency, retry, timeout, batch size and callbacks
        field: Relationship field to modify
        executor: Executor used for every chunk
        metrics: Optional metrics collector

    Returns:
        OperationResult for the edit
    """
    opts = options or BulkEditOptions()
    coordinator = _coordinator_for(opts, executor, metrics)
    return await coordinator.apply(
        record_ids,
        related_ids,
        mode,
        field,
        on_progress=opts.on_progress,
        on_error=opts.on_error,
    )


async def apply_bulk_metadata(
    record_ids: Sequence[str | int],
    metadata: SceneMetadata,
    options: BulkEditOptions | None = None,
    *,
    executor: "RemoteExecutor",
    metrics: MetricsCollector | None = None,
) -> OperationResult:
    """
    Write the same scalar metadata to many records.

    Args:
        record_ids: Record identifiers to edit
        metadata: Fields to overwrite; unset fields are left alone
        options: Concurrency, retry, timeout, batch size and callbacks
        executor: Executor used for every chunk
        metrics: Optional metrics collector

    Returns:
        OperationResult for the edit
    """
    opts = options or BulkEditOptions()
    coordinator = _coordinator_for(opts, executor, metrics)
    return await coordinator.apply_metadata(
        record_ids,
        metadata,
        on_progress=opts.on_progress,
        on_error=opts.on_error,
    )
