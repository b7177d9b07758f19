"""Task Queue - Bounded-concurrency scheduler with chunk-level retry.

ARCHITECTURE NOTE:
The queue runs on a single asyncio event loop. All state (pending deque,
counters, accumulators) is mutated only between awaits, so every mutation is
atomic without a lock. Concurrency is a manual counter rather than a
Semaphore: ``active_count`` is incremented by ``_process_next`` when an item
starts and decremented exactly once by the coroutine running that item.

Retry Layering:
The RemoteExecutor already retries individual requests with short backoff.
This queue adds a second, coarser policy around whole work items: fewer
attempts, longer (capped) backoff, and each retry is visible to progress
reporting. A failed item waits out its backoff outside the pending list and
is then re-inserted at the FRONT, so retries are scheduled before any work
that has not started yet.

Timeouts:
Each attempt runs under ``task_timeout``. With ``cancel_on_timeout`` (the
default) an expired attempt is cancelled and fully unwound before the retry
is scheduled. With ``cancel_on_timeout=False`` the attempt keeps running
detached while the retry proceeds, which can apply a non-idempotent mutation
twice.
"""

import asyncio
import functools
from collections import deque
from collections.abc import Awaitable, Callable, Coroutine, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from ..config import QueueConfig
from ..models.results import ChunkError, ProgressSnapshot, QueueStats
from ..observability.metrics import MetricsCollector
from ..utils.exceptions import AbortedError, QueueBusyError, TaskTimeoutError, is_retryable
from .work_items import WorkContext, WorkItem

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[ProgressSnapshot], None]
ErrorCallback = Callable[[ChunkError], None]


class SettleStatus(str, Enum):
    """Terminal state of a submitted item."""

    FULFILLED = "fulfilled"
    REJECTED = "rejected"


@dataclass
class SettledResult:
    """Outcome of one submitted item, in submission order."""

    item: WorkItem
    status: SettleStatus
    value: Any = None
    reason: BaseException | None = None

    @property
    def fulfilled(self) -> bool:
        return self.status is SettleStatus.FULFILLED


@dataclass
class CompletedItem:
    """A successful item as kept in ``TaskQueue.results``."""

    metadata: dict[str, Any]
    result: Any


@dataclass
class _QueueEntry:
    item: WorkItem
    future: asyncio.Future[Any]


async def settle(
    items: Sequence[WorkItem], futures: Sequence[Awaitable[Any]]
) -> list[SettledResult]:
    """
    Wait for every future and pair each outcome with its item.

    Never raises for an individual failure; rejected items carry their
    exception in ``reason``.

    Args:
        items: Submitted items
        futures: Handles returned by ``submit_all`` (same order)

    Returns:
        list of SettledResult in submission order
    """
    outcomes = await asyncio.gather(*futures, return_exceptions=True)
    settled: list[SettledResult] = []
    for item, outcome in zip(items, outcomes, strict=True):
        if isinstance(outcome, BaseException):
            settled.append(SettledResult(item, SettleStatus.REJECTED, reason=outcome))
        else:
            settled.append(SettledResult(item, SettleStatus.FULFILLED, value=outcome))
    return settled


class TaskQueue:
    """
    Run work items with at most ``concurrency`` in flight.

    Features:
    - FIFO scheduling, retries jump ahead of not-yet-started work
    - Per-attempt watchdog timeout
    - Capped exponential backoff between attempts
    - Progress snapshot after every terminal resolution
    - Cooperative abort for pending work
    """

    def __init__(
        self,
        config: QueueConfig | None = None,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
        metrics: MetricsCollector | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the queue.

        Args:
            config: Concurrency, retry and timeout settings
            on_progress: Called with a ProgressSnapshot after every terminal item
            on_error: Called with a ChunkError for every item that finally failed
            metrics: Optional collector for item outcomes and latency
            sleep: Coroutine used for backoff waits, injectable for tests
        """
        cfg = config or QueueConfig()

        self.config = cfg
        self.concurrency = cfg.concurrency
        self.retry_count = cfg.retry_count
        self.task_timeout = cfg.task_timeout

        self.on_progress = on_progress
        self.on_error = on_error
        self.metrics = metrics
        self._sleep = sleep

        self._pending: deque[_QueueEntry] = deque()
        self.active_count = 0
        self.retrying_count = 0  # Items waiting out a backoff delay
        self.aborted = False
        self.aborted_count = 0
        self.peak_active = 0
        self.results: list[CompletedItem] = []
        self.errors: list[ChunkError] = []

        # Strong references so running tasks are not garbage collected
        self._tasks: set[asyncio.Task[Any]] = set()
        self._detached: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def enqueue(self, item: WorkItem) -> asyncio.Future[Any]:
        """
        Submit one item.

        Args:
            item: Work to run

        Returns:
            Future resolved with the item's result or rejected with its final error

        Raises:
            AbortedError: If the queue has been aborted
        """
        if self.aborted:
            raise AbortedError("TaskQueue has been aborted")

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending.append(_QueueEntry(item, future))
        self._process_next()
        return future

    def submit_all(self, items: Iterable[WorkItem]) -> list[asyncio.Future[Any]]:
        """
        Submit items in order without waiting.

        Each item's metadata gets its submission ``index``. Items submitted to
        an aborted queue receive an already-rejected future.
        """
        loop = asyncio.get_running_loop()
        futures: list[asyncio.Future[Any]] = []
        for index, item in enumerate(items):
            item.metadata.setdefault("index", index)
            try:
                futures.append(self.enqueue(item))
            except AbortedError as e:
                rejected: asyncio.Future[Any] = loop.create_future()
                rejected.set_exception(e)
                futures.append(rejected)
        return futures

    async def enqueue_all(self, items: Sequence[WorkItem]) -> list[SettledResult]:
        """
        Submit items and wait until every one of them has settled.

        Args:
            items: Work to run

        Returns:
            list of SettledResult in submission order
        """
        return await settle(items, self.submit_all(items))

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def abort(self) -> int:
        """
        Stop scheduling and reject everything still pending.

        Items already executing run to completion (success, failure or
        timeout) but will not be retried. Items waiting out a backoff are
        rejected with AbortedError when their delay elapses.

        Returns:
            Number of pending items rejected
        """
        self.aborted = True
        rejected = 0
        while self._pending:
            self._reject_aborted(self._pending.popleft())
            rejected += 1

        logger.warning(
            "Task queue aborted",
            rejected=rejected,
            active=self.active_count,
            retrying=self.retrying_count,
        )
        if rejected:
            self._emit_progress()
        return rejected

    def reset(self) -> None:
        """
        Clear all state so the queue can serve another job.

        Raises:
            QueueBusyError: If items are executing or waiting to retry
        """
        in_flight = self.active_count + self.retrying_count
        if in_flight:
            raise QueueBusyError(in_flight)

        self._pending.clear()
        self.aborted = False
        self.aborted_count = 0
        self.peak_active = 0
        self.results = []
        self.errors = []
        logger.debug("Task queue reset")

    def get_stats(self) -> QueueStats:
        """Current queue counts."""
        return QueueStats(
            completed=len(self.results),
            errors=len(self.errors),
            pending=len(self._pending),
            active=self.active_count,
            retrying=self.retrying_count,
            aborted=self.aborted_count,
            peak_active=self.peak_active,
        )

    def backoff_delay(self, attempts: int) -> float:
        """
        Delay before re-queueing an item that has failed ``attempts`` times.

        Returns:
            min(base_delay * 2^(attempts-1), delay_cap)
        """
        return min(self.config.base_delay * (2 ** (attempts - 1)), self.config.delay_cap)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _process_next(self) -> None:
        while not self.aborted and self.active_count < self.concurrency and self._pending:
            entry = self._pending.popleft()
            if entry.future.done():
                # Caller stopped waiting (cancelled the handle)
                continue

            self.active_count += 1
            self.peak_active = max(self.peak_active, self.active_count)
            if self.metrics:
                self.metrics.update_active(self.active_count)
            self._spawn(self._run(entry))

    async def _run(self, entry: _QueueEntry) -> None:
        item = entry.item
        context = WorkContext(
            attempt=item.attempts + 1,
            metadata=dict(item.metadata),
            is_aborted=lambda: self.aborted,
        )
        loop = asyncio.get_running_loop()
        started = loop.time()

        try:
            result = await self._execute_with_timeout(item, context)
        except asyncio.CancelledError:
            self._release_slot()
            if not entry.future.done():
                entry.future.cancel()
            raise
        except Exception as exc:
            self._record_latency(started)
            self._handle_failure(entry, exc)
        else:
            self._record_latency(started)
            self._handle_success(entry, result)

        self._process_next()

    async def _execute_with_timeout(self, item: WorkItem, context: WorkContext) -> Any:
        task = asyncio.ensure_future(item.execute(context))
        try:
            done, _ = await asyncio.wait({task}, timeout=self.task_timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task in done:
            return task.result()

        if self.config.cancel_on_timeout:
            task.cancel()
            # Let the cancelled attempt unwind before a retry can start
            await asyncio.wait({task})
            if not task.cancelled():
                task.exception()
        else:
            self._detach(task, item)

        if self.metrics:
            self.metrics.count_item("timeout")
        raise TaskTimeoutError(self.task_timeout)

    def _detach(self, task: asyncio.Task[Any], item: WorkItem) -> None:
        self._detached.add(task)
        task.add_done_callback(functools.partial(self._on_detached_done, item))
        logger.warning(
            "Timed-out work item left running in background",
            item=item.describe(),
            metadata=item.metadata,
        )

    def _on_detached_done(self, item: WorkItem, task: asyncio.Task[Any]) -> None:
        self._detached.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        logger.warning(
            "Background attempt finished after its timeout",
            item=item.describe(),
            succeeded=exc is None,
            error=str(exc) if exc else None,
        )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _handle_success(self, entry: _QueueEntry, result: Any) -> None:
        item = entry.item
        self.results.append(CompletedItem(dict(item.metadata), result))
        if not entry.future.done():
            entry.future.set_result(result)
        if self.metrics:
            self.metrics.count_item("succeeded")

        logger.debug("Work item completed", item=item.describe(), attempts=item.attempts + 1)
        self._emit_progress()
        self._release_slot()

    def _handle_failure(self, entry: _QueueEntry, exc: Exception) -> None:
        item = entry.item
        item.attempts += 1

        if item.attempts <= self.retry_count and not self.aborted and is_retryable(exc):
            delay = self.backoff_delay(item.attempts)
            logger.warning(
                "Work item failed, scheduling retry",
                item=item.describe(),
                attempt=item.attempts,
                max_attempts=self.retry_count + 1,
                delay_seconds=delay,
                error=str(exc),
            )
            if self.metrics:
                self.metrics.count_item("retried")
            self.retrying_count += 1
            self._release_slot()
            self._spawn(self._requeue_after(entry, delay))
            return

        chunk_error = ChunkError(dict(item.metadata), exc)
        self.errors.append(chunk_error)
        if self.metrics:
            self.metrics.count_item("failed")

        logger.error(
            "Work item failed",
            item=item.describe(),
            attempts=item.attempts,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        self._notify_error(chunk_error)
        if not entry.future.done():
            entry.future.set_exception(exc)
        self._emit_progress()
        self._release_slot()

    async def _requeue_after(self, entry: _QueueEntry, delay: float) -> None:
        try:
            await self._sleep(delay)
        except asyncio.CancelledError:
            self.retrying_count -= 1
            if not entry.future.done():
                entry.future.cancel()
            raise
        self.retrying_count -= 1

        if self.aborted:
            self._reject_aborted(entry)
            self._emit_progress()
            return

        self._pending.appendleft(entry)
        self._process_next()

    def _reject_aborted(self, entry: _QueueEntry) -> None:
        self.aborted_count += 1
        if self.metrics:
            self.metrics.count_item("aborted")
        if not entry.future.done():
            entry.future.set_exception(AbortedError())

    def _record_latency(self, started: float) -> None:
        if self.metrics:
            elapsed_ms = (asyncio.get_running_loop().time() - started) * 1000
            self.metrics.record_item_latency(elapsed_ms)

    def _release_slot(self) -> None:
        self.active_count -= 1
        if self.metrics:
            self.metrics.update_active(self.active_count)

    def _emit_progress(self) -> None:
        if self.on_progress is None:
            return
        snapshot = ProgressSnapshot(
            completed=len(self.results),
            errors=len(self.errors),
            remaining=len(self._pending),
            active=self.active_count,
            aborted=self.aborted_count,
        )
        try:
            self.on_progress(snapshot)
        except Exception as e:
            logger.error("Progress callback failed", error=str(e), exc_info=True)

    def _notify_error(self, chunk_error: ChunkError) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(chunk_error)
        except Exception as e:
            logger.error("Error callback failed", error=str(e), exc_info=True)
