"""Batch mutation engine: partitioning, work items, task queue, coordinator."""

from .coordinator import (
    BulkEditHandle,
    BulkEditOptions,
    BulkMutationCoordinator,
    apply_bulk_edit,
    apply_bulk_metadata,
)
from .partitioner import partition
from .task_queue import CompletedItem, SettledResult, SettleStatus, TaskQueue, settle
from .work_items import CallableWorkItem, ChunkMutationItem, WorkContext, WorkItem

__all__ = [
    "BulkEditHandle",
    "BulkEditOptions",
    "BulkMutationCoordinator",
    "CallableWorkItem",
    "ChunkMutationItem",
    "CompletedItem",
    "SettleStatus",
    "SettledResult",
    "TaskQueue",
    "WorkContext",
    "WorkItem",
    "apply_bulk_edit",
    "apply_bulk_metadata",
    "partition",
    "settle",
]
