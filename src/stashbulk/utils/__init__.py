"""Utility functions and exceptions."""

from .exceptions import (
    AbortedError,
    QueueBusyError,
    RemoteError,
    SemanticError,
    StashBulkError,
    TaskTimeoutError,
    TransientError,
    is_retryable,
)

__all__ = [
    "StashBulkError",
    "RemoteError",
    "TransientError",
    "TaskTimeoutError",
    "SemanticError",
    "AbortedError",
    "QueueBusyError",
    "is_retryable",
]
