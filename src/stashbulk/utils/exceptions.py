"""Custom exceptions for stashbulk.

Exception Hierarchy:
-------------------
StashBulkError (base)
├── RemoteError (base for failures talking to the Stash server)
│   ├── TransientError          # Network failure, non-2xx status, request timeout
│   │   └── TaskTimeoutError    # Queue-level watchdog fired ("Task timeout")
│   └── SemanticError           # Server understood the request and rejected it
├── AbortedError                # Item was still pending when the queue was aborted
└── QueueBusyError              # reset() called while items are in flight

Retry Policy:
------------
Every exception carries a ``retryable`` class attribute:

- TransientError / TaskTimeoutError: retried by the RemoteExecutor (request level)
  and again by the TaskQueue (chunk level).
- SemanticError: retried at neither layer. Resubmitting a rejected request
  verbatim cannot succeed.
- AbortedError: never retried.

Exceptions that are not part of this hierarchy (bugs in a work item, unexpected
library errors) are treated as retryable by the queue, so a flaky callable gets
the same chance as a flaky request.

Usage Guidelines:
----------------
1. Let httpx errors be translated at the client boundary
   (``stashbulk.client.executor``); nothing above it should see httpx types.
2. Use ``is_retryable(exc)`` instead of isinstance chains when deciding
   whether to schedule another attempt.
3. Include context in exceptions: status code for transport failures, the raw
   GraphQL error list for rejections.
"""

from typing import Any


class StashBulkError(Exception):
    """Base exception for all stashbulk errors."""

    retryable: bool = False


class RemoteError(StashBulkError):
    """Base exception for errors returned while talking to the Stash server."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """
        Initialize RemoteError.

        Args:
            message: Error message.
            status_code: Optional HTTP status code.
        """
        super().__init__(message)
        self.status_code = status_code


class TransientError(RemoteError):
    """Raised for failures presumed recoverable by resending the same request."""

    retryable = True

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        timeout: bool = False,
    ) -> None:
        """
        Initialize TransientError.

        Args:
            message: Error message.
            status_code: HTTP status code when the server answered with non-2xx.
            timeout: Whether the failure was a timeout.
        """
        super().__init__(message, status_code=status_code)
        self.timeout = timeout


class TaskTimeoutError(TransientError):
    """Raised when a work item exceeds the queue-level task timeout."""

    def __init__(self, timeout_seconds: float) -> None:
        """
        Initialize TaskTimeoutError.

        Args:
            timeout_seconds: The queue timeout that expired.
        """
        super().__init__("Task timeout", timeout=True)
        self.timeout_seconds = timeout_seconds


class SemanticError(RemoteError):
    """Raised when the server accepted the request but rejected it as invalid."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        """
        Initialize SemanticError.

        Args:
            message: Primary error message reported by the server.
            errors: Raw GraphQL error objects.
        """
        super().__init__(message)
        self.errors = errors or []


class AbortedError(StashBulkError):
    """Raised for work items that were still pending when the queue was aborted."""

    def __init__(self, message: str = "Queue aborted") -> None:
        super().__init__(message)


class QueueBusyError(StashBulkError):
    """Raised when a destructive queue operation is attempted with work in flight."""

    def __init__(self, in_flight: int) -> None:
        """
        Initialize QueueBusyError.

        Args:
            in_flight: Number of items currently executing or waiting to retry.
        """
        super().__init__(f"Cannot reset queue while {in_flight} item(s) are in flight")
        self.in_flight = in_flight


def is_retryable(exc: BaseException) -> bool:
    """
    Decide whether a failed attempt may be scheduled again.

    Args:
        exc: The exception raised by the attempt.

    Returns:
        bool: False for errors that declare themselves non-retryable, True otherwise.
    """
    if isinstance(exc, StashBulkError):
        return exc.retryable
    return True
