"""Units of work scheduled by the TaskQueue.

Each operation kind is a ``WorkItem`` subclass with a single ``execute``
coroutine. The queue owns the item while it is scheduled: it bumps
``attempts`` after every failed attempt and hands a fresh ``WorkContext`` to
each attempt.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..models.requests import SceneUpdateRequest

if TYPE_CHECKING:
    from ..client.executor import RemoteExecutor
    from ..client.response_models import MutationResponse


@dataclass(frozen=True)
class WorkContext:
    """
    Per-attempt information passed to ``WorkItem.execute``.

    Attributes:
        attempt: 1-based attempt number
        metadata: Read-only view of the item's metadata
        is_aborted: Returns True once the owning queue has been aborted
    """

    attempt: int
    metadata: dict[str, Any] = field(default_factory=dict)
    is_aborted: Callable[[], bool] = lambda: False


class WorkItem(ABC):
    """Base class for anything the TaskQueue can run."""

    def __init__(self, metadata: dict[str, Any] | None = None) -> None:
        self.metadata: dict[str, Any] = dict(metadata or {})
        self.attempts = 0

    @abstractmethod
    async def execute(self, context: WorkContext) -> Any:
        """Run one attempt. Raise to signal failure."""

    def describe(self) -> str:
        return type(self).__name__


class ChunkMutationItem(WorkItem):
    """Apply one chunk request (relationship or metadata) through a RemoteExecutor."""

    def __init__(
        self,
        request: SceneUpdateRequest,
        executor: "RemoteExecutor",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(metadata)
        self.request = request
        self.executor = executor

    async def execute(self, context: WorkContext) -> "MutationResponse":
        return await self.executor.execute(self.request)

    def describe(self) -> str:
        return f"chunk {self.request.batch_index}: {self.request.describe()}"


class CallableWorkItem(WorkItem):
    """Adapter for ad-hoc coroutine functions taking a WorkContext."""

    def __init__(
        self,
        fn: Callable[[WorkContext], Awaitable[Any]],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(metadata)
        self.fn = fn

    async def execute(self, context: WorkContext) -> Any:
        return await self.fn(context)

    def describe(self) -> str:
        return getattr(self.fn, "__name__", super().describe())
