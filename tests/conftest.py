"""Pytest configuration and shared fixtures.

Fixtures are organized by category:
- Config fixtures: Stash and queue configuration for tests
- Time fixtures: Sleep replacements so backoff never waits on the wall clock
- Executor fixtures: In-memory stand-ins for RemoteExecutor
"""

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from stashbulk.client.response_models import MutationResponse
from stashbulk.config import QueueConfig, StashConfig
from stashbulk.models.requests import ChunkRequest

STASH_URL = "http://stash.test:9999"
GRAPHQL_URL = f"{STASH_URL}/graphql"


# =============================================================================
# Config Fixtures
# =============================================================================


@pytest.fixture
def stash_url() -> str:
    return STASH_URL


@pytest.fixture
def stash_config() -> StashConfig:
    """Stash config with an API key and the default retry policy."""
    return StashConfig(base_url=STASH_URL, api_key="secret-key")


@pytest.fixture
def queue_config() -> QueueConfig:
    """Queue config with a short task timeout."""
    return QueueConfig(concurrency=4, retry_count=2, task_timeout=5.0)


# =============================================================================
# Time Fixtures
# =============================================================================


class RecordingSleep:
    """Sleep replacement that records requested delays and yields to the loop once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


# =============================================================================
# Executor Fixtures
# =============================================================================


class FakeExecutor:
    """
    In-memory RemoteExecutor.

    Acknowledges every record of every chunk. ``failures`` maps a chunk's
    batch_index to an exception raised on every attempt, or to a list of
    exceptions raised on successive attempts before succeeding.
    """

    def __init__(self, failures: dict[int, Any] | None = None, latency: float = 0.0) -> None:
        self.failures = failures or {}
        self.latency = latency
        self.calls: list[ChunkRequest] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    def calls_for(self, batch_index: int) -> int:
        return sum(1 for request in self.calls if request.batch_index == batch_index)

    async def execute(self, request: ChunkRequest) -> MutationResponse:
        self.calls.append(request)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.latency)
            failure = self.failures.get(request.batch_index)
            if isinstance(failure, list):
                if failure:
                    raise failure.pop(0)
            elif failure is not None:
                raise failure
            return MutationResponse.from_data(
                {"bulkSceneUpdate": [{"id": record_id} for record_id in request.record_ids]},
                "bulkSceneUpdate",
            )
        finally:
            self.in_flight -= 1


@pytest.fixture
def make_executor() -> Callable[..., FakeExecutor]:
    """Factory for FakeExecutor instances."""
    return FakeExecutor


@pytest.fixture
def scene_ids() -> Callable[[int], list[str]]:
    """Factory producing ``n`` sequential scene ids as strings."""

    def _make(n: int) -> list[str]:
        return [str(i) for i in range(1, n + 1)]

    return _make
