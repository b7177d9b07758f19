"""Remote executor for the Stash GraphQL API.

Architecture Overview:
---------------------
``RemoteExecutor`` is the leaf of the bulk edit engine. It issues exactly one
logical GraphQL request and owns the *request-level* retry policy:

- Async HTTP communication via httpx with a pooled ``AsyncClient``
- A wall-clock timeout around every attempt (httpx timeouts are per phase, so
  a slow trickling response could otherwise outlive ``timeout``)
- tenacity-driven retry with exponential backoff for ``TransientError``
- No retry for ``SemanticError``: the server understood and rejected the
  request, so resending it verbatim cannot succeed

A second, independent retry policy lives one layer up in the TaskQueue. One
logical edit may therefore be attempted ``(retry_attempts + 1) *
(queue.retry_count + 1)`` times in the worst case.

Cancellation:
------------
When the queue-level watchdog fires it cancels the task running
``execute()``. The cancellation propagates through ``asyncio.wait_for`` into
the httpx request, so a timed-out attempt does not keep running next to its
own retry.

Error Classification:
--------------------
- httpx.TimeoutException / wall-clock expiry -> TransientError(timeout=True)
- httpx.HTTPError (connect, read, protocol) -> TransientError
- non-2xx status -> TransientError(status_code=...), except 400/422 bodies
  carrying GraphQL ``errors`` which are rejections -> SemanticError
- 2xx with ``errors`` -> SemanticError
- 2xx with unparseable body -> TransientError
- 2xx whose acknowledgement list is malformed -> TransientError, raised by
  ``execute()`` after the request succeeded, so only the queue retries it
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import StashConfig
from ..constants import API_KEY_HEADER
from ..models.requests import SceneUpdateRequest
from ..observability.metrics import MetricsCollector
from ..utils.exceptions import SemanticError, TransientError
from .mutations import build_bulk_update
from .response_models import GraphQLResponse, MutationResponse

logger = structlog.get_logger(__name__)

# Statuses where a GraphQL server reports a rejected document instead of 200
_REJECTION_STATUSES = frozenset({400, 422})


class RemoteExecutor:
    """
    Execute bulk mutations against the Stash GraphQL endpoint.

    Features:
    - Request timeout enforced as a wall-clock limit
    - Automatic retries with exponential backoff for transient failures
    - GraphQL error detection with no retry
    - Connection pooling via httpx.AsyncClient
    """

    def __init__(
        self,
        config: StashConfig,
        metrics: MetricsCollector | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the executor.

        Args:
            config: Stash connection and retry configuration
            metrics: Optional collector for request counts and latency
            client: Optional pre-built httpx client (owned by the caller)
            sleep: Coroutine used for backoff waits, injectable for tests
        """
        self.config = config
        self.metrics = metrics
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    async def __aenter__(self) -> "RemoteExecutor":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client if this executor created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """
        Get HTTP client with lazy initialization.

        Connection pool limits cap how many sockets the engine opens against
        the Stash server regardless of queue concurrency.
        """
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=self.config.verify_ssl,
                timeout=self.config.timeout,
                limits=httpx.Limits(
                    max_connections=self.config.max_connections,
                    max_keepalive_connections=self.config.max_keepalive,
                ),
            )
        return self._client

    def backoff_delay(self, attempt: int) -> float:
        """
        Delay before retry number ``attempt`` (1-based).

        Args:
            attempt: Retry number

        Returns:
            retry_delay * 2^(attempt-1), limited by retry_delay_cap when set
        """
        delay = self.config.retry_delay * (2 ** (attempt - 1))
        if self.config.retry_delay_cap is not None:
            delay = min(delay, self.config.retry_delay_cap)
        return delay

    def _retrying(self) -> AsyncRetrying:
        if self.config.retry_delay_cap is not None:
            wait = wait_exponential(
                multiplier=self.config.retry_delay, exp_base=2, max=self.config.retry_delay_cap
            )
        else:
            wait = wait_exponential(multiplier=self.config.retry_delay, exp_base=2)

        return AsyncRetrying(
            retry=retry_if_exception_type(TransientError),
            stop=stop_after_attempt(self.config.retry_attempts + 1),
            wait=wait,
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Stash request failed, retrying",
            attempt=retry_state.attempt_number,
            max_attempts=self.config.retry_attempts + 1,
            delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc),
        )

    async def execute(self, request: SceneUpdateRequest) -> MutationResponse:
        """
        Apply one chunk mutation.

        Args:
            request: Chunk to mutate

        Returns:
            MutationResponse with the ids the server acknowledged

        Raises:
            TransientError: When every attempt failed transiently, or the
                acknowledgement could not be parsed
            SemanticError: When the server rejected the mutation
        """
        operation = build_bulk_update(request)
        logger.debug(
            "Executing chunk mutation",
            batch_index=request.batch_index,
            records=request.size,
            description=request.describe(),
        )
        data = await self.query(
            operation.query, operation.variables, operation_name=operation.operation_name
        )
        try:
            response = MutationResponse.from_data(data, operation.result_field)
        except ValidationError as e:
            # Not retried here; the queue decides whether the chunk runs again.
            logger.error(
                "Mutation acknowledgement failed validation",
                batch_index=request.batch_index,
                errors=e.errors(),
            )
            raise TransientError("Invalid mutation acknowledgement from Stash") from e

        if len(response.records) != request.size:
            logger.warning(
                "Server acknowledged a different number of records",
                batch_index=request.batch_index,
                requested=request.size,
                acknowledged=len(response.records),
            )
        return response

    async def query(
        self,
        document: str,
        variables: dict[str, Any] | None = None,
        operation_name: str | None = None,
    ) -> dict[str, Any]:
        """
        POST a GraphQL document with request-level retry.

        Args:
            document: GraphQL query or mutation text
            variables: Variables for the document
            operation_name: Optional operationName

        Returns:
            The ``data`` member of the response

        Raises:
            TransientError: After retries are exhausted
            SemanticError: Immediately on a GraphQL rejection
        """
        payload: dict[str, Any] = {"query": document, "variables": variables or {}}
        if operation_name:
            payload["operationName"] = operation_name

        async for attempt in self._retrying():
            with attempt:
                return await self._post_once(payload)

        # AsyncRetrying with reraise=True either returns or raises above.
        raise TransientError("Request retries exhausted")  # pragma: no cover

    async def _post_once(self, payload: dict[str, Any]) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers[API_KEY_HEADER] = self.config.api_key

        loop = asyncio.get_running_loop()
        start_time = loop.time()

        try:
            response = await asyncio.wait_for(
                self.client.post(self.config.graphql_url, json=payload, headers=headers),
                timeout=self.config.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            self._record("timeout", start_time)
            logger.error("Stash request timed out", timeout_seconds=self.config.timeout)
            raise TransientError(
                f"Request timeout after {self.config.timeout}s", timeout=True
            ) from e
        except httpx.HTTPError as e:
            self._record("network_error", start_time)
            raise TransientError(f"HTTP request failed: {e}") from e

        envelope = self._parse_envelope(response)

        if not response.is_success:
            rejected = envelope is not None and envelope.has_errors
            if rejected and response.status_code in _REJECTION_STATUSES:
                self._record("rejected", start_time)
                raise self._semantic_error(envelope)
            self._record("http_error", start_time)
            raise TransientError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )

        if envelope is None:
            self._record("invalid_response", start_time)
            raise TransientError(
                "Invalid response body from Stash", status_code=response.status_code
            )

        if envelope.has_errors:
            self._record("rejected", start_time)
            raise self._semantic_error(envelope)

        self._record("success", start_time)
        return envelope.data or {}

    def _parse_envelope(self, response: httpx.Response) -> GraphQLResponse | None:
        try:
            data = response.json()
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        try:
            return GraphQLResponse.model_validate(data)
        except ValidationError as e:
            logger.warning("GraphQL response failed validation", errors=e.errors())
            return None

    def _semantic_error(self, envelope: GraphQLResponse) -> SemanticError:
        message = envelope.get_error_message()
        logger.error("Stash rejected request", error=message)
        return SemanticError(
            message,
            errors=[error.model_dump(exclude_none=True) for error in envelope.errors or []],
        )

    def _record(self, outcome: str, start_time: float) -> None:
        if self.metrics is None:
            return
        duration_ms = (asyncio.get_running_loop().time() - start_time) * 1000
        self.metrics.count_request(outcome)
        self.metrics.record_request_latency(duration_ms)
