"""Unit tests for RemoteExecutor against a mocked Stash GraphQL endpoint."""

import asyncio
import json

import httpx
import pytest
import respx
from httpx import Response

from stashbulk.client.executor import RemoteExecutor
from stashbulk.config import StashConfig
from stashbulk.models.requests import (
    BulkMode,
    ChunkRequest,
    MetadataChunkRequest,
    RelationshipField,
    SceneMetadata,
)
from stashbulk.observability.metrics import MetricsCollector
from stashbulk.utils.exceptions import SemanticError, TransientError


def ack(*ids):
    return Response(200, json={"data": {"bulkSceneUpdate": [{"id": i} for i in ids]}})


def graphql_errors(*messages, status=200):
    return Response(status, json={"data": None, "errors": [{"message": m} for m in messages]})


@pytest.fixture
def tag_request():
    return ChunkRequest(("1", "2"), ("10", "11"), BulkMode.ADD, RelationshipField.TAGS)


class TestSuccess:
    """Successful mutations and request shape."""

    @pytest.mark.asyncio
    async def test_returns_acknowledged_ids(self, stash_config, stash_url, tag_request):
        with respx.mock(base_url=stash_url) as mock:
            route = mock.post("/graphql").mock(return_value=ack("1", 2))

            async with RemoteExecutor(stash_config) as executor:
                response = await executor.execute(tag_request)

        assert route.call_count == 1
        assert response.acknowledged_ids == ["1", "2"]

    @pytest.mark.asyncio
    async def test_request_body_and_api_key(self, stash_config, stash_url, tag_request):
        with respx.mock(base_url=stash_url) as mock:
            route = mock.post("/graphql").mock(return_value=ack("1", "2"))

            async with RemoteExecutor(stash_config) as executor:
                await executor.execute(tag_request)

        request = route.calls.last.request
        body = json.loads(request.content)
        assert request.headers["ApiKey"] == "secret-key"
        assert body["operationName"] == "BulkSceneUpdate"
        assert "tag_ids: $related" in body["query"]
        assert body["variables"] == {
            "ids": ["1", "2"],
            "related": {"ids": ["10", "11"], "mode": "ADD"},
        }

    @pytest.mark.asyncio
    async def test_studio_mutation_variables(self, stash_config, stash_url):
        studio_request = ChunkRequest(("5",), ("3",), BulkMode.SET, RelationshipField.STUDIO)

        with respx.mock(base_url=stash_url) as mock:
            route = mock.post("/graphql").mock(return_value=ack("5"))

            async with RemoteExecutor(stash_config) as executor:
                await executor.execute(studio_request)

        body = json.loads(route.calls.last.request.content)
        assert body["operationName"] == "BulkSceneUpdateStudio"
        assert body["variables"] == {"ids": ["5"], "studio_id": "3"}

    @pytest.mark.asyncio
    async def test_metadata_mutation_variables(self, stash_config, stash_url):
        request = MetadataChunkRequest(("5", "6"), SceneMetadata(rating100=40, details="Cut"))

        with respx.mock(base_url=stash_url) as mock:
            route = mock.post("/graphql").mock(return_value=ack("5", "6"))

            async with RemoteExecutor(stash_config) as executor:
                response = await executor.execute(request)

        body = json.loads(route.calls.last.request.content)
        assert body["operationName"] == "BulkSceneUpdateMetadata"
        assert body["variables"] == {
            "input": {"ids": ["5", "6"], "rating100": 40, "details": "Cut"}
        }
        assert response.acknowledged_ids == ["5", "6"]

    @pytest.mark.asyncio
    async def test_no_api_key_header_when_unconfigured(self, stash_url, tag_request):
        config = StashConfig(base_url=stash_url)

        with respx.mock(base_url=stash_url) as mock:
            route = mock.post("/graphql").mock(return_value=ack("1", "2"))

            async with RemoteExecutor(config) as executor:
                await executor.execute(tag_request)

        assert "ApiKey" not in route.calls.last.request.headers

    @pytest.mark.asyncio
    async def test_query_returns_data(self, stash_config, stash_url):
        with respx.mock(base_url=stash_url) as mock:
            mock.post("/graphql").mock(
                return_value=Response(200, json={"data": {"version": {"version": "v0.27.0"}}})
            )

            async with RemoteExecutor(stash_config) as executor:
                data = await executor.query("query { version { version } }")

        assert data == {"version": {"version": "v0.27.0"}}


class TestTransientFailures:
    """Request-level retry for transport failures."""

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, stash_config, stash_url, tag_request, fake_sleep):
        with respx.mock(base_url=stash_url) as mock:
            route = mock.post("/graphql").mock(side_effect=[Response(500), ack("1", "2")])

            async with RemoteExecutor(stash_config, sleep=fake_sleep) as executor:
                response = await executor.execute(tag_request)

        assert route.call_count == 2
        assert response.acknowledged_ids == ["1", "2"]
        assert fake_sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, stash_config, stash_url, tag_request, fake_sleep):
        with respx.mock(base_url=stash_url) as mock:
            route = mock.post("/graphql").mock(return_value=Response(503))

            async with RemoteExecutor(stash_config, sleep=fake_sleep) as executor:
                with pytest.raises(TransientError) as exc_info:
                    await executor.execute(tag_request)

        assert route.call_count == 3
        assert exc_info.value.status_code == 503
        assert fake_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_backoff_respects_cap(self, stash_url, tag_request, fake_sleep):
        config = StashConfig(
            base_url=stash_url, retry_attempts=3, retry_delay=1.0, retry_delay_cap=1.5
        )

        with respx.mock(base_url=stash_url) as mock:
            mock.post("/graphql").mock(return_value=Response(502))

            async with RemoteExecutor(config, sleep=fake_sleep) as executor:
                with pytest.raises(TransientError):
                    await executor.execute(tag_request)

        assert fake_sleep.delays == [1.0, 1.5, 1.5]
        assert [executor.backoff_delay(n) for n in (1, 2, 3)] == [1.0, 1.5, 1.5]

    @pytest.mark.asyncio
    async def test_connection_error(self, stash_config, stash_url, tag_request, fake_sleep):
        with respx.mock(base_url=stash_url) as mock:
            route = mock.post("/graphql").mock(side_effect=httpx.ConnectError("refused"))

            async with RemoteExecutor(stash_config, sleep=fake_sleep) as executor:
                with pytest.raises(TransientError, match="HTTP request failed"):
                    await executor.execute(tag_request)

        assert route.call_count == 3

    @pytest.mark.asyncio
    async def test_httpx_timeout_is_flagged(self, stash_config, stash_url, tag_request, fake_sleep):
        with respx.mock(base_url=stash_url) as mock:
            mock.post("/graphql").mock(side_effect=httpx.ReadTimeout("slow"))

            async with RemoteExecutor(stash_config, sleep=fake_sleep) as executor:
                with pytest.raises(TransientError) as exc_info:
                    await executor.execute(tag_request)

        assert exc_info.value.timeout is True

    @pytest.mark.asyncio
    async def test_wall_clock_timeout(self, stash_url, tag_request, fake_sleep):
        config = StashConfig(base_url=stash_url, timeout=0.05, retry_attempts=0)

        async def stall(request):
            await asyncio.sleep(1)
            return ack("1", "2")

        client = httpx.AsyncClient(transport=httpx.MockTransport(stall))
        executor = RemoteExecutor(config, client=client, sleep=fake_sleep)
        try:
            with pytest.raises(TransientError) as exc_info:
                await executor.execute(tag_request)
        finally:
            await client.aclose()

        assert exc_info.value.timeout is True
        assert "timeout" in str(exc_info.value).lower()

    @pytest.mark.asyncio
    async def test_unparseable_body(self, stash_config, stash_url, tag_request, fake_sleep):
        with respx.mock(base_url=stash_url) as mock:
            mock.post("/graphql").mock(return_value=Response(200, text="<html>proxy</html>"))

            async with RemoteExecutor(stash_config, sleep=fake_sleep) as executor:
                with pytest.raises(TransientError, match="Invalid response body"):
                    await executor.execute(tag_request)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "acknowledgement",
        [[{"title": "x"}], [None], "done"],
        ids=["record-without-id", "null-record", "scalar"],
    )
    async def test_malformed_acknowledgement(
        self, stash_config, stash_url, tag_request, fake_sleep, acknowledgement
    ):
        with respx.mock(base_url=stash_url) as mock:
            route = mock.post("/graphql").mock(
                return_value=Response(200, json={"data": {"bulkSceneUpdate": acknowledgement}})
            )

            async with RemoteExecutor(stash_config, sleep=fake_sleep) as executor:
                with pytest.raises(TransientError, match="Invalid mutation acknowledgement"):
                    await executor.execute(tag_request)

        # The server accepted the request, so it is not resent at this layer
        assert route.call_count == 1
        assert fake_sleep.delays == []


class TestSemanticFailures:
    """GraphQL rejections are never retried."""

    @pytest.mark.asyncio
    async def test_graphql_errors_not_retried(
        self, stash_config, stash_url, tag_request, fake_sleep
    ):
        with respx.mock(base_url=stash_url) as mock:
            route = mock.post("/graphql").mock(
                return_value=graphql_errors("tag 10 not found", "tag 11 not found")
            )

            async with RemoteExecutor(stash_config, sleep=fake_sleep) as executor:
                with pytest.raises(SemanticError) as exc_info:
                    await executor.execute(tag_request)

        assert route.call_count == 1
        assert fake_sleep.delays == []
        assert str(exc_info.value) == "tag 10 not found (+1 more)"
        assert len(exc_info.value.errors) == 2

    @pytest.mark.asyncio
    async def test_bad_request_with_errors_is_semantic(
        self, stash_config, stash_url, tag_request, fake_sleep
    ):
        with respx.mock(base_url=stash_url) as mock:
            route = mock.post("/graphql").mock(
                return_value=graphql_errors("Cannot query field", status=422)
            )

            async with RemoteExecutor(stash_config, sleep=fake_sleep) as executor:
                with pytest.raises(SemanticError):
                    await executor.execute(tag_request)

        assert route.call_count == 1


class TestMetrics:
    @pytest.mark.asyncio
    async def test_request_outcomes_counted(self, stash_config, stash_url, tag_request, fake_sleep):
        metrics = MetricsCollector()

        with respx.mock(base_url=stash_url) as mock:
            mock.post("/graphql").mock(side_effect=[Response(500), ack("1", "2")])

            async with RemoteExecutor(stash_config, metrics=metrics, sleep=fake_sleep) as executor:
                await executor.execute(tag_request)

        summary = metrics.get_summary()
        assert summary["counters"]["stash_requests_total[outcome=http_error]"] == 1
        assert summary["counters"]["stash_requests_total[outcome=success]"] == 1
        assert summary["timings"]["stash_request_duration_ms"]["count"] == 2
