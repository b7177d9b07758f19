"""Unit tests for request and result models."""

from datetime import datetime, timedelta

import pytest

from stashbulk.models.requests import (
    BulkMode,
    ChunkRequest,
    MetadataChunkRequest,
    RelationshipField,
    SceneMetadata,
)
from stashbulk.models.results import OperationResult, ProgressSnapshot, QueueStats
from stashbulk.utils.exceptions import SemanticError, TransientError


class TestChunkRequest:
    def test_normalizes_ids_to_string_tuples(self):
        request = ChunkRequest([1, 2, 3], [10], "ADD", "performer_ids", batch_index=2)

        assert request.record_ids == ("1", "2", "3")
        assert request.related_ids == ("10",)
        assert request.mode is BulkMode.ADD
        assert request.field is RelationshipField.PERFORMERS
        assert request.size == 3

    def test_is_immutable(self):
        request = ChunkRequest(("1",), ("2",), BulkMode.SET)

        with pytest.raises(AttributeError):
            request.mode = BulkMode.ADD  # type: ignore[misc]

    def test_requires_records(self):
        with pytest.raises(ValueError, match="at least one record"):
            ChunkRequest((), ("1",), BulkMode.ADD)

    def test_rejects_unknown_mode(self):
        with pytest.raises(ValueError):
            ChunkRequest(("1",), ("1",), "MERGE")

    def test_studio_requires_set_mode(self):
        with pytest.raises(ValueError, match="only supports SET"):
            ChunkRequest(("1",), ("4",), BulkMode.REMOVE, RelationshipField.STUDIO)

    def test_studio_accepts_at_most_one_id(self):
        with pytest.raises(ValueError, match="at most one"):
            ChunkRequest(("1",), ("4", "5"), BulkMode.SET, RelationshipField.STUDIO)

    def test_studio_clear(self):
        request = ChunkRequest(("1",), (), BulkMode.SET, RelationshipField.STUDIO)

        assert request.related_ids == ()
        assert RelationshipField.STUDIO.is_single_valued
        assert not RelationshipField.TAGS.is_single_valued

    def test_describe(self):
        request = ChunkRequest(("1", "2"), ("9",), BulkMode.REMOVE)

        assert request.describe() == "REMOVE 1 tag_ids on 2 record(s)"


class TestSceneMetadata:
    def test_only_set_fields_are_sent(self):
        metadata = SceneMetadata(rating100=80, organized=False)

        assert metadata.to_input() == {"rating100": 80, "organized": False}
        assert metadata.field_names == ["rating100", "organized"]

    def test_details_are_trimmed(self):
        metadata = SceneMetadata(details="  Re-encoded from source  ")

        assert metadata.details == "Re-encoded from source"

    @pytest.mark.parametrize(
        "kwargs", [{}, {"details": "   "}, {"date": ""}], ids=["nothing", "blank", "empty-date"]
    )
    def test_requires_a_change(self, kwargs):
        with pytest.raises(ValueError, match="No metadata changes"):
            SceneMetadata(**kwargs)

    @pytest.mark.parametrize("rating", [-1, 101])
    def test_rating_range(self, rating):
        with pytest.raises(ValueError, match="between 0 and 100"):
            SceneMetadata(rating100=rating)

    @pytest.mark.parametrize("value", ["2024-13-01", "01/05/2024", "yesterday"])
    def test_date_format(self, value):
        with pytest.raises(ValueError, match="YYYY-MM-DD"):
            SceneMetadata(date=value)

    def test_chunk_request(self):
        request = MetadataChunkRequest([4, 5], SceneMetadata(rating100=0, date="2024-05-01"))

        assert request.record_ids == ("4", "5")
        assert request.size == 2
        assert request.describe() == "SET rating100, date on 2 record(s)"

    def test_chunk_request_requires_records(self):
        with pytest.raises(ValueError, match="at least one record"):
            MetadataChunkRequest((), SceneMetadata(organized=True))


class TestSnapshotsAndStats:
    def test_snapshot_processed(self):
        snapshot = ProgressSnapshot(completed=3, errors=1, remaining=4, active=2)

        assert snapshot.processed == 4
        assert snapshot.timestamp > 0

    def test_snapshot_processed_counts_aborted(self):
        snapshot = ProgressSnapshot(completed=1, errors=1, remaining=0, active=0, aborted=3)

        assert snapshot.processed == 5

    def test_stats_total_includes_retrying(self):
        stats = QueueStats(completed=5, errors=1, pending=3, active=2, retrying=1)

        assert stats.total == 12


class TestOperationResult:
    def _result(self, total_chunks=3, batch_size=50, total_records=137):
        return OperationResult(
            job_id="job-1",
            mode=BulkMode.ADD,
            field=RelationshipField.TAGS,
            total_records=total_records,
            batch_size=batch_size,
            total_chunks=total_chunks,
            started_at=datetime.now(),
        )

    def test_estimate_overcounts_short_last_chunk(self):
        result = self._result()
        result.record_success([str(i) for i in range(50)])
        result.record_success([str(i) for i in range(50, 100)])
        result.record_success([str(i) for i in range(100, 137)])

        assert result.processed_item_estimate == 150
        assert result.acknowledged_count == 137
        assert result.success is True

    def test_failures_sorted_by_batch_index(self):
        result = self._result()
        late = ChunkRequest(("101",), ("1",), BulkMode.ADD, batch_index=2)
        early = ChunkRequest(("1",), ("1",), BulkMode.ADD, batch_index=0)
        result.record_success(["51"])
        result.record_failure(late, TransientError("HTTP 503"))
        result.record_failure(early, SemanticError("bad tag"), {"batch_index": 0})

        result.finalize()

        assert [f.request.batch_index for f in result.failed_chunks] == [0, 2]
        assert result.failed_chunks[0].error_message == "SemanticError: bad tag"
        assert len(result.errors) == 2
        assert result.success is False
        assert result.completed_at is not None

    def test_duration(self):
        result = self._result()
        assert result.duration_seconds == 0.0

        result.completed_at = result.started_at + timedelta(seconds=2.5)
        assert result.duration_seconds == 2.5

    def test_summary(self):
        result = self._result(total_chunks=1, total_records=2)
        result.record_success(["1", "2"])

        summary = result.get_summary()

        assert "job-1" in summary
        assert "1/1 chunks succeeded" in summary
        assert "2/2 records acknowledged" in summary

    def test_operation_for_relationship_edit(self):
        result = self._result()

        assert result.target == "tag_ids"
        assert result.operation == "ADD tag_ids"

    def test_operation_for_metadata_edit(self):
        result = OperationResult(
            job_id="job-2",
            mode=BulkMode.SET,
            field=None,
            total_records=3,
            batch_size=50,
            total_chunks=1,
            metadata=SceneMetadata(rating100=60, details="x"),
        )
        result.record_success(["1", "2", "3"])

        assert result.target == "rating100, details"
        assert "SET rating100, details" in result.get_summary()
