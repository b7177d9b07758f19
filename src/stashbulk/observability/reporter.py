"""Bulk Edit Report Generator.

Generates machine-readable JSON reports for finished bulk edit jobs.
"""

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import structlog

from ..models.results import OperationResult

logger = structlog.get_logger(__name__)


@dataclass
class BulkEditReport:
    """
    Structured report data for one bulk edit.

    Attributes:
        job_id: Job identifier
        status: Final status (completed, failed, partial)
        mode: Mutation mode (ADD, REMOVE, SET)
        field: Relationship field, or the metadata fields, modified
        start_time: Start timestamp
        end_time: End timestamp
        duration_seconds: Total duration
        total_records: Records submitted
        acknowledged_records: Records the server confirmed
        processed_item_estimate: succeeded_chunks * batch_size
        batch_size: Chunk size
        total_chunks: Number of chunks
        succeeded_chunks: Chunks that succeeded
        failed_chunks: Chunks that failed
        records_per_second: Throughput metric
        errors: Details for every failed chunk
        metrics: Collector summary, if one was supplied
    """

    job_id: str
    status: str
    mode: str
    field: str
    start_time: str | None
    end_time: str | None
    duration_seconds: float
    total_records: int
    acknowledged_records: int
    processed_item_estimate: int
    batch_size: int
    total_chunks: int
    succeeded_chunks: int
    failed_chunks: int
    records_per_second: float
    errors: list[dict[str, Any]] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)


class ReportGenerator:
    """Build and persist reports for bulk edit jobs."""

    def generate_report(
        self,
        result: OperationResult,
        metrics: dict[str, Any] | None = None,
    ) -> BulkEditReport:
        """
        Generate report object from a finished job.

        Args:
            result: Aggregated job result
            metrics: Optional metrics summary to embed

        Returns:
            BulkEditReport object
        """
        duration = result.duration_seconds
        failed = len(result.failed_chunks)

        status = "completed"
        if failed > 0:
            status = "partial" if result.succeeded_chunks > 0 else "failed"

        errors = [
            {
                "batch_index": failure.request.batch_index,
                "record_count": failure.request.size,
                "first_record_id": failure.request.record_ids[0],
                "error_type": type(failure.error).__name__,
                "error": str(failure.error),
            }
            for failure in result.failed_chunks
        ]

        return BulkEditReport(
            job_id=result.job_id,
            status=status,
            mode=result.mode.value,
            field=result.target,
            start_time=result.started_at.isoformat() if result.started_at else None,
            end_time=result.completed_at.isoformat() if result.completed_at else None,
            duration_seconds=duration,
            total_records=result.total_records,
            acknowledged_records=result.acknowledged_count,
            processed_item_estimate=result.processed_item_estimate,
            batch_size=result.batch_size,
            total_chunks=result.total_chunks,
            succeeded_chunks=result.succeeded_chunks,
            failed_chunks=failed,
            records_per_second=result.acknowledged_count / duration if duration > 0 else 0.0,
            errors=errors,
            metrics=metrics or {},
        )

    def write_json_report(self, report: BulkEditReport, output_path: Path) -> None:
        """
        Write report as JSON.

        Args:
            report: Bulk edit report
            output_path: Output file path
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, "w") as f:
            json.dump(asdict(report), f, indent=2)

        logger.info("JSON report written", path=str(output_path))
