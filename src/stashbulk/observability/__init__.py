"""Observability - Logging, metrics, progress and reporting."""

from .logger import LogContext, configure_logging
from .metrics import LoggerBackend, MetricsCollector
from .progress import ProgressReporter, format_eta
from .reporter import BulkEditReport, ReportGenerator

__all__ = [
    "MetricsCollector",
    "LoggerBackend",
    "ProgressReporter",
    "format_eta",
    "ReportGenerator",
    "BulkEditReport",
    "configure_logging",
    "LogContext",
]
