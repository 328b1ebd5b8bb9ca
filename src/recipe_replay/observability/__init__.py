"""Observability: structured logging and operator progress reporting."""

from .logging import bind_run_context, clear_run_context, get_run_logger, setup_structured_logging
from .progress import Progress, ProgressEvent, ProgressReporter, null_reporter, stderr_reporter

__all__ = [
    "Progress",
    "ProgressEvent",
    "ProgressReporter",
    "bind_run_context",
    "clear_run_context",
    "get_run_logger",
    "null_reporter",
    "setup_structured_logging",
    "stderr_reporter",
]
