"""Import job execution."""

from .orchestrator import ImportHandle, ImportOrchestrator
from .progress import CallbackProgressSink, JobProgress, LoggingProgressSink, ProgressSink

__all__ = [
    "ImportOrchestrator",
    "ImportHandle",
    "ProgressSink",
    "LoggingProgressSink",
    "CallbackProgressSink",
    "JobProgress",
]
