"""Job progress notifications."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class JobProgress:
    """Snapshot of a running job sent to progress sinks."""

    job_id: str
    total_rows: int
    processed_rows: int
    successful_rows: int
    failed_rows: int
    finished: bool = False
    status: str | None = None

    @property
    def percent(self) -> float:
        if self.total_rows == 0:
            return 100.0
        return round(100.0 * self.processed_rows / self.total_rows, 1)


class ProgressSink(ABC):
    """Receives progress every ``progress_interval`` rows and once at the end."""

    @abstractmethod
    def notify(self, progress: JobProgress) -> None:
        pass


class LoggingProgressSink(ProgressSink):
    """Default sink: one structured log line per notification."""

    def notify(self, progress: JobProgress) -> None:
        event = "Import finished" if progress.finished else "Import progress"
        logger.info(
            event,
            job_id=progress.job_id,
            processed=progress.processed_rows,
            total=progress.total_rows,
            successful=progress.successful_rows,
            failed=progress.failed_rows,
            percent=progress.percent,
            status=progress.status,
        )


class CallbackProgressSink(ProgressSink):
    """Forward notifications to a plain callable."""

    def __init__(self, callback: Callable[[JobProgress], None]) -> None:
        self.callback = callback

    def notify(self, progress: JobProgress) -> None:
        self.callback(progress)
