"""In-process metrics for import and export jobs."""

from abc import ABC, abstractmethod
from collections import Counter, defaultdict
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class MetricsBackend(ABC):
    """Abstract base class for metrics backends."""

    @abstractmethod
    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        pass

    @abstractmethod
    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        pass

    @abstractmethod
    def timing(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        pass


class LoggerBackend(MetricsBackend):
    """
    In-memory backend that aggregates values so they can be logged as a summary.
    """

    def __init__(self) -> None:
        self.counters: Counter[str] = Counter()
        self.gauges: dict[str, float] = {}
        self.timings: dict[str, list[float]] = defaultdict(list)

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        self.counters[self._format_key(name, tags)] += value

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        # Last value wins
        self.gauges[self._format_key(name, tags)] = value

    def timing(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self.timings[self._format_key(name, tags)].append(value)

    def _format_key(self, name: str, tags: dict[str, str] | None) -> str:
        if not tags:
            return name
        tag_str = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
        return f"{name}[{tag_str}]"

    def get_summary(self) -> dict[str, Any]:
        summary: dict[str, Any] = {
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
            "timings": {},
        }
        for name, values in self.timings.items():
            if values:
                summary["timings"][name] = {
                    "count": len(values),
                    "avg": sum(values) / len(values),
                    "min": min(values),
                    "max": max(values),
                }
        return summary


class MetricsCollector:
    """
    Central collector for pipeline metrics.

    Row outcomes are counted per action (inserted, updated, replaced,
    failed); row latency is recorded per job mode.
    """

    def __init__(self, backend: str = "logger") -> None:
        self.backend: MetricsBackend
        if backend != "logger":
            logger.warning("Unknown metrics backend, defaulting to logger", backend=backend)
        self.backend = LoggerBackend()

    def count_row(self, outcome: str, mode: str = "import") -> None:
        """Record one processed row and its outcome."""
        self.backend.increment("import_rows_total", tags={"outcome": outcome, "mode": mode})

    def record_latency(self, duration_ms: float, mode: str = "import") -> None:
        """Record how long one row took end to end."""
        self.backend.timing("import_row_duration_ms", duration_ms, tags={"mode": mode})

    def count_export(self, fmt: str, records: int) -> None:
        self.backend.increment("export_records_total", records, tags={"format": fmt})

    def set_active_jobs(self, count: int) -> None:
        self.backend.gauge("import_jobs_active", float(count))

    def get_summary(self) -> dict[str, Any]:
        if isinstance(self.backend, LoggerBackend):
            return self.backend.get_summary()
        return {}


_GLOBAL_COLLECTOR: MetricsCollector | None = None


def get_global_collector() -> MetricsCollector:
    """Get or create the process-wide metrics collector."""
    global _GLOBAL_COLLECTOR
    if _GLOBAL_COLLECTOR is None:
        _GLOBAL_COLLECTOR = MetricsCollector()
    return _GLOBAL_COLLECTOR
