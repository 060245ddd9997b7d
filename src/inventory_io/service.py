"""Programmatic entry point for the import/export pipeline.

``InventoryService`` wires the database, orchestrator and exporter from an
``ImporterConfig`` so that callers (the CLI, or a web layer mounting the
import/export routes) deal with bytes, options and job ids only.
"""

from collections.abc import Iterator
from types import TracebackType

import structlog

from .config import ImporterConfig
from .core.exporter import ExportBuilder, ExportStream
from .core.parser import CSVParser
from .core.preview import ImportPreview, build_preview, generate_template
from .execution.orchestrator import ImportHandle, ImportOrchestrator
from .execution.progress import ProgressSink
from .models.history import HistoryPage, ImportHistory, RollbackResult
from .models.options import ExportFilters, ExportOptions, HistoryQuery, ImportOptions
from .persistence.database import Database

logger = structlog.get_logger(__name__)


class InventoryService:
    """Facade over the import orchestrator, ledger and exporter."""

    def __init__(
        self,
        config: ImporterConfig | None = None,
        database: Database | None = None,
        progress_sink: ProgressSink | None = None,
    ) -> None:
        """
        Initialize the service.

        Args:
            config: Importer configuration (default: built-in defaults)
            database: Open database to use instead of ``config.storage``
            progress_sink: Receives job progress notifications
        """
        self.config = config or ImporterConfig()
        self.db = database or Database(
            self.config.storage.database_path, timeout=self.config.storage.timeout_seconds
        )
        self.orchestrator = ImportOrchestrator(self.db, self.config, progress_sink)
        self.exporter = ExportBuilder(
            self.orchestrator.store,
            page_size=self.config.export.page_size,
            allow_formulas=self.config.export.allow_formulas,
        )

    def default_options(self, actor_id: str, **overrides) -> ImportOptions:
        """Build ImportOptions from the configured policy defaults."""
        values = {
            "create_missing": self.config.policy.create_missing,
            "merge_strategy": self.config.policy.default_merge_strategy,
            "actor_id": actor_id,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return ImportOptions(**values)

    async def start_import(
        self, content: bytes, filename: str, options: ImportOptions
    ) -> ImportHandle:
        """
        Parse an upload and start the import job.

        Raises:
            CSVValidationError: If the file cannot be read as CSV
            LedgerError: If the job record cannot be created
        """
        rows = CSVParser(content, filename).parse()
        return await self.orchestrator.submit(rows, options, filename)

    def preview(self, content: bytes) -> ImportPreview:
        return build_preview(content)

    def template(self) -> bytes:
        return generate_template()

    def get_job(self, job_id: str) -> ImportHistory:
        return self.orchestrator.get_job(job_id)

    def history(self, query: HistoryQuery | None = None) -> HistoryPage:
        return self.orchestrator.ledger.list(query)

    def cancel(self, job_id: str) -> bool:
        return self.orchestrator.cancel(job_id)

    def rollback(self, job_id: str, actor_id: str) -> RollbackResult:
        return self.orchestrator.rollback(job_id, actor_id)

    def rollback_manifest(self, job_id: str) -> dict:
        return self.orchestrator.rollback_manager.get_rollback_manifest(job_id)

    def export(
        self, filters: ExportFilters | None = None, options: ExportOptions | None = None
    ) -> Iterator[bytes]:
        return self.exporter.export(filters, options)

    def open_export(
        self, filters: ExportFilters | None = None, options: ExportOptions | None = None
    ) -> ExportStream:
        return self.exporter.open_stream(filters, options)

    async def wait_for_jobs(self) -> None:
        await self.orchestrator.wait_all()

    def close(self) -> None:
        if self.orchestrator.active_jobs:
            logger.warning(
                "Closing service with running imports", jobs=self.orchestrator.active_jobs
            )
        self.db.close()

    def __enter__(self) -> "InventoryService":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
