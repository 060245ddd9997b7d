"""
Import Orchestrator - drives an import job from parsed rows to a finalized ledger record.

Pipeline per row (strictly in file order):
1. SchemaValidator      -> EquipmentRow or RowValidationError
2. HierarchyResolver    -> site/cell ids, creating missing parents on request
3. DuplicateDetector    -> none / conflict(existing id)
4. MergeEngine          -> inserted / skipped / updated / replaced
5. ImportLedger         -> counters, created entity ids, errors

Steps 2-5 of a row run in one database transaction, so a row either
commits all of its effects or none of them. A failed row records its
errors in a separate transaction and the job moves on.

Dispatch:
--------
``submit`` is the single place that decides how a job runs. Jobs below
``background_threshold`` rows run inline and the handle carries the
finished record; larger jobs run as an asyncio task and the handle returns
immediately with status ``processing``. Each row unit is synchronous, and
the loop yields to the event loop between rows so cancellation requests,
status polls and other jobs get their turn.

Failure Levels:
--------------
- Row-level (validation, resolution, duplicate, storage): recorded, job continues
- Job-level (ledger unavailable, unexpected exception, cancellation):
  job is finalized ``failed`` with a reason and a job-level error entry
"""

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from ..config import ImporterConfig
from ..core.detector import DuplicateDetector, DuplicateStatus
from ..core.merge import MergeAction, MergeEngine, MergeOutcome
from ..core.resolver import HierarchyResolver, Resolution
from ..models.history import (
    EntityAction,
    EntityType,
    ErrorCode,
    ImportHistory,
    ImportStatus,
    LedgerEntity,
    RollbackResult,
    RowError,
)
from ..models.import_row import EquipmentRow, RawRow
from ..models.options import ImportOptions
from ..observability.logger import LogContext
from ..observability.metrics import MetricsCollector, get_global_collector
from ..persistence.database import Database
from ..persistence.ledger import ImportLedger
from ..persistence.store import InventoryStore
from ..rollback.manager import RollbackManager
from ..utils.exceptions import (
    DuplicateConflictError,
    ImporterError,
    JobStateError,
    LedgerError,
    ResolutionError,
    RowValidationError,
    StorageConflictError,
    StorageError,
)
from ..validation.validator import SchemaValidator
from .progress import JobProgress, LoggingProgressSink, ProgressSink

logger = structlog.get_logger(__name__)

_ENTITY_ACTIONS = {
    MergeAction.INSERTED: EntityAction.CREATED,
    MergeAction.UPDATED: EntityAction.UPDATED,
    MergeAction.REPLACED: EntityAction.REPLACED,
}


@dataclass
class ImportHandle:
    """
    Returned by ``submit``.

    ``history`` is set for inline jobs, ``task`` for background jobs.
    """

    job_id: str
    status: ImportStatus
    task: asyncio.Task | None = None
    history: ImportHistory | None = None

    @property
    def is_background(self) -> bool:
        return self.task is not None

    async def wait(self) -> ImportHistory:
        """Wait for the job to finish and return its final record."""
        if self.task is not None:
            return await self.task
        if self.history is None:
            raise JobStateError(
                self.job_id, self.status.value, f"Job {self.job_id} has no task and no record"
            )
        return self.history

    def to_dict(self) -> dict[str, str]:
        return {"job_id": self.job_id, "status": self.status.value}


@dataclass
class _RowCounts:
    successful: int = 0
    failed: int = 0

    @property
    def processed(self) -> int:
        return self.successful + self.failed


class ImportOrchestrator:
    """
    Runs import jobs against one database.

    The store, ledger and validator are shared by all jobs; the resolver
    cache, duplicate claims and merge engine are created fresh per job.
    """

    def __init__(
        self,
        database: Database,
        config: ImporterConfig | None = None,
        progress_sink: ProgressSink | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Initialize ImportOrchestrator.

        Args:
            database: Shared SQLite database
            config: Importer configuration
            progress_sink: Receives job progress (default: structured log lines)
            metrics: Collector for row counters and latency
        """
        self.db = database
        self.config = config or ImporterConfig()
        self.store = InventoryStore(database)
        self.ledger = ImportLedger(database)
        self.validator = SchemaValidator()
        self.rollback_manager = RollbackManager(database, self.store, self.ledger)
        self.progress_sink = progress_sink or LoggingProgressSink()
        self.metrics = metrics or get_global_collector()
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def active_jobs(self) -> list[str]:
        return list(self._tasks)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit(
        self, rows: Sequence[RawRow], options: ImportOptions, filename: str = "upload.csv"
    ) -> ImportHandle:
        """
        Start an import job.

        Args:
            rows: Parsed rows in file order
            options: Job options
            filename: Name recorded in the history

        Returns:
            ImportHandle; finished for small jobs, ``processing`` for background jobs

        Raises:
            LedgerError: If the history record cannot be created
        """
        history = self._bootstrap(rows, options, filename)

        if len(rows) >= self.config.policy.background_threshold:
            task = asyncio.create_task(
                self._execute(history.id, rows, options), name=f"import-{history.id}"
            )
            self._tasks[history.id] = task
            task.add_done_callback(self._task_done)
            self.metrics.set_active_jobs(len(self._tasks))
            logger.info(
                "Import dispatched to background",
                job_id=history.id,
                total_rows=len(rows),
                threshold=self.config.policy.background_threshold,
            )
            return ImportHandle(history.id, ImportStatus.PROCESSING, task=task)

        result = await self._execute(history.id, rows, options)
        return ImportHandle(result.id, result.status, history=result)

    async def run_import(
        self, rows: Sequence[RawRow], options: ImportOptions, filename: str = "upload.csv"
    ) -> ImportHistory:
        """Submit a job and wait for its final record."""
        handle = await self.submit(rows, options, filename)
        return await handle.wait()

    def cancel(self, job_id: str) -> bool:
        """
        Ask a running job to stop before its next row.

        Returns:
            True if the job was running and is now flagged
        """
        return self.ledger.request_cancel(job_id)

    def rollback(self, job_id: str, actor_id: str) -> RollbackResult:
        """Delete the entities a completed job created."""
        return self.rollback_manager.rollback(job_id, actor_id)

    def get_job(self, job_id: str) -> ImportHistory:
        return self.ledger.get(job_id)

    async def wait_all(self) -> None:
        """Wait for every background job started by this orchestrator."""
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    def _bootstrap(
        self, rows: Sequence[RawRow], options: ImportOptions, filename: str
    ) -> ImportHistory:
        history: ImportHistory | None = None
        try:
            history = self.ledger.create(options.actor_id, filename, len(rows), options.snapshot())
            self.ledger.mark_processing(history.id)
        except (LedgerError, JobStateError) as e:
            logger.error("Import bootstrap failed", filename=filename, error=str(e))
            if history is not None:
                self._mark_failed(history.id, f"Bootstrap failed: {e}")
            raise
        history.status = ImportStatus.PROCESSING
        return history

    async def _execute(
        self, job_id: str, rows: Sequence[RawRow], options: ImportOptions
    ) -> ImportHistory:
        resolver = HierarchyResolver(self.store, options.actor_id)
        detector = DuplicateDetector(self.store)
        merger = MergeEngine(self.store)
        counts = _RowCounts()
        interval = self.config.policy.progress_interval
        total = len(rows)

        with LogContext(job_id=job_id, actor_id=options.actor_id):
            logger.info(
                "Import started",
                total_rows=total,
                merge_strategy=options.merge_strategy.value,
                create_missing=options.create_missing,
                validate_only=options.validate_only,
            )
            try:
                for raw in rows:
                    if self.ledger.is_cancel_requested(job_id):
                        return self._finish_cancelled(job_id, counts, total)

                    if self._process_row(job_id, raw, options, resolver, detector, merger):
                        counts.successful += 1
                    else:
                        counts.failed += 1

                    if counts.processed % interval == 0 and counts.processed < total:
                        self._notify(job_id, total, counts)
                    await asyncio.sleep(0)
            except (LedgerError, JobStateError) as e:
                logger.error("Ledger unavailable, stopping import", error=str(e))
                history = self._mark_failed(job_id, f"Ledger unavailable: {e}")
                if history is None:
                    raise
                return history
            except asyncio.CancelledError:
                logger.warning("Import task cancelled", processed=counts.processed)
                self._mark_failed(job_id, "Import task was cancelled")
                raise
            except Exception as e:
                logger.exception("Import crashed", processed=counts.processed)
                self._mark_failed(job_id, f"Unexpected error: {type(e).__name__}: {e}")
                raise

            try:
                history = self.ledger.finalize(job_id, ImportStatus.COMPLETED)
            except (LedgerError, JobStateError) as e:
                logger.error("Finalize failed", error=str(e))
                fallback = self._mark_failed(job_id, f"Finalize failed: {e}")
                if fallback is None:
                    raise
                history = fallback

            self._notify_finished(history)
            logger.info(
                "Import completed",
                status=history.status.value,
                successful=history.successful_rows,
                failed=history.failed_rows,
                inserted=history.inserted_rows,
                updated=history.updated_rows,
                replaced=history.replaced_rows,
                skipped=history.skipped_rows,
                metrics=self.metrics.get_summary(),
            )
            return history

    def _finish_cancelled(self, job_id: str, counts: _RowCounts, total: int) -> ImportHistory:
        message = f"Import cancelled after {counts.processed} of {total} rows"
        logger.warning("Import cancelled", processed=counts.processed, total=total)
        error = RowError(
            row=None, field="general", code=ErrorCode.CANCELLED.value, message=message
        )
        history = self.ledger.finalize(job_id, ImportStatus.FAILED, ErrorCode.CANCELLED.value, error)
        self._notify_finished(history)
        return history

    def _mark_failed(self, job_id: str, reason: str) -> ImportHistory | None:
        """Best-effort move to ``failed``; returns None if the ledger is unreachable."""
        error = RowError(row=None, field="general", code=ErrorCode.JOB_FAILED.value, message=reason)
        try:
            history = self.ledger.finalize(job_id, ImportStatus.FAILED, reason, error)
        except ImporterError as e:
            logger.error("Could not mark job failed", job_id=job_id, error=str(e))
            return None
        self._notify_finished(history)
        return history

    def _task_done(self, task: asyncio.Task) -> None:
        job_id = task.get_name().removeprefix("import-")
        self._tasks.pop(job_id, None)
        self.metrics.set_active_jobs(len(self._tasks))
        if task.cancelled():
            logger.warning("Background import task cancelled", job_id=job_id)
        elif task.exception() is not None:
            logger.error("Background import failed", job_id=job_id, error=str(task.exception()))

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    def _process_row(
        self,
        job_id: str,
        raw: RawRow,
        options: ImportOptions,
        resolver: HierarchyResolver,
        detector: DuplicateDetector,
        merger: MergeEngine,
    ) -> bool:
        mode = "validate" if options.validate_only else "import"
        started = time.perf_counter()
        try:
            try:
                row = self.validator.check(raw)
                if options.validate_only:
                    action = self._plan_row(job_id, row, options, resolver, detector)
                else:
                    action = self._apply_row(job_id, row, options, resolver, detector, merger)
            except (
                RowValidationError, ResolutionError, DuplicateConflictError, StorageError
            ) as e:
                logger.info(
                    "Row failed", row=raw.row_number, code=getattr(e, "code", None), error=str(e)
                )
                self.ledger.record_failure(job_id, raw.row_number, e.to_row_errors(raw.row_number))
                self.metrics.count_row("failed", mode)
                return False

            self.metrics.count_row(action.value, mode)
            return True
        finally:
            self.metrics.record_latency((time.perf_counter() - started) * 1000, mode)

    def _apply_row(
        self,
        job_id: str,
        row: EquipmentRow,
        options: ImportOptions,
        resolver: HierarchyResolver,
        detector: DuplicateDetector,
        merger: MergeEngine,
    ) -> MergeAction:
        with resolver.row_scope(), self.db.transaction():
            resolution = resolver.resolve(row, options.create_missing)
            status, outcome = self._detect_and_merge(row, options, resolution, detector, merger)
            if outcome.action == MergeAction.SKIPPED:
                # Raising inside the transaction also undoes any parents created for this row
                raise DuplicateConflictError(
                    row.ip_address or "",
                    existing_id=status.existing_id,
                    site_name=row.site_name,
                    cell_name=row.cell_name,
                )
            self.ledger.record_success(
                job_id,
                row.row_number,
                outcome.action.value,
                self._entities(row, resolution, outcome),
            )
        return outcome.action

    @retry(
        retry=retry_if_exception_type(StorageConflictError),
        stop=stop_after_attempt(2),
        reraise=True,
    )
    def _detect_and_merge(
        self,
        row: EquipmentRow,
        options: ImportOptions,
        resolution: Resolution,
        detector: DuplicateDetector,
        merger: MergeEngine,
    ) -> tuple[DuplicateStatus, MergeOutcome]:
        # Savepoint per attempt; a second writer taking the address between
        # detect and insert is seen as a conflict on the retry
        with self.db.transaction():
            status = detector.detect(row.ip_address)
            outcome = merger.merge(
                status, row, options.merge_strategy, resolution, options.actor_id
            )
        return status, outcome

    def _plan_row(
        self,
        job_id: str,
        row: EquipmentRow,
        options: ImportOptions,
        resolver: HierarchyResolver,
        detector: DuplicateDetector,
    ) -> MergeAction:
        with resolver.row_scope():
            resolver.resolve(row, options.create_missing, dry_run=True)
            status = detector.detect(row.ip_address)
            action = MergeEngine.plan(status, options.merge_strategy)
            if action == MergeAction.SKIPPED:
                raise DuplicateConflictError(
                    row.ip_address or "",
                    existing_id=status.existing_id,
                    site_name=row.site_name,
                    cell_name=row.cell_name,
                    claimed_by_row=status.claimed_by_row,
                )
            if action == MergeAction.INSERTED:
                detector.claim(row.ip_address, row.row_number)
            self.ledger.record_success(job_id, row.row_number, action.value, [])
        return action

    @staticmethod
    def _entities(
        row: EquipmentRow, resolution: Resolution, outcome: MergeOutcome
    ) -> list[LedgerEntity]:
        entities = []
        if resolution.site_created:
            entities.append(
                LedgerEntity(row.row_number, EntityType.SITE, resolution.site_id, EntityAction.CREATED)
            )
        if resolution.cell_created:
            entities.append(
                LedgerEntity(row.row_number, EntityType.CELL, resolution.cell_id, EntityAction.CREATED)
            )
        if outcome.equipment_id is not None:
            entities.append(
                LedgerEntity(
                    row.row_number,
                    EntityType.EQUIPMENT,
                    outcome.equipment_id,
                    _ENTITY_ACTIONS[outcome.action],
                )
            )
        return entities

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def _notify(self, job_id: str, total: int, counts: _RowCounts) -> None:
        self.progress_sink.notify(
            JobProgress(
                job_id=job_id,
                total_rows=total,
                processed_rows=counts.processed,
                successful_rows=counts.successful,
                failed_rows=counts.failed,
                status=ImportStatus.PROCESSING.value,
            )
        )

    def _notify_finished(self, history: ImportHistory) -> None:
        self.progress_sink.notify(
            JobProgress(
                job_id=history.id,
                total_rows=history.total_rows,
                processed_rows=history.processed_rows,
                successful_rows=history.successful_rows,
                failed_rows=history.failed_rows,
                finished=True,
                status=history.status.value,
            )
        )
