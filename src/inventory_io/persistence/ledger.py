"""Import history ledger.

Purpose:
-------
The ledger records every import job: its options, row counters, the
ordered list of row/job errors and the ordered list of entities each row
touched. Rollback reads the ``created`` entities back from here.

Database Schema:
---------------
```
import_history (
    id               TEXT PRIMARY KEY,    -- job id (uuid4)
    actor_id         TEXT NOT NULL,
    filename         TEXT NOT NULL,
    total_rows       INTEGER NOT NULL,
    successful_rows, failed_rows,         -- processed = successful + failed
    inserted_rows, updated_rows, replaced_rows, skipped_rows,
    options          TEXT NOT NULL,       -- JSON snapshot of ImportOptions
    status           TEXT NOT NULL,       -- pending/processing/completed/failed/rolled_back
    failure_reason   TEXT,
    cancel_requested INTEGER NOT NULL,
    started_at, completed_at, rolled_back_at, rolled_back_by
)
import_history_errors   (id, job_id, row_number, field, code, message, value)
import_history_entities (id, job_id, row_number, entity_type, entity_id, action)
```

State Machine:
-------------
```
pending -> processing -> completed -> rolled_back
   |            |
   +------------+-----> failed
```
Counter and error writes only apply while a job is ``processing``; terminal
records are never changed again except ``completed -> rolled_back``.

Transactions:
------------
``record_success`` runs inside the caller's row transaction so the row's
inventory writes and its ledger entry commit together.
``record_failure`` commits on its own. Storage failures are raised as
``LedgerError``, which the orchestrator treats as job-fatal.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

from ..models.history import (
    EntityAction,
    EntityType,
    ErrorCode,
    HistoryPage,
    ImportHistory,
    ImportStatus,
    LedgerEntity,
    RowError,
)
from ..models.options import HistoryQuery
from ..utils.exceptions import JobNotFoundError, JobStateError, LedgerError, StorageError
from .database import Database, format_timestamp, parse_timestamp, utc_timestamp

logger = structlog.get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS import_history (
    id TEXT PRIMARY KEY,
    actor_id TEXT NOT NULL,
    filename TEXT NOT NULL,
    total_rows INTEGER NOT NULL,
    successful_rows INTEGER NOT NULL DEFAULT 0,
    failed_rows INTEGER NOT NULL DEFAULT 0,
    inserted_rows INTEGER NOT NULL DEFAULT 0,
    updated_rows INTEGER NOT NULL DEFAULT 0,
    replaced_rows INTEGER NOT NULL DEFAULT 0,
    skipped_rows INTEGER NOT NULL DEFAULT 0,
    options TEXT NOT NULL,
    status TEXT NOT NULL,
    failure_reason TEXT,
    cancel_requested INTEGER NOT NULL DEFAULT 0,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    rolled_back_at TEXT,
    rolled_back_by TEXT
);

CREATE TABLE IF NOT EXISTS import_history_errors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL REFERENCES import_history(id),
    row_number INTEGER,
    field TEXT NOT NULL,
    code TEXT NOT NULL,
    message TEXT NOT NULL,
    value TEXT
);

CREATE TABLE IF NOT EXISTS import_history_entities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL REFERENCES import_history(id),
    row_number INTEGER,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    action TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_import_history_started ON import_history(started_at);
CREATE INDEX IF NOT EXISTS idx_import_errors_job ON import_history_errors(job_id);
CREATE INDEX IF NOT EXISTS idx_import_entities_job ON import_history_entities(job_id);
"""

# Counter bumped by record_success for each merge action
_ACTION_COUNTERS = {
    "inserted": "inserted_rows",
    "updated": "updated_rows",
    "replaced": "replaced_rows",
}


class ImportLedger:
    """
    SQLite-backed history of import jobs.

    Features:
    - Per-row counters and ordered error/entity lists
    - Status guards so terminal records stay immutable
    - Persisted cancel flag polled by the running job
    - Paged, filtered history listing
    """

    def __init__(self, database: Database) -> None:
        self.db = database
        self.db.executescript(SCHEMA, operation="ledger_schema")

    @contextmanager
    def _ledger_call(self, job_id: str | None, operation: str) -> Iterator[None]:
        try:
            yield
        except StorageError as e:
            logger.error("Ledger write failed", operation=operation, error=str(e))
            raise LedgerError(f"Ledger {operation} failed: {e}", job_id=job_id) from e

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    def create(
        self, actor_id: str, filename: str, total_rows: int, options: dict[str, Any]
    ) -> ImportHistory:
        """
        Create a ``pending`` history record.

        Args:
            actor_id: Who started the import
            filename: Name of the uploaded file
            total_rows: Number of data rows in the file
            options: Snapshot of the job's ImportOptions

        Returns:
            The new record
        """
        job_id = str(uuid.uuid4())
        started_at = utc_timestamp()
        with self._ledger_call(job_id, "create"), self.db.transaction():
            self.db.execute(
                """
                INSERT INTO import_history (
                    id, actor_id, filename, total_rows, options, status, started_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job_id,
                    actor_id,
                    filename,
                    total_rows,
                    json.dumps(options),
                    ImportStatus.PENDING.value,
                    started_at,
                ),
                operation="create_job",
            )
        logger.info("Import job created", job_id=job_id, filename=filename, total_rows=total_rows)
        return ImportHistory(
            id=job_id,
            actor_id=actor_id,
            filename=filename,
            total_rows=total_rows,
            status=ImportStatus.PENDING,
            started_at=parse_timestamp(started_at),
            options=options,
        )

    def mark_processing(self, job_id: str) -> None:
        with self._ledger_call(job_id, "mark_processing"), self.db.transaction():
            self._transition(job_id, ImportStatus.PENDING, "status = ?", [ImportStatus.PROCESSING])

    def record_success(
        self, job_id: str, row_number: int, action: str, entities: list[LedgerEntity]
    ) -> None:
        """
        Count a successful row and append the entities it touched.

        Called inside the row's transaction.

        Args:
            job_id: Running job
            row_number: 1-based data row
            action: Merge action (inserted, updated, replaced)
            entities: Entities the row created or changed, in write order
        """
        counter = _ACTION_COUNTERS.get(action)
        updates = "successful_rows = successful_rows + 1"
        if counter:
            updates += f", {counter} = {counter} + 1"

        with self._ledger_call(job_id, "record_success"), self.db.transaction():
            self._transition(job_id, ImportStatus.PROCESSING, updates, [])
            for entity in entities:
                self.db.execute(
                    """
                    INSERT INTO import_history_entities (
                        job_id, row_number, entity_type, entity_id, action
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        job_id,
                        entity.row,
                        entity.entity_type.value,
                        entity.entity_id,
                        entity.action.value,
                    ),
                    operation="record_entity",
                )
        logger.debug("Row recorded", job_id=job_id, row=row_number, action=action)

    def record_failure(self, job_id: str, row_number: int | None, errors: list[RowError]) -> None:
        """
        Count a failed row and append its errors.

        Commits on its own, independent of the row's rolled back writes. A
        duplicate-address failure also counts as a skipped row.
        """
        updates = "failed_rows = failed_rows + 1"
        if any(error.code == ErrorCode.DUPLICATE_IP.value for error in errors):
            updates += ", skipped_rows = skipped_rows + 1"

        with self._ledger_call(job_id, "record_failure"), self.db.transaction():
            self._transition(job_id, ImportStatus.PROCESSING, updates, [])
            self._append_errors(job_id, errors)

    def finalize(
        self,
        job_id: str,
        status: ImportStatus,
        failure_reason: str | None = None,
        error: RowError | None = None,
    ) -> ImportHistory:
        """
        Move a job to ``completed`` or ``failed``.

        Args:
            job_id: The job
            status: COMPLETED or FAILED
            failure_reason: Diagnostic for failed jobs
            error: Optional job-level error entry to append

        Returns:
            The finalized record
        """
        if status not in (ImportStatus.COMPLETED, ImportStatus.FAILED):
            raise ValueError(f"Cannot finalize a job as {status.value}")

        with self._ledger_call(job_id, "finalize"), self.db.transaction():
            row = self._require(job_id)
            current = ImportStatus(row["status"])
            if current.is_terminal or (
                current == ImportStatus.PENDING and status == ImportStatus.COMPLETED
            ):
                raise JobStateError(job_id, current.value, f"Job {job_id} is already {current.value}")
            self.db.execute(
                """
                UPDATE import_history
                SET status = ?, failure_reason = ?, completed_at = ?
                WHERE id = ?
                """,
                (status.value, failure_reason, utc_timestamp(), job_id),
                operation="finalize_job",
            )
            if error is not None:
                self._append_errors(job_id, [error])

        logger.info(
            "Import job finalized",
            job_id=job_id,
            status=status.value,
            failure_reason=failure_reason,
        )
        return self.get(job_id)

    def request_cancel(self, job_id: str) -> bool:
        """
        Persist a cancel request.

        Returns:
            True if the job was still running and is now flagged

        Raises:
            JobNotFoundError: If the job does not exist
        """
        with self._ledger_call(job_id, "request_cancel"), self.db.transaction():
            self._require(job_id)
            cursor = self.db.execute(
                """
                UPDATE import_history SET cancel_requested = 1
                WHERE id = ? AND status IN (?, ?)
                """,
                (job_id, ImportStatus.PENDING.value, ImportStatus.PROCESSING.value),
                operation="request_cancel",
            )
        flagged = cursor.rowcount > 0
        logger.info("Cancel requested", job_id=job_id, flagged=flagged)
        return flagged

    def is_cancel_requested(self, job_id: str) -> bool:
        with self._ledger_call(job_id, "is_cancel_requested"):
            row = self.db.query_one(
                "SELECT cancel_requested FROM import_history WHERE id = ?",
                (job_id,),
                operation="is_cancel_requested",
            )
        return bool(row and row["cancel_requested"])

    def mark_rolled_back(self, job_id: str, actor_id: str) -> None:
        """Move a completed job to ``rolled_back``. Called inside the rollback transaction."""
        with self._ledger_call(job_id, "mark_rolled_back"), self.db.transaction():
            self._transition(
                job_id,
                ImportStatus.COMPLETED,
                "status = ?, rolled_back_at = ?, rolled_back_by = ?",
                [ImportStatus.ROLLED_BACK, utc_timestamp(), actor_id],
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> ImportHistory:
        """
        Load one job with its errors and entities.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        with self._ledger_call(job_id, "get"):
            row = self._require(job_id)
            error_rows = self.db.query_all(
                "SELECT * FROM import_history_errors WHERE job_id = ? ORDER BY id",
                (job_id,),
                operation="load_errors",
            )
            entity_rows = self.db.query_all(
                "SELECT * FROM import_history_entities WHERE job_id = ? ORDER BY id",
                (job_id,),
                operation="load_entities",
            )

        history = self._row_to_history(row)
        history.errors = [
            RowError(
                row=r["row_number"],
                field=r["field"],
                code=r["code"],
                message=r["message"],
                value=r["value"],
            )
            for r in error_rows
        ]
        history.entities = [
            LedgerEntity(
                row=r["row_number"],
                entity_type=EntityType(r["entity_type"]),
                entity_id=r["entity_id"],
                action=EntityAction(r["action"]),
            )
            for r in entity_rows
        ]
        return history

    def list(self, query: HistoryQuery | None = None) -> HistoryPage:
        """
        Page through jobs, newest first.

        Items carry counters and status only; use ``get`` for errors and
        entities.
        """
        query = query or HistoryQuery()
        clauses: list[str] = []
        params: list[Any] = []

        if query.status:
            clauses.append("status = ?")
            params.append(query.status.value)
        if query.actor_id:
            clauses.append("actor_id = ?")
            params.append(query.actor_id)
        if query.start_date:
            clauses.append("started_at >= ?")
            params.append(format_timestamp(query.start_date))
        if query.end_date:
            clauses.append("started_at <= ?")
            params.append(format_timestamp(query.end_date))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._ledger_call(None, "list"):
            total = self.db.query_one(
                f"SELECT COUNT(*) FROM import_history {where}", params, operation="count_jobs"
            )[0]
            rows = self.db.query_all(
                f"""
                SELECT * FROM import_history {where}
                ORDER BY started_at DESC, rowid DESC
                LIMIT ? OFFSET ?
                """,
                [*params, query.page_size, query.offset],
                operation="list_jobs",
            )

        return HistoryPage(
            items=[self._row_to_history(row) for row in rows],
            total=total,
            page=query.page,
            page_size=query.page_size,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, job_id: str) -> sqlite3.Row:
        row = self.db.query_one(
            "SELECT * FROM import_history WHERE id = ?", (job_id,), operation="get_job"
        )
        if row is None:
            raise JobNotFoundError(job_id)
        return row

    def _transition(
        self, job_id: str, expected: ImportStatus, assignments: str, values: list[Any]
    ) -> None:
        params = [v.value if isinstance(v, ImportStatus) else v for v in values]
        cursor = self.db.execute(
            f"UPDATE import_history SET {assignments} WHERE id = ? AND status = ?",
            (*params, job_id, expected.value),
            operation="update_job",
        )
        if cursor.rowcount == 0:
            row = self._require(job_id)
            raise JobStateError(
                job_id,
                row["status"],
                f"Job {job_id} is {row['status']}, expected {expected.value}",
            )

    def _append_errors(self, job_id: str, errors: list[RowError]) -> None:
        for error in errors:
            self.db.execute(
                """
                INSERT INTO import_history_errors (
                    job_id, row_number, field, code, message, value
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (job_id, error.row, error.field, error.code, error.message, error.value),
                operation="record_error",
            )

    def _row_to_history(self, row: sqlite3.Row) -> ImportHistory:
        return ImportHistory(
            id=row["id"],
            actor_id=row["actor_id"],
            filename=row["filename"],
            total_rows=row["total_rows"],
            status=ImportStatus(row["status"]),
            started_at=parse_timestamp(row["started_at"]),
            options=json.loads(row["options"]),
            successful_rows=row["successful_rows"],
            failed_rows=row["failed_rows"],
            inserted_rows=row["inserted_rows"],
            updated_rows=row["updated_rows"],
            replaced_rows=row["replaced_rows"],
            skipped_rows=row["skipped_rows"],
            failure_reason=row["failure_reason"],
            cancel_requested=bool(row["cancel_requested"]),
            completed_at=parse_timestamp(row["completed_at"]),
            rolled_back_at=parse_timestamp(row["rolled_back_at"]),
            rolled_back_by=row["rolled_back_by"],
        )
