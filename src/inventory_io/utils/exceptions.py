"""Custom exceptions for the inventory import/export pipeline.

Exception Hierarchy:
-------------------
ImporterError (base)
├── ValidationError
│   ├── CSVValidationError      # Undecodable or malformed CSV file
│   └── RowValidationError      # One row failed schema rules
├── ResolutionError             # Site/cell lookup failed
│   ├── MissingParentError      # Parent absent and create_missing is off
│   └── AmbiguousParentError    # More than one parent matches the name
├── DuplicateConflictError      # Address already used, strategy is skip
├── StorageError                # Persistence call failed
│   ├── StorageConflictError    # Uniqueness/foreign key constraint
│   └── StorageTimeoutError     # Database stayed locked past the timeout
├── LedgerError                 # History ledger could not be written
├── JobNotFoundError            # Unknown import job id
└── JobStateError               # Job is not in a state that allows the call
    └── RollbackStateError      # Rollback on a job that is not completed

Usage Guidelines:
----------------
1. Row-level errors (RowValidationError, ResolutionError,
   DuplicateConflictError, StorageError) are recorded against the row in
   the ledger and the batch continues.

2. LedgerError is job-fatal: if the ledger cannot be written the job
   cannot report what it did, so it stops and is marked failed.

3. Each row-level exception knows how to describe itself as ledger error
   entries through ``to_row_errors``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..models.history import RowError


class ImporterError(Exception):
    """Base exception for all importer errors."""

    pass


class ValidationError(ImporterError):
    """Raised when validation fails."""

    def __init__(
        self,
        message: str,
        line_number: int | None = None,
        original_error: Exception | None = None,
    ) -> None:
        """
        Initialize ValidationError.

        Args:
            message: Error message.
            line_number: Optional line number where error occurred.
            original_error: Optional original exception that caused this error.
        """
        super().__init__(message)
        self.line_number = line_number
        self.original_error = original_error


class CSVValidationError(ValidationError):
    """Raised when the CSV file as a whole cannot be read."""

    def __str__(self) -> str:
        if self.line_number:
            return f"Line {self.line_number}: {self.args[0]}"
        return str(self.args[0]) if self.args else "CSV validation error"


class RowValidationError(ValidationError):
    """Raised when a row breaks one or more schema rules."""

    code = "ValidationFailed"

    def __init__(self, row_number: int, errors: list[RowError]) -> None:
        fields = ", ".join(error.field for error in errors)
        super().__init__(f"Row {row_number} failed validation ({fields})", line_number=row_number)
        self.row_number = row_number
        self.errors = errors

    def to_row_errors(self, row_number: int | None = None) -> list[RowError]:
        return list(self.errors)


class ResolutionError(ImporterError):
    """Raised when a row's site or cell cannot be resolved."""

    code = "ResolutionError"

    def __init__(self, field: str, name: str, message: str) -> None:
        """
        Initialize ResolutionError.

        Args:
            field: CSV column naming the parent (site_name or cell_name).
            name: The parent name from the row.
            message: Human-readable reason.
        """
        super().__init__(message)
        self.field = field
        self.name = name

    def to_row_errors(self, row_number: int | None) -> list[RowError]:
        from ..models.history import RowError

        return [
            RowError(
                row=row_number,
                field=self.field,
                code=self.code,
                message=str(self),
                value=self.name,
            )
        ]


class MissingParentError(ResolutionError):
    """Raised when a parent does not exist and creation is disabled."""

    code = "MissingParent"

    def __init__(self, field: str, name: str, entity_type: str) -> None:
        super().__init__(field, name, f"{entity_type} '{name}' does not exist")
        self.entity_type = entity_type


class AmbiguousParentError(ResolutionError):
    """Raised when a case-insensitive lookup matches several parents."""

    code = "AmbiguousParent"

    def __init__(self, field: str, name: str, entity_type: str, matches: int) -> None:
        super().__init__(
            field,
            name,
            f"{entity_type} name '{name}' matches {matches} existing records",
        )
        self.entity_type = entity_type
        self.matches = matches


class DuplicateConflictError(ImporterError):
    """Raised when a row's address is taken and the merge strategy is skip."""

    code = "DuplicateIp"

    def __init__(
        self,
        ip_address: str,
        existing_id: str | None = None,
        site_name: str | None = None,
        cell_name: str | None = None,
        claimed_by_row: int | None = None,
    ) -> None:
        """
        Initialize DuplicateConflictError.

        Args:
            ip_address: The conflicting address.
            existing_id: Id of the equipment already using the address.
            site_name: Site the row was resolved into.
            cell_name: Cell the row was resolved into.
            claimed_by_row: Earlier row of the same file claiming the address.
        """
        if claimed_by_row is not None:
            owner = f"row {claimed_by_row} of this file"
        else:
            owner = f"equipment {existing_id}"
        location = f" (in {site_name} / {cell_name})" if site_name and cell_name else ""
        super().__init__(
            f"Duplicate IP address {ip_address} already used by {owner}, skipping{location}"
        )
        self.ip_address = ip_address
        self.existing_id = existing_id
        self.site_name = site_name
        self.cell_name = cell_name
        self.claimed_by_row = claimed_by_row

    def to_row_errors(self, row_number: int | None) -> list[RowError]:
        from ..models.history import RowError

        return [
            RowError(
                row=row_number,
                field="ip_address",
                code=self.code,
                message=str(self),
                value=self.ip_address,
            )
        ]


class StorageError(ImporterError):
    """Raised when a persistence call fails."""

    code = "StorageError"

    def __init__(self, message: str, operation: str | None = None) -> None:
        """
        Initialize StorageError.

        Args:
            message: Error message from the database driver.
            operation: Short name of the storage call that failed.
        """
        super().__init__(message)
        self.operation = operation

    def to_row_errors(self, row_number: int | None) -> list[RowError]:
        from ..models.history import RowError

        where = f" during {self.operation}" if self.operation else ""
        return [
            RowError(
                row=row_number,
                field="general",
                code=self.code,
                message=f"Storage error{where}: {self}",
            )
        ]


class StorageConflictError(StorageError):
    """Raised when a write violates a uniqueness or foreign key constraint."""

    pass


class StorageTimeoutError(StorageError):
    """Raised when the database stays locked longer than the configured timeout."""

    code = "StorageTimeout"


class LedgerError(ImporterError):
    """Raised when the import history ledger cannot be written or read."""

    def __init__(self, message: str, job_id: str | None = None) -> None:
        super().__init__(message)
        self.job_id = job_id


class JobNotFoundError(ImporterError):
    """Raised when an import job id is unknown."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Import job not found: {job_id}")
        self.job_id = job_id


class JobStateError(ImporterError):
    """Raised when a job is not in a state that allows the requested call."""

    def __init__(self, job_id: str, status: str, message: str) -> None:
        super().__init__(message)
        self.job_id = job_id
        self.status = status


class RollbackStateError(JobStateError):
    """Raised when rollback is requested for a job that is not completed."""

    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(
            job_id,
            status,
            f"Can only roll back completed imports (job {job_id} is {status})",
        )
