"""Utility functions and exceptions."""

from .exceptions import (
    AmbiguousParentError,
    CSVValidationError,
    DuplicateConflictError,
    ImporterError,
    JobNotFoundError,
    JobStateError,
    LedgerError,
    MissingParentError,
    ResolutionError,
    RollbackStateError,
    RowValidationError,
    StorageConflictError,
    StorageError,
    StorageTimeoutError,
    ValidationError,
)

__all__ = [
    "ImporterError",
    "ValidationError",
    "CSVValidationError",
    "RowValidationError",
    "ResolutionError",
    "MissingParentError",
    "AmbiguousParentError",
    "DuplicateConflictError",
    "StorageError",
    "StorageConflictError",
    "StorageTimeoutError",
    "LedgerError",
    "JobNotFoundError",
    "JobStateError",
    "RollbackStateError",
]
