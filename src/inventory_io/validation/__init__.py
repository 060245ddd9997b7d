"""Schema validation for CSV import rows."""

from .validator import SchemaValidator, ValidationReport

__all__ = ["SchemaValidator", "ValidationReport"]
