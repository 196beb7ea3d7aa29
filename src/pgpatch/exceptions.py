"""
Exception classes for pgpatch.
"""

from typing import Any, Dict, Optional


class PgPatchError(Exception):
    """Base exception for all pgpatch errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(PgPatchError):
    """Raised when there's an error in configuration."""

    pass


class MissingTableMetadataError(ConfigurationError):
    """Raised when a table has no entry in the table metadata file."""

    def __init__(self, table_name: str) -> None:
        super().__init__(
            f"No metadata present for table '{table_name}'",
            {"table": table_name},
        )
        self.table_name = table_name


class DatabaseError(PgPatchError):
    """Raised when there's an error with database operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when there's an error establishing or maintaining database connections."""

    pass


class DatabaseConfigurationError(DatabaseError):
    """Raised when there's an error in database configuration."""

    pass


class TransactionError(DatabaseError):
    """Raised when a transaction cannot be started or committed."""

    pass


class CatalogError(DatabaseError):
    """Raised when a catalog introspection query fails on a live session."""

    pass


class SchemaError(PgPatchError):
    """Raised when DDL cannot be synthesized from catalog metadata."""

    pass


class SeedDataError(PgPatchError):
    """Raised when seed data cannot be mapped or rendered."""

    pass


class InvalidInsertFormatError(SeedDataError):
    """Raised for an unsupported insertStatementFormat value."""

    def __init__(self, insert_format: str) -> None:
        super().__init__(
            f"Please provide valid insertStatementFormat value: '{insert_format}'",
            {"format": insert_format},
        )
        self.insert_format = insert_format
