"""
Database layer for pgpatch.
"""

from .connection import ConnectionConfig, DatabaseSession, DatabaseManager
from .introspection import (
    CatalogReader,
    ColumnMeta,
    ConstraintMeta,
    ConstraintType,
    IndexMeta,
    SequenceMeta,
    TableFilter,
    TableRef,
    ViewMeta,
)

__all__ = [
    "ConnectionConfig",
    "DatabaseSession",
    "DatabaseManager",
    "CatalogReader",
    "ColumnMeta",
    "ConstraintMeta",
    "ConstraintType",
    "IndexMeta",
    "SequenceMeta",
    "TableFilter",
    "TableRef",
    "ViewMeta",
]
