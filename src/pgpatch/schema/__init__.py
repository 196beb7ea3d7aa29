"""
Schema comparison package for pgpatch.

This package provides:
- Keyed set and row differencing
- Column, constraint and index diffing into ALTER statements
- CREATE TABLE synthesis with column ordering and FK dependency order
- View script ordering and tenant view rendering
"""

from .differ import keyed_difference, row_difference, row_key
from .operations import ChangeType, SchemaChange, render_changes
from .ddl import (
    ConstraintClassification,
    compare_columns,
    compare_constraints,
    compare_indexes,
    create_sequence_sql,
    generate_create_table,
    render_column_definition,
    resolve_index_definition,
)
from .ordering import (
    ColumnOrderingPolicy,
    TableDefinition,
    TableOrder,
    extract_foreign_key_tables,
    order_tables,
    render_ordered_create_tables,
)
from .views import ViewNamingPolicy, ViewScripts, ViewSynthesizer
from .reconciler import SchemaReconciler, TablePatch, PatchKind, TableDiff

__all__ = [
    "keyed_difference",
    "row_difference",
    "row_key",
    "ChangeType",
    "SchemaChange",
    "render_changes",
    "ConstraintClassification",
    "compare_columns",
    "compare_constraints",
    "compare_indexes",
    "create_sequence_sql",
    "generate_create_table",
    "render_column_definition",
    "resolve_index_definition",
    "ColumnOrderingPolicy",
    "TableDefinition",
    "TableOrder",
    "extract_foreign_key_tables",
    "order_tables",
    "render_ordered_create_tables",
    "ViewNamingPolicy",
    "ViewScripts",
    "ViewSynthesizer",
    "SchemaReconciler",
    "TablePatch",
    "PatchKind",
    "TableDiff",
]
