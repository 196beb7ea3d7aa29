"""
Schema reconciliation core logic for pgpatch.

Coordinates catalog reads on both databases, the differencer and the DDL
synthesizer to produce the CREATE or ALTER script for one table, and the
view scripts for a schema.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..database.introspection import (
    CatalogReader,
    ColumnMeta,
    ConstraintMeta,
    IndexMeta,
    SequenceMeta,
    TableRef,
)
from .ddl import (
    ConstraintClassification,
    compare_columns,
    compare_constraints,
    compare_indexes,
    generate_create_table,
)
from .differ import keyed_difference
from .operations import ChangeType, SchemaChange, render_changes
from .ordering import ColumnOrderingPolicy, TableDefinition, extract_foreign_key_tables
from .views import ViewNamingPolicy, ViewScripts, ViewSynthesizer


logger = logging.getLogger(__name__)


class PatchKind(str, Enum):
    """Kind of script produced for a table."""

    CREATE = "create"
    ALTER = "alter"


@dataclass
class TableSnapshot:
    """Catalog metadata of one table on one database."""

    table: str
    columns: List[ColumnMeta]
    constraints: List[ConstraintMeta]
    indexes: List[IndexMeta]


@dataclass
class TablePatch:
    """Result of reconciling one table."""

    table: str
    kind: PatchKind
    sql: str
    changes: List[SchemaChange] = field(default_factory=list)
    references: List[str] = field(default_factory=list)
    classification: ConstraintClassification = field(default_factory=ConstraintClassification)
    execution_time_ms: float = 0.0

    @property
    def is_empty(self) -> bool:
        """True when the target already matches the source."""
        return not self.sql.strip()

    @property
    def destructive_changes(self) -> int:
        return sum(1 for change in self.changes if change.is_destructive)

    def to_definition(self) -> TableDefinition:
        """Headed CREATE TABLE script for dependency ordering."""
        return TableDefinition(
            name=self.table,
            sql=f"-- {self.table}\n{self.sql}",
            references=list(self.references),
        )


@dataclass
class TableDiff:
    """Tables on each side and those that exist only on the source."""

    source_tables: List[TableRef]
    target_tables: List[TableRef]
    missing: List[str]

    @property
    def source_names(self) -> List[str]:
        return [table.name for table in self.source_tables]

    def needs_create(self, table: str) -> bool:
        return table in self.missing


class SchemaReconciler:
    """
    Per-table create-or-alter engine.

    The source reader describes the desired state, the target reader the
    current one. Nothing is executed against the target; every result is SQL
    text plus the SchemaChange records it was rendered from.
    """

    def __init__(
        self,
        source: CatalogReader,
        target: CatalogReader,
        column_order: Optional[ColumnOrderingPolicy] = None,
        view_policy: Optional[ViewNamingPolicy] = None,
    ):
        self.source = source
        self.target = target
        self.column_order = column_order or ColumnOrderingPolicy()
        self.view_synthesizer = ViewSynthesizer(view_policy)

    @property
    def schema(self) -> str:
        return self.source.schema

    async def load_snapshot(self, reader: CatalogReader, table: str) -> TableSnapshot:
        """Read columns, constraints and indexes of a table."""
        return TableSnapshot(
            table=table,
            columns=await reader.get_columns(table),
            constraints=await reader.get_constraints(table),
            indexes=await reader.get_indexes(table),
        )

    async def missing_sequence(self, name: str) -> Optional[SequenceMeta]:
        """Source sequence to create when the target does not have it yet."""
        source_sequence = await self.source.get_sequence(name)
        if source_sequence is None:
            return None

        target_sequence = await self.target.get_sequence(name)
        if target_sequence is not None:
            return None

        logger.debug(f"Sequence {name} is missing on the target")
        return source_sequence

    async def diff_tables(self) -> TableDiff:
        """List the tables of both databases and find the source-only ones."""
        source_tables = await self.source.list_tables()
        target_tables = await self.target.list_tables()
        missing = keyed_difference(source_tables, target_tables, lambda table: table.name)

        logger.info(
            f"Found {len(source_tables)} source tables, {len(target_tables)} target tables, "
            f"{len(missing)} to create"
        )
        return TableDiff(
            source_tables=source_tables,
            target_tables=target_tables,
            missing=[table.name for table in missing],
        )

    async def create_table_patch(self, table: str) -> TablePatch:
        """Build the CREATE TABLE script for a table missing on the target."""
        start_time = asyncio.get_event_loop().time()
        snapshot = await self.load_snapshot(self.source, table)

        columns = self.column_order.reorder(snapshot.columns, snapshot.constraints)
        sql, classification = generate_create_table(
            table, columns, snapshot.constraints, snapshot.indexes, schema=self.schema
        )

        return TablePatch(
            table=table,
            kind=PatchKind.CREATE,
            sql=sql,
            changes=[SchemaChange(change_type=ChangeType.CREATE_TABLE, table=table, sql=sql, target_object=table)],
            references=extract_foreign_key_tables(snapshot.constraints),
            classification=classification,
            execution_time_ms=(asyncio.get_event_loop().time() - start_time) * 1000,
        )

    async def alter_table_patch(self, table: str) -> TablePatch:
        """Build the ALTER script for a table present on both databases."""
        start_time = asyncio.get_event_loop().time()
        desired = await self.load_snapshot(self.source, table)
        current = await self.load_snapshot(self.target, table)

        column_changes = await compare_columns(
            table, desired.columns, current.columns, self.missing_sequence
        )
        constraint_changes, classification = compare_constraints(
            table, desired.constraints, current.constraints
        )
        index_changes = compare_indexes(
            table, desired.indexes, current.indexes, classification, schema=self.schema
        )

        scripts = [
            render_changes(changes)
            for changes in (column_changes, constraint_changes, index_changes)
            if changes
        ]

        return TablePatch(
            table=table,
            kind=PatchKind.ALTER,
            sql="\n\n".join(scripts),
            changes=column_changes + constraint_changes + index_changes,
            references=extract_foreign_key_tables(desired.constraints),
            classification=classification,
            execution_time_ms=(asyncio.get_event_loop().time() - start_time) * 1000,
        )

    async def reconcile_table(self, table: str, create: Optional[bool] = None) -> TablePatch:
        """
        Create-or-alter a single table.

        Args:
            table: Table name
            create: Force the decision; when None the target catalog decides

        Returns:
            TablePatch with the rendered script
        """
        if create is None:
            target_tables = await self.target.list_tables()
            create = table not in {ref.name for ref in target_tables}

        if create:
            logger.info(f"Processing create table script for {table}")
            return await self.create_table_patch(table)

        logger.info(f"Processing alter script for {table}")
        return await self.alter_table_patch(table)

    async def generate_views(self, ordering_text: Optional[str] = None) -> ViewScripts:
        """
        Render scripts for views missing on the target or defined differently.

        Views are matched on name and definition text, so a source view whose
        body changed is emitted again as CREATE OR REPLACE VIEW.
        """
        source_views = await self.source.list_views()
        target_views = await self.target.list_views()
        views_diff = keyed_difference(
            source_views, target_views, lambda view: (view.name, view.definition)
        )

        logger.info(f"Found {len(views_diff)} views missing or changed on the target")
        return self.view_synthesizer.generate(
            source_views, [view.name for view in views_diff], ordering_text
        )
