"""
Seed data engine for pgpatch.

Finds the rows of a table that exist on the source but not on the target,
identified by the table's compare columns, and renders them as INSERT
statements.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config import TableMetadataConfig, find_table_metadata
from ..database.introspection import CatalogReader, ColumnMeta
from ..exceptions import InvalidInsertFormatError
from ..schema.differ import row_difference
from .codec import LiveReferenceResolver, ReferenceResolver, to_sql_literal


logger = logging.getLogger(__name__)


@dataclass
class SeedResult:
    """Seed data generated for one table."""

    table: str
    rows: int
    sql: str
    columns: List[str] = field(default_factory=list)
    execution_time_ms: float = 0.0

    @property
    def in_sync(self) -> bool:
        """True when the target already holds every source row."""
        return self.rows == 0


def render_tuple(values: List[str]) -> str:
    return f"({', '.join(values)})"


def render_insert_statements(
    table: str, columns: List[str], tuples: List[str], insert_format: str = "batch"
) -> str:
    """
    Render INSERT statements for value tuples.

    Args:
        table: Target table
        columns: Column list of the INSERT
        tuples: Rendered ``(v1, v2, ...)`` tuples
        insert_format: ``batch`` for one statement, ``split`` for one
            statement per row, ``batch-N`` for statements of N rows

    Returns:
        SQL text, empty when there are no tuples
    """
    if not tuples:
        return ""

    preamble = f"INSERT INTO {table} ({', '.join(columns)}) VALUES \n"

    if insert_format == "batch":
        return preamble + ",\n".join(tuples) + ";"

    if insert_format == "split":
        return "".join(f"{preamble}{values};\n" for values in tuples)

    if insert_format.startswith("batch-"):
        size = insert_format[len("batch-"):]
        if size.isdigit() and int(size) > 0:
            chunk = int(size)
            return "".join(
                preamble + ",\n".join(tuples[start:start + chunk]) + ";\n"
                for start in range(0, len(tuples), chunk)
            )

    raise InvalidInsertFormatError(insert_format)


class SeedDataEngine:
    """
    Generates INSERT scripts for rows missing on the target.

    Rows are matched by the compare columns of the table's metadata entry only,
    so existing rows with different values are never updated.
    """

    def __init__(
        self,
        source: CatalogReader,
        target: CatalogReader,
        tables_metadata: List[TableMetadataConfig],
        seeding_overrides: Optional[Dict[str, str]] = None,
        resolver: Optional[ReferenceResolver] = None,
    ):
        self.source = source
        self.target = target
        self.tables_metadata = tables_metadata
        self.seeding_overrides = seeding_overrides or {}
        self.resolver = resolver or LiveReferenceResolver(source)

    def get_table_metadata(self, table: str) -> TableMetadataConfig:
        """Get the metadata entry for a table, raising if there is none."""
        return find_table_metadata(self.tables_metadata, table)

    @staticmethod
    def filter_columns(columns: List[ColumnMeta], metadata: TableMetadataConfig) -> List[ColumnMeta]:
        return [column for column in columns if not metadata.is_ignored_column(column.name)]

    async def map_value(self, column: str, value: Any, metadata: TableMetadataConfig) -> str:
        """Encode one value, applying reference lookups and overrides."""
        literal = to_sql_literal(value)

        reference = metadata.get_reference(column)
        if reference is not None and value is not None:
            subquery = await self.resolver.resolve(reference, literal)
            if subquery:
                literal = subquery

        if column in self.seeding_overrides:
            literal = self.seeding_overrides[column]

        return literal

    async def map_row(self, row: Dict[str, Any], columns: List[str], metadata: TableMetadataConfig) -> str:
        values = [await self.map_value(column, row.get(column), metadata) for column in columns]
        return render_tuple(values)

    async def generate(self, table: str) -> SeedResult:
        """Build the INSERT script for the rows of ``table`` missing on the target."""
        start_time = asyncio.get_event_loop().time()
        metadata = self.get_table_metadata(table)

        columns = self.filter_columns(await self.source.get_columns(table), metadata)
        column_names = [column.name for column in columns]

        source_rows = await self.source.fetch_rows(table, metadata.order_by)
        target_rows = await self.target.fetch_rows(table, metadata.order_by)
        missing_rows = row_difference(source_rows, target_rows, metadata.compare_columns)

        logger.info(
            f"{table}: {len(source_rows)} source rows, {len(target_rows)} target rows, "
            f"{len(missing_rows)} to insert"
        )

        tuples = [await self.map_row(row, column_names, metadata) for row in missing_rows]
        sql = render_insert_statements(
            table, column_names, tuples, metadata.insert_statement_format
        )

        return SeedResult(
            table=table,
            rows=len(missing_rows),
            sql=sql,
            columns=column_names,
            execution_time_ms=(asyncio.get_event_loop().time() - start_time) * 1000,
        )
