"""
Database catalog introspection for pgpatch.

Reads columns, constraints, indexes, tables, views and sequences from the
PostgreSQL catalog and returns them as normalized metadata records.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Any

from pydantic import BaseModel, Field

from .connection import DatabaseSession
from ..exceptions import DatabaseError, CatalogError, SchemaError


logger = logging.getLogger(__name__)


DEFAULT_IGNORED_TABLES = [
    "key_vault",
    "mtd_invoice_amt",
    "wf_setup_config",
    "fntl_test",
    "fntl_project_snapshot_bak",
    "fntl_project_snapshot_test",
    "fntl_sup_req_details",
    "fntl_planning_resource_exportcsv",
    "fntl_org_configurations_new",
    "fntl_opportunities_test",
    "fntl_opportunities_new_bkp",
    "fntl_opportunities_new",
    "fntl_json_objects_backup",
    "himanshu_temptable",
    "hk_fntl_project_snapshot",
    "test",
    "test_sql",
    "zz_fntl_oic_dlq_runs",
    "fntl_plan_lines_2",
    "fntl_plan_lines_tmp_13082024",
    "fntl_organizations_23_jul_bkup",
    "fntl_periods_march5",
    "hk_tmp_load_data",
    "fntl_cost_lines1",
]


class TableFilter(BaseModel):
    """Deny-list policy applied when listing tables."""

    ignored_tables: List[str] = Field(
        default_factory=lambda: list(DEFAULT_IGNORED_TABLES),
        description="Table names that are never compared",
    )
    ignored_prefixes: List[str] = Field(
        default_factory=lambda: ["tmp_", "demo_", "temp_", "tenant_1"],
        description="Table name prefixes that are never compared",
    )
    ignored_substrings: List[str] = Field(
        default_factory=lambda: ["_bkp_"],
        description="Table name fragments that are never compared",
    )
    ignored_suffixes: List[str] = Field(
        default_factory=lambda: ["_60"],
        description="Table name suffixes that are never compared",
    )

    def is_ignored(self, table_name: str) -> bool:
        """Check whether a table is excluded from comparison."""
        if table_name in self.ignored_tables:
            return True
        if any(table_name.startswith(prefix) for prefix in self.ignored_prefixes):
            return True
        if any(fragment in table_name for fragment in self.ignored_substrings):
            return True
        return any(table_name.endswith(suffix) for suffix in self.ignored_suffixes)


class ConstraintType(str, Enum):
    """pg_constraint.contype values."""

    PRIMARY = "p"
    FOREIGN = "f"
    UNIQUE = "u"
    CHECK = "c"
    EXCLUSION = "x"
    TRIGGER = "t"
    NOT_NULL = "n"


@dataclass
class ColumnMeta:
    """Information about a table column."""

    name: str
    data_type: str
    udt_name: str
    is_nullable: bool = True
    char_max_length: Optional[int] = None
    numeric_precision: Optional[int] = None
    numeric_scale: Optional[int] = None
    default_expr: Optional[str] = None
    serial_sequence: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ColumnMeta":
        return cls(
            name=row["column_name"],
            data_type=row["data_type"],
            udt_name=row["udt_name"],
            is_nullable=row["is_nullable"] == "YES",
            char_max_length=row.get("character_maximum_length"),
            numeric_precision=row.get("numeric_precision"),
            numeric_scale=row.get("numeric_scale"),
            default_expr=row.get("column_default"),
            serial_sequence=row.get("serial_sequence"),
        )

    @property
    def has_sequence_default(self) -> bool:
        """Whether the default draws from a sequence."""
        return bool(self.default_expr and "_seq" in self.default_expr)


@dataclass
class ConstraintMeta:
    """A table constraint as rendered by pg_get_constraintdef."""

    name: str
    type: ConstraintType
    definition: str

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ConstraintMeta":
        try:
            constraint_type = ConstraintType(row["constraint_type"])
        except ValueError as e:
            raise SchemaError(
                f"Unknown constraint type '{row['constraint_type']}' on {row['constraint_name']}"
            ) from e
        return cls(
            name=row["constraint_name"],
            type=constraint_type,
            definition=row["constraint_definition"],
        )


@dataclass
class IndexMeta:
    """An index and its CREATE INDEX definition."""

    name: str
    definition: str


@dataclass
class TableRef:
    """A table within a schema."""

    schema: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.schema}.{self.name}"


@dataclass
class ViewMeta:
    """A view and its SELECT body."""

    name: str
    definition: Optional[str]


@dataclass
class SequenceMeta:
    """Sequence parameters from pg_sequences."""

    schema: str
    name: str
    data_type: str
    start_value: int
    min_value: int
    max_value: int
    increment_by: int
    cycle: bool
    cache_size: int

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SequenceMeta":
        return cls(
            schema=row["schemaname"],
            name=row["sequencename"],
            data_type=row["data_type"],
            start_value=row["start_value"],
            min_value=row["min_value"],
            max_value=row["max_value"],
            increment_by=row["increment_by"],
            cycle=bool(row["cycle"]),
            cache_size=row["cache_size"],
        )

    @property
    def full_name(self) -> str:
        return f"{self.schema}.{self.name}"


class CatalogReader:
    """
    Catalog introspection over one database session.

    Every read fails soft: when the session is absent or not connected the
    reader logs a warning and returns an empty result, so a comparison can run
    against a single reachable database. Use ``is_available`` to tell an
    unreachable database from an empty one.
    """

    COLUMNS_QUERY = """
        SELECT
            c.column_name,
            c.data_type,
            c.udt_name,
            c.character_maximum_length,
            c.numeric_precision,
            c.numeric_scale,
            c.is_nullable,
            c.column_default,
            pg_get_serial_sequence(
                quote_ident($2::text) || '.' || quote_ident($1::text), c.column_name
            ) AS serial_sequence
        FROM information_schema.columns c
        WHERE c.table_name = $1::text AND c.table_schema = $2::text
        ORDER BY c.ordinal_position
    """

    CONSTRAINTS_QUERY = """
        SELECT
            con.conname AS constraint_name,
            con.contype::text AS constraint_type,
            pg_get_constraintdef(con.oid) AS constraint_definition
        FROM pg_constraint con
        JOIN pg_class rel ON rel.oid = con.conrelid
        JOIN pg_namespace nsp ON nsp.oid = rel.relnamespace
        WHERE rel.relname = $1::text AND nsp.nspname = $2::text
        ORDER BY con.conname
    """

    INDEXES_QUERY = """
        SELECT indexname, indexdef
        FROM pg_indexes
        WHERE tablename = $1::text AND schemaname = $2::text
        ORDER BY indexname
    """

    TABLES_QUERY = """
        SELECT tablename
        FROM pg_catalog.pg_tables
        WHERE schemaname = $1::text
        ORDER BY tablename
    """

    VIEWS_QUERY = """
        SELECT
            v.table_name AS view_name,
            pg_get_viewdef(
                (quote_ident(v.table_schema) || '.' || quote_ident(v.table_name))::regclass,
                true
            ) AS view_definition
        FROM information_schema.views v
        WHERE v.table_schema = $1::text
        ORDER BY v.table_name
    """

    SEQUENCE_QUERY = """
        SELECT
            schemaname,
            sequencename,
            data_type::text AS data_type,
            start_value,
            min_value,
            max_value,
            increment_by,
            cycle,
            cache_size
        FROM pg_sequences
        WHERE schemaname = $1::text AND sequencename = $2::text
    """

    def __init__(
        self,
        session: Optional[DatabaseSession],
        schema: str = "public",
        table_filter: Optional[TableFilter] = None,
        name: Optional[str] = None,
    ):
        self.session = session
        self.schema = schema
        self.table_filter = table_filter or TableFilter()
        self.name = name or (session.name if session is not None else "unavailable")

    @property
    def is_available(self) -> bool:
        """Whether reads reach a connected database."""
        return self.session is not None and self.session.is_connected

    async def query(self, sql: str, *args) -> List[Dict[str, Any]]:
        """Run a catalog query, failing soft when the session is unavailable."""
        if not self.is_available:
            logger.warning(f"Database '{self.name}' is not available, returning no rows")
            return []

        try:
            return await self.session.execute_query(sql, *args)
        except DatabaseError:
            raise
        except Exception as e:
            logger.error(f"Catalog query failed on '{self.name}': {e}")
            raise CatalogError(
                f"Catalog query failed: {e}", {"database": self.name}, cause=e
            ) from e

    async def get_columns(self, table: str) -> List[ColumnMeta]:
        """Get the columns of a table in ordinal order."""
        rows = await self.query(self.COLUMNS_QUERY, table, self.schema)
        return [ColumnMeta.from_row(row) for row in rows]

    async def get_constraints(self, table: str) -> List[ConstraintMeta]:
        """Get the constraints of a table."""
        rows = await self.query(self.CONSTRAINTS_QUERY, table, self.schema)
        return [ConstraintMeta.from_row(row) for row in rows]

    async def get_indexes(self, table: str) -> List[IndexMeta]:
        """Get the indexes of a table, including constraint-backed ones."""
        rows = await self.query(self.INDEXES_QUERY, table, self.schema)
        return [IndexMeta(name=row["indexname"], definition=row["indexdef"]) for row in rows]

    async def list_tables(self) -> List[TableRef]:
        """List the tables of the schema that pass the table filter."""
        rows = await self.query(self.TABLES_QUERY, self.schema)
        tables = []
        for row in rows:
            name = row["tablename"]
            if self.table_filter.is_ignored(name):
                logger.debug(f"Skipping ignored table {self.schema}.{name}")
                continue
            tables.append(TableRef(schema=self.schema, name=name))
        return tables

    async def list_views(self) -> List[ViewMeta]:
        """List the views of the schema with their definitions."""
        rows = await self.query(self.VIEWS_QUERY, self.schema)
        return [
            ViewMeta(name=row["view_name"], definition=row["view_definition"])
            for row in rows
        ]

    async def get_sequence(self, name: str) -> Optional[SequenceMeta]:
        """
        Look up a sequence by name.

        Args:
            name: Sequence name, optionally schema-qualified or quoted

        Returns:
            The sequence parameters, or None if the sequence does not exist
        """
        sequence_name = name.split(".")[-1].strip('"')
        rows = await self.query(self.SEQUENCE_QUERY, self.schema, sequence_name)
        if not rows:
            return None
        return SequenceMeta.from_row(rows[0])

    async def fetch_rows(self, table: str, order_by: Optional[str] = None) -> List[Dict[str, Any]]:
        """Fetch every row of a table, JSON values serialized to text."""
        sql = f"SELECT * FROM {self.schema}.{table}"
        if order_by:
            sql += f" ORDER BY {order_by}"

        rows = await self.query(sql)
        return [
            {
                key: json.dumps(value) if isinstance(value, (dict, list)) else value
                for key, value in row.items()
            }
            for row in rows
        ]
