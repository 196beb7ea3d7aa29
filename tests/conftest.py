"""
Pytest configuration and shared fixtures for pgpatch tests.

Catalog queries are answered by FakeSession, an in-memory stand-in for
DatabaseSession that dispatches on a fragment of the SQL text, so no live
PostgreSQL is needed.
"""

import json
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional, Union

import pytest
import yaml

from pgpatch.config import PgPatchConfig, TableMetadataConfig
from pgpatch.database.connection import DatabaseManager
from pgpatch.database.introspection import (
    CatalogReader,
    ColumnMeta,
    ConstraintMeta,
    ConstraintType,
    IndexMeta,
)


Response = Union[List[Dict[str, Any]], Callable[..., Any], Exception]


class FakeSession:
    """DatabaseSession double answering queries from canned responses."""

    def __init__(self, name: str = "fake", connected: bool = True):
        self.name = name
        self.connected = connected
        self.responses: List[tuple] = []
        self.queries: List[tuple] = []
        self.began = False
        self.committed = False
        self.rolled_back = False
        self.closed = False
        self.aborted = False
        self.savepoints = 0
        self.fail_on_begin: Optional[Exception] = None
        self.fail_on_commit: Optional[Exception] = None

    def respond(self, fragment: str, result: Response) -> "FakeSession":
        """Answer queries containing ``fragment`` with ``result``."""
        self.responses.append((fragment, result))
        return self

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def execute_query(self, sql: str, *args) -> List[Dict[str, Any]]:
        self.queries.append((sql, args))
        if self.aborted:
            raise RuntimeError("current transaction is aborted, commands ignored until end of transaction block")
        for fragment, result in self.responses:
            if fragment in sql:
                if callable(result):
                    result = result(sql, *args)
                if isinstance(result, Exception):
                    # PostgreSQL aborts the open transaction on any failed statement
                    self.aborted = self.began and not self.committed
                    raise result
                return [dict(row) for row in result]
        return []

    async def begin(self) -> None:
        if self.fail_on_begin:
            raise self.fail_on_begin
        self.began = True

    async def commit(self) -> None:
        if self.fail_on_commit:
            raise self.fail_on_commit
        self.committed = True

    async def rollback(self) -> None:
        self.rolled_back = True
        self.aborted = False

    @asynccontextmanager
    async def savepoint(self):
        self.savepoints += 1
        aborted = self.aborted
        try:
            yield
        except Exception:
            self.aborted = aborted
            raise

    async def close(self) -> None:
        self.closed = True


def by_table(mapping: Dict[str, List[Dict[str, Any]]]) -> Callable[..., List[Dict[str, Any]]]:
    """Response keyed on the table name passed as the first query parameter."""
    def respond(sql, table=None, *args):
        return mapping.get(table, [])
    return respond


def column_row(
    name: str,
    udt_name: str = "int4",
    data_type: Optional[str] = None,
    nullable: bool = True,
    length: Optional[int] = None,
    default: Optional[str] = None,
    serial_sequence: Optional[str] = None,
) -> Dict[str, Any]:
    """information_schema.columns row as returned by the columns query."""
    data_types = {
        "int4": "integer",
        "int8": "bigint",
        "varchar": "character varying",
        "text": "text",
        "bool": "boolean",
        "numeric": "numeric",
        "timestamp": "timestamp without time zone",
    }
    return {
        "column_name": name,
        "data_type": data_type or data_types.get(udt_name, udt_name),
        "udt_name": udt_name,
        "character_maximum_length": length,
        "numeric_precision": None,
        "numeric_scale": None,
        "is_nullable": "YES" if nullable else "NO",
        "column_default": default,
        "serial_sequence": serial_sequence,
    }


def constraint_row(name: str, constraint_type: str, definition: str) -> Dict[str, Any]:
    return {
        "constraint_name": name,
        "constraint_type": constraint_type,
        "constraint_definition": definition,
    }


def index_row(name: str, definition: str) -> Dict[str, Any]:
    return {"indexname": name, "indexdef": definition}


def column(name: str, udt_name: str = "int4", **kwargs) -> ColumnMeta:
    return ColumnMeta.from_row(column_row(name, udt_name, **kwargs))


def primary_key(name: str, *columns: str) -> ConstraintMeta:
    return ConstraintMeta(name, ConstraintType.PRIMARY, f"PRIMARY KEY ({', '.join(columns)})")


def foreign_key(name: str, column_name: str, table: str) -> ConstraintMeta:
    return ConstraintMeta(name, ConstraintType.FOREIGN, f"FOREIGN KEY ({column_name}) REFERENCES {table}(id)")


def index(name: str, definition: str) -> IndexMeta:
    return IndexMeta(name, definition)


# ============================================================================
# Session and reader fixtures
# ============================================================================

@pytest.fixture
def source_session() -> FakeSession:
    return FakeSession("source")


@pytest.fixture
def target_session() -> FakeSession:
    return FakeSession("target")


@pytest.fixture
def source_reader(source_session) -> CatalogReader:
    return CatalogReader(source_session, "public", name="source")


@pytest.fixture
def target_reader(target_session) -> CatalogReader:
    return CatalogReader(target_session, "public", name="target")


@pytest.fixture
def fake_manager(source_session, target_session) -> DatabaseManager:
    manager = DatabaseManager()
    manager.add_session("source", source_session)
    manager.add_session("target", target_session)
    return manager


# ============================================================================
# Configuration fixtures
# ============================================================================

@pytest.fixture
def tables_metadata_data() -> List[Dict[str, Any]]:
    return [
        {
            "tableName": "users",
            "ignoredColumns": ["last_login"],
            "compareColumns": ["id"],
            "orderBy": "id",
            "insertStatementFormat": "batch",
        },
        {
            "tableName": "orders",
            "compareColumns": ["order_number"],
            "referenceColumns": [
                {"column": "user_id", "table": "users", "compareColumns": ["email"], "sourceColumn": "id"}
            ],
            "insertStatementFormat": "split",
        },
    ]


@pytest.fixture
def tables_metadata(tables_metadata_data) -> List[TableMetadataConfig]:
    return [TableMetadataConfig(**entry) for entry in tables_metadata_data]


@pytest.fixture
def config_files(tmp_path, tables_metadata_data) -> Dict[str, str]:
    """Table metadata, overrides and ordering files on disk."""
    metadata_path = tmp_path / "tables_metadata.json"
    metadata_path.write_text(json.dumps(tables_metadata_data))

    overrides_path = tmp_path / "seeding_overrides.json"
    overrides_path.write_text(json.dumps({"created_by": "-1"}))

    ordering_path = tmp_path / "drop_views.sql"
    ordering_path.write_text("DROP VIEW IF EXISTS report_v;\nDROP VIEW IF EXISTS base_v;\n")

    return {
        "tables_metadata_path": str(metadata_path),
        "seeding_overrides_path": str(overrides_path),
        "view_ordering_path": str(ordering_path),
    }


@pytest.fixture
def config_data(tmp_path, config_files) -> Dict[str, Any]:
    return {
        "source": {
            "host": "source.example.com",
            "port": 5432,
            "database": "qa",
            "user": "postgres",
            "password": "secret",
        },
        "target": {
            "host": "target.example.com",
            "port": 5432,
            "database": "demo",
            "user": "postgres",
            "password": "secret",
        },
        "schema_name": "public",
        "export_dir": str(tmp_path / "out"),
        "file_prefix": "fntl",
        **config_files,
    }


@pytest.fixture
def config_file(tmp_path, config_data) -> str:
    path = tmp_path / "pgpatch.yaml"
    path.write_text(yaml.safe_dump(config_data))
    return str(path)


@pytest.fixture
def pgpatch_config(config_data) -> PgPatchConfig:
    return PgPatchConfig(**config_data)
