"""
Batch runner for pgpatch.

Runs the comparison engine over every table, view or seed data set of a
schema inside one transaction per database, isolates per-table failures and
collects the generated scripts as named output files.
"""

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Tuple, Union

from .config import PgPatchConfig
from .database.connection import DatabaseManager
from .database.introspection import CatalogReader
from .exceptions import ConfigurationError
from .schema.operations import get_change_summary
from .schema.ordering import render_ordered_create_tables
from .schema.reconciler import PatchKind, SchemaReconciler, TablePatch
from .seeding.engine import SeedDataEngine


logger = logging.getLogger(__name__)


SOURCE = "source"
TARGET = "target"


class TableStatus(str, Enum):
    """Outcome of processing one table, view or data set."""

    CREATED = "created"
    ALTERED = "altered"
    IN_SYNC = "in_sync"
    SEEDED = "seeded"
    FAILED = "failed"


@dataclass
class TableReport:
    """Result of processing a single item."""

    name: str
    status: TableStatus
    message: str = ""
    error: Optional[str] = None
    execution_time_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status != TableStatus.FAILED


@dataclass
class RunReport:
    """Result of one runner command."""

    command: str
    items: List[TableReport] = field(default_factory=list)
    files: Dict[str, str] = field(default_factory=dict)
    unresolved_tables: List[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    def add(self, item: TableReport) -> None:
        self.items.append(item)

    @property
    def failed(self) -> List[TableReport]:
        return [item for item in self.items if not item.succeeded]

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)

    def get_summary(self) -> Dict[str, int]:
        """Count items per status."""
        summary = {status.value: 0 for status in TableStatus}
        for item in self.items:
            summary[item.status.value] += 1
        return summary


def format_elapsed(seconds: float) -> str:
    minutes = int(seconds // 60)
    return f"{minutes} min {round(seconds % 60)} sec"


def write_outputs(report: RunReport, export_dir: Union[str, Path]) -> List[Path]:
    """Write the files of a report into ``export_dir``."""
    directory = Path(export_dir)
    directory.mkdir(parents=True, exist_ok=True)

    written = []
    for name, content in report.files.items():
        path = directory / name
        path.write_text(content, encoding="utf-8")
        logger.info(f"Script file generated: {path}")
        written.append(path)
    return written


def describe_changes(patch: TablePatch) -> str:
    """Short summary of a patch for the run report."""
    summary = ", ".join(f"{kind} {count}" for kind, count in get_change_summary(patch.changes).items())
    message = f"{len(patch.changes)} changes"
    if patch.destructive_changes:
        message += f", {patch.destructive_changes} destructive"
    return f"{message} ({summary})"


def _elapsed_ms(start_time: float) -> float:
    return (time.monotonic() - start_time) * 1000


class PatchRunner:
    """
    Orchestrates one pgpatch command across a whole schema.

    Both sessions begin a READ COMMITTED transaction before the first read and
    are committed after the last one. Each table runs inside a savepoint on
    both sessions, so a failed statement is rolled back, logged and recorded
    in the report without aborting the tables after it. A failure to begin or
    commit rolls both sessions back and propagates.
    """

    def __init__(self, config: PgPatchConfig, manager: Optional[DatabaseManager] = None):
        self.config = config
        self.manager = manager or self._build_manager()

    def _build_manager(self) -> DatabaseManager:
        if self.config.source is None:
            raise ConfigurationError("A source database must be configured")

        manager = DatabaseManager()
        manager.add_database(SOURCE, self.config.source)
        if self.config.target is not None:
            manager.add_database(TARGET, self.config.target)
        else:
            logger.warning("No target database configured, every object is treated as missing")
        return manager

    def _readers(self) -> Tuple[CatalogReader, CatalogReader]:
        schema = self.config.schema_name
        table_filter = self.config.table_filter
        source = CatalogReader(self.manager.find_session(SOURCE), schema, table_filter, name=SOURCE)
        target = CatalogReader(self.manager.find_session(TARGET), schema, table_filter, name=TARGET)
        return source, target

    def _reconciler(self) -> SchemaReconciler:
        source, target = self._readers()
        return SchemaReconciler(
            source,
            target,
            column_order=self.config.column_order,
            view_policy=self.config.naming,
        )

    def _file_name(self, suffix: str) -> str:
        return f"{self.config.file_prefix}_{suffix}.sql"

    @asynccontextmanager
    async def _run(self, command: str) -> AsyncIterator[RunReport]:
        report = RunReport(command=command)
        start_time = time.monotonic()

        logger.info(f"Running {command} against {', '.join(self.manager.list_databases())}")
        async with self.manager.transaction_scope():
            yield report

        report.elapsed_seconds = time.monotonic() - start_time
        logger.info(f"The total process took {format_elapsed(report.elapsed_seconds)}")

    def _record_failure(self, report: RunReport, name: str, error: Exception, start_time: float) -> None:
        logger.error(f"Error in processing {name}: {error}")
        report.add(TableReport(
            name=name,
            status=TableStatus.FAILED,
            error=str(error),
            execution_time_ms=_elapsed_ms(start_time),
        ))

    async def patch_all_tables(self, file_format: Optional[str] = None) -> RunReport:
        """
        CREATE scripts for source-only tables and ALTER scripts for the rest.

        Args:
            file_format: ``merge`` for combined files, anything else for one
                file per table; defaults to the configured format

        Returns:
            RunReport with a status per source table and the output files
        """
        file_format = file_format or self.config.file_format
        merge = file_format == "merge"

        async with self._run("tables") as report:
            reconciler = self._reconciler()
            diff = await reconciler.diff_tables()

            alter_parts: List[str] = []
            create_parts: List[str] = []
            definitions = []

            for table in diff.source_names:
                start_time = time.monotonic()
                try:
                    async with self.manager.savepoint():
                        patch = await reconciler.reconcile_table(table, create=diff.needs_create(table))
                except Exception as e:
                    self._record_failure(report, table, e, start_time)
                    continue

                if patch.is_empty:
                    logger.info(f"{table} is already up to date, no alteration needed")
                    report.add(TableReport(table, TableStatus.IN_SYNC, execution_time_ms=_elapsed_ms(start_time)))
                    continue

                if patch.kind == PatchKind.CREATE:
                    if merge:
                        create_parts.append(f"-- {table}\n{patch.sql}")
                        definitions.append(patch.to_definition())
                    else:
                        report.files[f"{table}_create_table_script.sql"] = patch.sql
                    status = TableStatus.CREATED
                else:
                    if merge:
                        alter_parts.append(f"-- {table}\n{patch.sql}")
                    else:
                        report.files[f"{table}_alter_script.sql"] = patch.sql
                    status = TableStatus.ALTERED

                logger.info(f"{patch.kind.value.capitalize()} script generation completed for {table}")
                report.add(TableReport(
                    table,
                    status,
                    message=describe_changes(patch),
                    execution_time_ms=_elapsed_ms(start_time),
                ))

            if merge and alter_parts:
                report.files[self._file_name("alter")] = "\n\n".join(alter_parts) + "\n"
            if merge and create_parts:
                ordered_sql, table_order = render_ordered_create_tables(definitions)
                report.files[self._file_name("tables")] = "\n\n".join(create_parts) + "\n"
                report.files[self._file_name("tables_ordered")] = ordered_sql + "\n"
                report.unresolved_tables = table_order.unresolved
                if table_order.has_cycles:
                    logger.warning(
                        f"Foreign key cycle, appended without ordering: {', '.join(table_order.unresolved)}"
                    )

        return report

    async def patch_tables(self, table_names: List[str]) -> RunReport:
        """ALTER scripts for explicitly named tables, one file each."""
        async with self._run("alter") as report:
            reconciler = self._reconciler()

            for table in table_names:
                start_time = time.monotonic()
                try:
                    async with self.manager.savepoint():
                        patch = await reconciler.reconcile_table(table, create=False)
                except Exception as e:
                    self._record_failure(report, table, e, start_time)
                    continue

                if patch.is_empty:
                    logger.info(f"{table} is already up to date, no alteration needed")
                    report.add(TableReport(table, TableStatus.IN_SYNC, execution_time_ms=_elapsed_ms(start_time)))
                    continue

                report.files[f"{table}_alter_script.sql"] = patch.sql
                report.add(TableReport(
                    table,
                    TableStatus.ALTERED,
                    message=describe_changes(patch),
                    execution_time_ms=_elapsed_ms(start_time),
                ))

        return report

    async def patch_views(self, ordering_text: Optional[str] = None) -> RunReport:
        """CREATE OR REPLACE VIEW scripts for views missing on the target."""
        async with self._run("views") as report:
            scripts = await self._reconciler().generate_views(ordering_text)
            logger.info(f"Generated scripts for {scripts.total_views} views")

            buckets = (
                ("tenant_views", scripts.tenant_views, scripts.tenant_view_names),
                ("views", scripts.views, scripts.view_names),
                ("unordered_views", scripts.unordered_views, scripts.unordered_view_names),
            )
            for suffix, sql, names in buckets:
                if sql:
                    report.files[self._file_name(suffix)] = sql
                for name in names:
                    report.add(TableReport(name, TableStatus.CREATED, message=suffix))

            for name in scripts.skipped:
                report.add(TableReport(name, TableStatus.FAILED, error="No source definition"))

        return report

    async def seed_data(
        self, table_names: Optional[List[str]] = None, file_format: Optional[str] = None
    ) -> RunReport:
        """
        INSERT scripts for rows present on the source and missing on the target.

        Args:
            table_names: Tables to seed; defaults to every table metadata entry
            file_format: ``merge`` for one combined file, anything else for one
                file per table

        Returns:
            RunReport with a status per table and the output files
        """
        file_format = file_format or self.config.file_format
        tables_metadata = self.config.load_tables_metadata()
        seeding_overrides = self.config.load_seeding_overrides()
        table_names = table_names or [entry.table_name for entry in tables_metadata]

        async with self._run("seed") as report:
            source, target = self._readers()
            engine = SeedDataEngine(source, target, tables_metadata, seeding_overrides)
            parts: List[str] = []

            for table in table_names:
                start_time = time.monotonic()
                logger.info(f"Processing data for table {table}")
                try:
                    async with self.manager.savepoint():
                        result = await engine.generate(table)
                except Exception as e:
                    self._record_failure(report, table, e, start_time)
                    continue

                if result.in_sync:
                    logger.info(f"{table} is already up to date, seeding not needed")
                    report.add(TableReport(table, TableStatus.IN_SYNC, execution_time_ms=_elapsed_ms(start_time)))
                    continue

                if file_format == "merge":
                    parts.append(f"-- {table}\n{result.sql}")
                else:
                    report.files[f"{table}_seed_data.sql"] = result.sql

                report.add(TableReport(
                    table,
                    TableStatus.SEEDED,
                    message=f"{result.rows} rows",
                    execution_time_ms=_elapsed_ms(start_time),
                ))

            if file_format == "merge" and parts:
                report.files[self._file_name("seed_data")] = "\n\n".join(parts) + "\n"

        return report
