"""
DDL synthesis for pgpatch.

Renders column definitions and CREATE TABLE statements, and diffs columns,
constraints and indexes of one table into ALTER statements that move the
current (target) state to the desired (source) state.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..database.introspection import ColumnMeta, ConstraintMeta, ConstraintType, IndexMeta, SequenceMeta
from .differ import keyed_difference
from .operations import ChangeType, SchemaChange, render_changes


logger = logging.getLogger(__name__)


SERIAL_TYPES = {"int2": "serial2", "int4": "serial4", "int8": "serial8"}

SEQUENCE_NAME_PATTERN = re.compile(r"'([^']+)'")
INDEX_PREFIX_PATTERN = re.compile(r"^\s*CREATE\s+(UNIQUE\s+)?INDEX\s+(?!IF\s+NOT\s+EXISTS)", re.IGNORECASE)

# Returns the source sequence when it still has to be created on the target.
SequenceLookup = Callable[[str], Awaitable[Optional[SequenceMeta]]]


@dataclass
class ConstraintClassification:
    """Names of constraints that own an index of the same name."""

    primary: Set[str] = field(default_factory=set)
    unique: Set[str] = field(default_factory=set)

    def record(self, constraint: ConstraintMeta) -> None:
        if constraint.type == ConstraintType.PRIMARY:
            self.primary.add(constraint.name)
        elif constraint.type == ConstraintType.UNIQUE:
            self.unique.add(constraint.name)

    def is_constraint_backed(self, index_name: str) -> bool:
        return index_name in self.primary or index_name in self.unique

    @classmethod
    def from_constraints(cls, *constraint_lists: Iterable[ConstraintMeta]) -> "ConstraintClassification":
        classification = cls()
        for constraints in constraint_lists:
            for constraint in constraints:
                classification.record(constraint)
        return classification


def _type_suffix(column: ColumnMeta) -> str:
    if column.char_max_length:
        return f"({column.char_max_length})"
    if column.udt_name == "numeric" and column.numeric_precision is not None:
        return f"({column.numeric_precision},{column.numeric_scale or 0})"
    return ""


def _uses_sequence(column: ColumnMeta) -> bool:
    reference = column.serial_sequence or column.default_expr
    return bool(reference and "_seq" in reference)


def render_column_definition(column: ColumnMeta) -> str:
    """
    Render the type and modifiers of a column for CREATE/ADD COLUMN.

    Integer columns fed by a sequence become serial types, so the sequence is
    created along with the column and its nextval() default is omitted.
    """
    definition = column.udt_name
    if column.udt_name in SERIAL_TYPES and _uses_sequence(column):
        definition = SERIAL_TYPES[column.udt_name]

    definition += _type_suffix(column)

    if not column.is_nullable:
        definition += " NOT NULL"

    if (
        column.default_expr is not None
        and "_seq" not in column.default_expr
        and column.serial_sequence is None
    ):
        definition += f" DEFAULT {column.default_expr}"

    return definition


def create_sequence_sql(sequence: SequenceMeta) -> str:
    """Render a CREATE SEQUENCE statement reproducing a source sequence."""
    cycle = "CYCLE" if sequence.cycle else "NO CYCLE"
    return (
        f"CREATE SEQUENCE IF NOT EXISTS {sequence.full_name}\n"
        f" AS {sequence.data_type}\n"
        f" START WITH {sequence.start_value}\n"
        f" INCREMENT BY {sequence.increment_by}\n"
        f" MINVALUE {sequence.min_value}\n"
        f" MAXVALUE {sequence.max_value}\n"
        f" CACHE {sequence.cache_size}\n"
        f" {cycle};"
    )


def resolve_index_definition(definition: str, schema: str = "public") -> str:
    """Strip schema qualification and make CREATE INDEX idempotent."""
    resolved = re.sub(rf'(?<![\w"])"?{re.escape(schema)}"?\.', "", definition)
    return INDEX_PREFIX_PATTERN.sub(
        lambda m: f"CREATE {m.group(1).upper() if m.group(1) else ''}INDEX IF NOT EXISTS ",
        resolved,
        count=1,
    )


def extract_sequence_name(default_expr: str) -> Optional[str]:
    """Pull the sequence name out of a nextval('...') default."""
    match = SEQUENCE_NAME_PATTERN.search(default_expr)
    return match.group(1) if match else None


async def _modify_column(
    table: str,
    desired: ColumnMeta,
    current: ColumnMeta,
    sequence_lookup: Optional[SequenceLookup],
) -> List[SchemaChange]:
    changes = []
    prefix = f"ALTER TABLE {table} ALTER COLUMN {desired.name}"

    type_changed = (
        desired.data_type != current.data_type
        or desired.char_max_length != current.char_max_length
        or (
            desired.udt_name == "numeric"
            and (desired.numeric_precision, desired.numeric_scale)
            != (current.numeric_precision, current.numeric_scale)
        )
    )
    if type_changed:
        changes.append(SchemaChange(
            change_type=ChangeType.MODIFY_COLUMN,
            table=table,
            target_object=desired.name,
            sql=f"{prefix} TYPE {desired.udt_name}{_type_suffix(desired)};",
            description=f"type {current.udt_name} -> {desired.udt_name}",
        ))

    if desired.is_nullable != current.is_nullable:
        action = "DROP NOT NULL" if desired.is_nullable else "SET NOT NULL"
        changes.append(SchemaChange(
            change_type=ChangeType.MODIFY_COLUMN,
            table=table,
            target_object=desired.name,
            sql=f"{prefix} {action};",
            description=action.lower(),
        ))

    if desired.has_sequence_default and sequence_lookup is not None:
        sequence_name = extract_sequence_name(desired.default_expr)
        if sequence_name:
            sequence = await sequence_lookup(sequence_name)
            if sequence is not None:
                changes.append(SchemaChange(
                    change_type=ChangeType.CREATE_SEQUENCE,
                    table=table,
                    target_object=sequence.name,
                    sql=create_sequence_sql(sequence),
                    description=f"sequence for {desired.name}",
                ))

    if desired.default_expr != current.default_expr:
        if desired.default_expr is not None:
            sql = f"{prefix} SET DEFAULT {desired.default_expr};"
        else:
            sql = f"{prefix} DROP DEFAULT;"
        changes.append(SchemaChange(
            change_type=ChangeType.MODIFY_COLUMN,
            table=table,
            target_object=desired.name,
            sql=sql,
            description="default",
        ))

    return changes


async def compare_columns(
    table: str,
    desired: List[ColumnMeta],
    current: List[ColumnMeta],
    sequence_lookup: Optional[SequenceLookup] = None,
) -> List[SchemaChange]:
    """
    Diff the columns of one table.

    Args:
        table: Table name used in the rendered statements
        desired: Columns on the source
        current: Columns on the target
        sequence_lookup: Resolves sequences that must be created on the target

    Returns:
        Drops, then additions, then modifications
    """
    by_name = lambda column: column.name
    current_by_name: Dict[str, ColumnMeta] = {column.name: column for column in current}

    drops = [
        SchemaChange(
            change_type=ChangeType.DROP_COLUMN,
            table=table,
            target_object=column.name,
            sql=f"ALTER TABLE {table} DROP COLUMN IF EXISTS {column.name} CASCADE;",
        )
        for column in keyed_difference(current, desired, by_name)
    ]

    adds = [
        SchemaChange(
            change_type=ChangeType.ADD_COLUMN,
            table=table,
            target_object=column.name,
            sql=(
                f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS "
                f"{column.name} {render_column_definition(column)};"
            ),
        )
        for column in keyed_difference(desired, current, by_name)
    ]

    modifies = []
    for column in desired:
        existing = current_by_name.get(column.name)
        if existing is not None:
            modifies.extend(await _modify_column(table, column, existing, sequence_lookup))

    return drops + adds + modifies


def compare_constraints(
    table: str,
    desired: List[ConstraintMeta],
    current: List[ConstraintMeta],
) -> Tuple[List[SchemaChange], ConstraintClassification]:
    """
    Diff the constraints of one table.

    A constraint whose definition differs is dropped and re-added. The
    returned classification names every primary and unique constraint on
    either side so their backing indexes are left alone by compare_indexes.
    """
    desired_defs = {constraint.name: constraint.definition for constraint in desired}
    current_defs = {constraint.name: constraint.definition for constraint in current}

    drops = [
        SchemaChange(
            change_type=ChangeType.DROP_CONSTRAINT,
            table=table,
            target_object=constraint.name,
            sql=f"ALTER TABLE {table} DROP CONSTRAINT IF EXISTS {constraint.name} CASCADE;",
        )
        for constraint in current
        if desired_defs.get(constraint.name) != constraint.definition
    ]

    adds = [
        SchemaChange(
            change_type=ChangeType.ADD_CONSTRAINT,
            table=table,
            target_object=constraint.name,
            sql=f"ALTER TABLE {table} ADD CONSTRAINT {constraint.name} {constraint.definition};",
        )
        for constraint in desired
        if current_defs.get(constraint.name) != constraint.definition
    ]

    return drops + adds, ConstraintClassification.from_constraints(desired, current)


def compare_indexes(
    table: str,
    desired: List[IndexMeta],
    current: List[IndexMeta],
    classification: ConstraintClassification,
    schema: str = "public",
) -> List[SchemaChange]:
    """Diff the standalone indexes of one table, skipping constraint-backed ones."""
    desired_defs = {index.name: index.definition for index in desired}
    current_defs = {index.name: index.definition for index in current}

    changes = []
    for index in current:
        if classification.is_constraint_backed(index.name):
            continue
        if desired_defs.get(index.name) != index.definition:
            changes.append(SchemaChange(
                change_type=ChangeType.DROP_INDEX,
                table=table,
                target_object=index.name,
                sql=f"DROP INDEX IF EXISTS {index.name};",
            ))

    for index in desired:
        if classification.is_constraint_backed(index.name):
            continue
        if current_defs.get(index.name) != index.definition:
            changes.append(SchemaChange(
                change_type=ChangeType.CREATE_INDEX,
                table=table,
                target_object=index.name,
                sql=f"{resolve_index_definition(index.definition, schema)};",
            ))

    return changes


def generate_create_table(
    table: str,
    columns: List[ColumnMeta],
    constraints: List[ConstraintMeta],
    indexes: List[IndexMeta],
    schema: str = "public",
) -> Tuple[str, ConstraintClassification]:
    """
    Render CREATE TABLE with inline constraints followed by its standalone indexes.

    Columns are rendered in the order given; callers apply a column ordering
    policy beforehand.
    """
    classification = ConstraintClassification.from_constraints(constraints)

    lines = [f"  {column.name} {render_column_definition(column)}" for column in columns]
    lines.extend(
        f"  CONSTRAINT {constraint.name} {constraint.definition}"
        for constraint in constraints
    )
    sql = f"CREATE TABLE IF NOT EXISTS {table} (\n" + ",\n".join(lines) + "\n);"

    index_sql = render_changes(
        SchemaChange(
            change_type=ChangeType.CREATE_INDEX,
            table=table,
            target_object=index.name,
            sql=f"{resolve_index_definition(index.definition, schema)};",
        )
        for index in indexes
        if not classification.is_constraint_backed(index.name)
    )
    if index_sql:
        sql += "\n" + index_sql

    logger.debug(f"Rendered CREATE TABLE for {table} ({len(columns)} columns)")
    return sql, classification
