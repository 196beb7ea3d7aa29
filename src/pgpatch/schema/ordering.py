"""
Column and table ordering for pgpatch.

Provides the column ordering policy applied to generated CREATE TABLE
statements and the foreign-key dependency sort that orders CREATE TABLE
scripts so referenced tables are created first.
"""

import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Tuple

from pydantic import BaseModel, Field

from ..database.introspection import ColumnMeta, ConstraintMeta, ConstraintType


logger = logging.getLogger(__name__)


PRIMARY_KEY_PATTERN = re.compile(r"PRIMARY\s+KEY\s*\((.*?)\)", re.IGNORECASE)
IDENTIFIER = r'(?:"(?:[^"]|"")+"|[\w$]+)'
REFERENCES_PATTERN = re.compile(rf"REFERENCES\s+({IDENTIFIER}(?:\.{IDENTIFIER})?)", re.IGNORECASE)


def _unquote(identifier: str) -> str:
    identifier = identifier.strip()
    if len(identifier) >= 2 and identifier.startswith('"') and identifier.endswith('"'):
        return identifier[1:-1].replace('""', '"')
    return identifier


def _split_identifiers(text: str) -> List[str]:
    """Split a comma separated identifier list, honouring quotes."""
    parts, current, quoted = [], [], False
    for char in text:
        if char == '"':
            quoted = not quoted
        if char == "," and not quoted:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return [_unquote(part) for part in parts if part.strip()]


def extract_primary_key_columns(constraints: Iterable[ConstraintMeta]) -> List[str]:
    """Column names of the primary key, in key order."""
    for constraint in constraints:
        if constraint.type != ConstraintType.PRIMARY:
            continue
        match = PRIMARY_KEY_PATTERN.search(constraint.definition)
        if match:
            return _split_identifiers(match.group(1))
    return []


def extract_foreign_key_tables(constraints: Iterable[ConstraintMeta]) -> List[str]:
    """Names of the tables referenced by foreign keys, schema prefix stripped."""
    tables: List[str] = []
    for constraint in constraints:
        if constraint.type != ConstraintType.FOREIGN:
            continue
        match = REFERENCES_PATTERN.search(constraint.definition)
        if not match:
            logger.warning(f"Could not parse referenced table from {constraint.name}")
            continue
        reference = match.group(1)
        name = re.findall(IDENTIFIER, reference)[-1]
        table = _unquote(name)
        if table not in tables:
            tables.append(table)
    return tables


class ColumnOrderingPolicy(BaseModel):
    """
    Column order for generated CREATE TABLE statements.

    Primary key columns come first, then ordinary columns, then attribute
    columns sorted by prefix rank and number, then tenant columns, then the
    audit ("who") columns.
    """

    attribute_marker: str = Field("_attr_", description="Substring identifying attribute columns")
    attribute_prefixes: List[str] = Field(
        default_factory=lambda: ["c_attr", "n_attr", "d_attr"],
        description="Attribute prefixes in sort rank order",
    )
    tenant_columns: List[str] = Field(
        default_factory=lambda: ["tenant_id", "object_version_number"],
        description="Tenant columns in output order",
    )
    who_columns: List[str] = Field(
        default_factory=lambda: [
            "user_id",
            "creation_date",
            "created_by",
            "last_updated_by",
            "last_update_date",
            "last_login_id",
        ],
        description="Audit columns in output order",
    )

    def _attribute_sort_key(self, column: ColumnMeta):
        pattern = "|".join(re.escape(prefix) for prefix in self.attribute_prefixes)
        match = re.search(rf"({pattern})_(\d+)", column.name)
        if not match:
            return (len(self.attribute_prefixes), 0)
        return (self.attribute_prefixes.index(match.group(1)), int(match.group(2)))

    def reorder(self, columns: List[ColumnMeta], constraints: List[ConstraintMeta]) -> List[ColumnMeta]:
        """Return the columns in policy order."""
        primary_names = set(extract_primary_key_columns(constraints))
        by_name = {column.name: column for column in columns}
        reserved = set(self.tenant_columns) | set(self.who_columns)

        leading = [column for column in columns if column.name in primary_names]
        attributes = []
        for column in columns:
            if column.name in primary_names or column.name in reserved:
                continue
            if self.attribute_marker in column.name:
                attributes.append(column)
            else:
                leading.append(column)

        attributes.sort(key=self._attribute_sort_key)
        tenant = [by_name[name] for name in self.tenant_columns if name in by_name and name not in primary_names]
        who = [by_name[name] for name in self.who_columns if name in by_name and name not in primary_names]

        return leading + attributes + tenant + who


@dataclass
class TableDefinition:
    """A rendered CREATE TABLE script and the tables it references."""

    name: str
    sql: str
    references: List[str] = field(default_factory=list)


@dataclass
class TableOrder:
    """Result of the dependency sort."""

    order: List[str]
    unresolved: List[str] = field(default_factory=list)

    @property
    def has_cycles(self) -> bool:
        return bool(self.unresolved)


def order_tables(references: Mapping[str, Iterable[str]]) -> TableOrder:
    """
    Kahn topological sort of tables by foreign-key dependency.

    Referenced tables that are not keys of ``references`` still take part as
    nodes. Tables left on a cycle are appended in first-seen order and listed
    as unresolved. Self references are ignored.
    """
    graph: Dict[str, List[str]] = {}
    in_degree: Dict[str, int] = {}

    for table, referenced in references.items():
        graph.setdefault(table, [])
        in_degree.setdefault(table, 0)
        for parent in dict.fromkeys(referenced):
            if parent == table:
                continue
            graph.setdefault(parent, []).append(table)
            in_degree.setdefault(parent, 0)
            in_degree[table] += 1

    queue = deque(table for table, degree in in_degree.items() if degree == 0)
    order: List[str] = []
    while queue:
        table = queue.popleft()
        order.append(table)
        for dependent in graph[table]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    placed = set(order)
    unresolved = [table for table in graph if table not in placed]
    if unresolved:
        logger.warning(f"Foreign key cycle between tables: {', '.join(unresolved)}")

    return TableOrder(order=order + unresolved, unresolved=unresolved)


def render_ordered_create_tables(definitions: List[TableDefinition]) -> Tuple[str, TableOrder]:
    """
    Concatenate CREATE TABLE scripts in dependency order.

    Returns:
        The combined script and the TableOrder it followed
    """
    by_name = {definition.name: definition for definition in definitions}
    table_order = order_tables({d.name: d.references for d in definitions})

    scripts = [by_name[name].sql for name in table_order.order if name in by_name]
    return "\n\n".join(scripts), table_order
