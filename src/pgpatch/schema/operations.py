"""
Schema change records for pgpatch.

Every synthesized DDL statement is modelled as a SchemaChange so callers can
inspect what will change as well as render the SQL text.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional


class ChangeType(str, Enum):
    """Types of schema changes."""

    CREATE_TABLE = "create_table"
    ADD_COLUMN = "add_column"
    MODIFY_COLUMN = "modify_column"
    DROP_COLUMN = "drop_column"
    CREATE_SEQUENCE = "create_sequence"
    ADD_CONSTRAINT = "add_constraint"
    DROP_CONSTRAINT = "drop_constraint"
    CREATE_INDEX = "create_index"
    DROP_INDEX = "drop_index"


DESTRUCTIVE_CHANGES = {
    ChangeType.DROP_COLUMN,
    ChangeType.DROP_CONSTRAINT,
    ChangeType.DROP_INDEX,
}


@dataclass
class SchemaChange:
    """Represents a schema change operation."""

    change_type: ChangeType
    table: str
    sql: str
    target_object: Optional[str] = None  # Column name, index name, etc.
    description: str = ""

    @property
    def is_destructive(self) -> bool:
        """Whether applying the change can lose data or objects."""
        return self.change_type in DESTRUCTIVE_CHANGES

    @property
    def change_id(self) -> str:
        """Get unique identifier for this change."""
        target = self.target_object or "unknown"
        return f"{self.change_type.value}_{self.table}_{target}"


def render_changes(changes: Iterable[SchemaChange]) -> str:
    """Render changes as newline separated SQL statements."""
    return "\n".join(change.sql for change in changes)


def get_change_summary(changes: List[SchemaChange]) -> Dict[str, int]:
    """Count changes per change type."""
    summary: Dict[str, int] = {}
    for change in changes:
        summary[change.change_type.value] = summary.get(change.change_type.value, 0) + 1
    return summary
