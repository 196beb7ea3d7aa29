"""
SQL literal encoding for pgpatch seed data.

Converts fetched row values into PostgreSQL literals and resolves reference
columns into correlated subqueries so inserted rows point at the right
parent row on the target regardless of its surrogate key.
"""

import json
import logging
import math
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from ..config import ReferenceColumnConfig
from ..database.introspection import CatalogReader


logger = logging.getLogger(__name__)


ESCAPES = {
    "\\": "\\\\",
    "\n": "\\n",
    "\r": "\\r",
    "\0": "\\0",
}


def quote_string(value: str) -> str:
    """
    Quote a string as a SQL literal.

    Single quotes are doubled. Backslash, newline, carriage return and NUL
    are backslash-escaped, in which case the literal carries the ``E``
    prefix so PostgreSQL reads the escapes back as the original characters.
    """
    escaped = value.replace("'", "''")
    needs_escape_syntax = any(char in escaped for char in ESCAPES)
    for char, replacement in ESCAPES.items():
        escaped = escaped.replace(char, replacement)
    prefix = "E" if needs_escape_syntax else ""
    return f"{prefix}'{escaped}'"


def format_date(value: date) -> str:
    if isinstance(value, datetime) and value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d")


def to_sql_literal(value: Any) -> str:
    """Render a fetched value as a SQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and not math.isfinite(value):
        return f"'{value}'"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, str):
        return quote_string(value)
    if isinstance(value, (dict, list)):
        return f"{quote_string(json.dumps(value))}::json"
    if isinstance(value, date):
        return f"'{format_date(value)}'"
    return quote_string(str(value))


def to_predicate(column: str, value: Any) -> str:
    """Render ``column = value`` for a lookup WHERE clause."""
    if value is None:
        return f"{column} IS NULL"
    if isinstance(value, bool):
        return f"{column} = {'TRUE' if value else 'FALSE'}"
    if isinstance(value, (int, float, Decimal)):
        return f"{column} = {value}"
    if isinstance(value, (date, datetime)):
        return f"{column} = '{value.isoformat()}'"
    return f"{column} = {quote_string(str(value))}"


class ReferenceResolver(ABC):
    """Turns a reference column value into a correlated subquery."""

    @abstractmethod
    async def resolve(self, reference: ReferenceColumnConfig, literal: str) -> Optional[str]:
        """
        Build the subquery selecting the referenced value on the target.

        Args:
            reference: Reference column settings
            literal: SQL literal of the fetched value

        Returns:
            ``(SELECT ...)`` text, or None to keep the literal
        """


class LiveReferenceResolver(ReferenceResolver):
    """Resolves references by looking the row up on the source database."""

    def __init__(self, reader: CatalogReader):
        self.reader = reader
        self._cache: Dict[Tuple[str, str, Tuple[str, ...], str], Optional[str]] = {}

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    async def resolve(self, reference: ReferenceColumnConfig, literal: str) -> Optional[str]:
        key = (reference.table, reference.lookup_column, tuple(reference.compare_columns), literal)
        if key in self._cache:
            return self._cache[key]

        sql = (
            f"SELECT {', '.join(reference.compare_columns)} FROM {reference.table} "
            f"WHERE {reference.lookup_column} = {literal} LIMIT 1"
        )
        rows = await self.reader.query(sql)

        subquery = None
        if rows:
            predicates = [to_predicate(column, value) for column, value in rows[0].items()]
            if predicates:
                subquery = (
                    f"(SELECT {reference.lookup_column} FROM {reference.table} "
                    f"WHERE {' AND '.join(predicates)} LIMIT 1)"
                )
        else:
            logger.debug(f"No {reference.table} row with {reference.lookup_column} = {literal}")

        self._cache[key] = subquery
        return subquery
