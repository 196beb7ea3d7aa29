"""
Seed data package for pgpatch.
"""

from .codec import (
    LiveReferenceResolver,
    ReferenceResolver,
    quote_string,
    to_predicate,
    to_sql_literal,
)
from .engine import SeedDataEngine, SeedResult, render_insert_statements, render_tuple

__all__ = [
    "LiveReferenceResolver",
    "ReferenceResolver",
    "quote_string",
    "to_predicate",
    "to_sql_literal",
    "SeedDataEngine",
    "SeedResult",
    "render_insert_statements",
    "render_tuple",
]
