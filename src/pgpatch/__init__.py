"""
pgpatch: PostgreSQL schema and seed-data patch generator.

pgpatch compares a source and a target PostgreSQL database and renders the
SQL scripts (CREATE/ALTER TABLE, views, seed INSERTs) that bring the target
in line with the source.
"""

__version__ = "0.1.0"
__author__ = "pgpatch Contributors"
__email__ = "contributors@pgpatch.dev"

from .config import PgPatchConfig
from .exceptions import PgPatchError, ConfigurationError, DatabaseError, SchemaError, SeedDataError

__all__ = [
    "__version__",
    "PgPatchConfig",
    "PgPatchError",
    "ConfigurationError",
    "DatabaseError",
    "SchemaError",
    "SeedDataError",
]
