"""
Configuration system for pgpatch using Pydantic.
"""

import json
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .database.connection import ConnectionConfig
from .database.introspection import TableFilter
from .exceptions import ConfigurationError, MissingTableMetadataError
from .schema.ordering import ColumnOrderingPolicy
from .schema.views import ViewNamingPolicy


BATCH_FORMAT_PATTERN = re.compile(r"^batch-(\d+)$")


class ReferenceColumnConfig(BaseModel):
    """A column whose value is looked up in another table at insert time."""

    model_config = ConfigDict(populate_by_name=True)

    column: str = Field(..., description="Column of the seeded table")
    table: str = Field(..., description="Referenced table")
    compare_columns: List[str] = Field(
        ..., alias="compareColumns", description="Columns identifying the referenced row"
    )
    source_column: Optional[str] = Field(
        None, alias="sourceColumn", description="Referenced column when named differently"
    )

    @property
    def lookup_column(self) -> str:
        """Column of the referenced table holding the seeded value."""
        return self.source_column or self.column


class TableMetadataConfig(BaseModel):
    """Seed data settings for one table, as found in the table metadata JSON."""

    model_config = ConfigDict(populate_by_name=True)

    table_name: str = Field(..., alias="tableName", description="Table name")
    ignored_columns: List[str] = Field(
        default_factory=list, alias="ignoredColumns",
        description="Column name prefixes excluded from seed data",
    )
    compare_columns: List[str] = Field(
        ..., alias="compareColumns", description="Columns identifying a row"
    )
    order_by: Optional[str] = Field(None, alias="orderBy", description="ORDER BY clause for row fetch")
    reference_columns: List[ReferenceColumnConfig] = Field(
        default_factory=list, alias="referenceColumns",
        description="Columns resolved through a lookup on the source",
    )
    insert_statement_format: str = Field(
        "batch", alias="insertStatementFormat",
        description="'batch', 'split' or 'batch-N'",
    )

    @field_validator("compare_columns")
    @classmethod
    def validate_compare_columns(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("compareColumns must name at least one column")
        return v

    @field_validator("insert_statement_format")
    @classmethod
    def validate_insert_format(cls, v: str) -> str:
        if v in ("batch", "split"):
            return v
        match = BATCH_FORMAT_PATTERN.match(v)
        if match and int(match.group(1)) > 0:
            return v
        raise ValueError(f"Please provide valid insertStatementFormat value: '{v}'")

    def is_ignored_column(self, column_name: str) -> bool:
        return any(column_name.startswith(prefix) for prefix in self.ignored_columns)

    def get_reference(self, column_name: str) -> Optional[ReferenceColumnConfig]:
        for reference in self.reference_columns:
            if reference.column == column_name:
                return reference
        return None


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")


class PgPatchConfig(BaseSettings):
    """Main pgpatch configuration."""

    # Databases
    source: Optional[ConnectionConfig] = Field(
        None, description="Source database (desired state)"
    )
    target: Optional[ConnectionConfig] = Field(
        None, description="Target database (current state)"
    )
    schema_name: str = Field("public", description="Schema compared on both databases")

    # Output
    export_dir: str = Field(".", description="Directory receiving generated scripts")
    file_prefix: str = Field("pgpatch", description="Prefix of merged script file names")
    file_format: Literal["merge", "split"] = Field(
        "merge", description="Merge scripts into one file or write one file per table"
    )

    # Inputs
    tables_metadata_path: Optional[str] = Field(
        None, description="JSON file with per-table seed data settings"
    )
    seeding_overrides_path: Optional[str] = Field(
        None, description="JSON file mapping columns to fixed SQL expressions"
    )
    view_ordering_path: Optional[str] = Field(
        None, description="File of DROP VIEW IF EXISTS lines ordering view creation"
    )

    # Naming policies
    table_filter: TableFilter = Field(
        default_factory=TableFilter, description="Tables excluded from comparison"
    )
    naming: ViewNamingPolicy = Field(
        default_factory=ViewNamingPolicy, description="Tenant view conventions"
    )
    column_order: ColumnOrderingPolicy = Field(
        default_factory=ColumnOrderingPolicy, description="CREATE TABLE column order"
    )

    # System configuration
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PGPATCH_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "PgPatchConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            # Expand environment variables in the data
            data = cls._expand_env_vars(data)

            return cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    def load_tables_metadata(self) -> List[TableMetadataConfig]:
        """Load the table metadata JSON file."""
        if not self.tables_metadata_path:
            raise ConfigurationError("tables_metadata_path is not configured")
        return load_tables_metadata(self.tables_metadata_path)

    def load_seeding_overrides(self) -> Dict[str, str]:
        """Load the seeding overrides JSON file, or nothing when not configured."""
        if not self.seeding_overrides_path:
            return {}
        return load_seeding_overrides(self.seeding_overrides_path)

    def load_view_ordering(self, path: Optional[Union[str, Path]] = None) -> Optional[str]:
        """Read the view ordering file."""
        path = path or self.view_ordering_path
        if not path:
            return None
        try:
            return Path(path).read_text(encoding="utf-8")
        except FileNotFoundError:
            raise ConfigurationError(f"View ordering file not found: {path}")

    def validate_config(self) -> None:
        """Validate the entire configuration for consistency."""
        if self.source is None:
            raise ConfigurationError("A source database must be configured")

        for name in ("tables_metadata_path", "seeding_overrides_path", "view_ordering_path"):
            value = getattr(self, name)
            if value and not Path(value).is_file():
                raise ConfigurationError(f"{name} does not exist: {value}")

        if self.tables_metadata_path:
            self.load_tables_metadata()
        if self.seeding_overrides_path:
            self.load_seeding_overrides()


def _read_json(path: Union[str, Path]) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"File not found: {path}")
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}")


def load_tables_metadata(path: Union[str, Path]) -> List[TableMetadataConfig]:
    """Parse a table metadata JSON file (a list of table entries)."""
    data = _read_json(path)
    if not isinstance(data, list):
        raise ConfigurationError(f"Table metadata in {path} must be a list")

    try:
        return [TableMetadataConfig(**entry) for entry in data]
    except ValidationError as e:
        raise ConfigurationError(f"Invalid table metadata in {path}: {e}")


def load_seeding_overrides(path: Union[str, Path]) -> Dict[str, str]:
    """Parse a seeding overrides JSON file (an object of column -> SQL)."""
    data = _read_json(path)
    if not isinstance(data, dict):
        raise ConfigurationError(f"Seeding overrides in {path} must be an object")
    return {column: str(value) for column, value in data.items()}


def find_table_metadata(
    tables_metadata: List[TableMetadataConfig], table_name: str
) -> TableMetadataConfig:
    """Get the metadata entry of a table."""
    for entry in tables_metadata:
        if entry.table_name == table_name:
            return entry
    raise MissingTableMetadataError(table_name)
