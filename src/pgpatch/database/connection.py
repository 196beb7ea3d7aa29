"""
Database connection management for pgpatch.

Provides the asyncpg-backed session used by the comparison engine: one
connection per database holding one explicit READ COMMITTED transaction
for the whole comparison run.
"""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Dict, Optional, Any, AsyncIterator, List
from urllib.parse import urlparse, parse_qs

import asyncpg
from pydantic import BaseModel, Field, field_validator

from ..exceptions import (
    DatabaseConnectionError,
    DatabaseConfigurationError,
    TransactionError,
)


logger = logging.getLogger(__name__)


class ConnectionConfig(BaseModel):
    """Database connection configuration."""

    host: str = Field(..., description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(..., description="Database name")
    user: str = Field(..., description="Database user")
    password: str = Field("", description="Database password")

    # Connection settings
    connect_timeout: float = Field(30.0, description="Connection timeout in seconds")
    command_timeout: float = Field(300.0, description="Command timeout in seconds")
    server_settings: Dict[str, str] = Field(
        default_factory=lambda: {"application_name": "pgpatch"},
        description="PostgreSQL server settings"
    )

    # Session timeouts applied when the transaction starts (milliseconds)
    statement_timeout_ms: Optional[int] = Field(
        None, description="statement_timeout for the comparison session"
    )
    idle_in_transaction_timeout_ms: Optional[int] = Field(
        None, description="idle_in_transaction_session_timeout for the comparison session"
    )

    ssl_mode: Optional[str] = Field("prefer", description="SSL mode")

    @field_validator('database')
    @classmethod
    def validate_database(cls, v):
        if not v or not v.strip():
            raise ValueError("Database name is required")
        return v

    @classmethod
    def from_url(cls, url: str) -> "ConnectionConfig":
        """Create configuration from database URL."""
        parsed = urlparse(url)

        if parsed.scheme not in ("postgresql", "postgres"):
            raise DatabaseConfigurationError(f"Invalid database URL scheme: {parsed.scheme}")

        if not parsed.path or parsed.path == "/":
            raise DatabaseConfigurationError("Database name is required")

        query_params = parse_qs(parsed.query) if parsed.query else {}

        config_data = {
            "host": parsed.hostname or "localhost",
            "port": parsed.port or 5432,
            "database": parsed.path.lstrip("/"),
            "user": parsed.username or "",
            "password": parsed.password or "",
        }

        if "sslmode" in query_params:
            config_data["ssl_mode"] = query_params["sslmode"][0]

        return cls(**config_data)

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """Convert to asyncpg connection kwargs."""
        kwargs = {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "timeout": self.connect_timeout,
            "command_timeout": self.command_timeout,
            "server_settings": self.server_settings,
        }

        if self.ssl_mode:
            kwargs["ssl"] = self.ssl_mode

        return kwargs

    def session_settings(self) -> List[str]:
        """SET statements issued right after BEGIN."""
        statements = []
        if self.idle_in_transaction_timeout_ms:
            statements.append(
                f"SET idle_in_transaction_session_timeout = {self.idle_in_transaction_timeout_ms}"
            )
        if self.statement_timeout_ms:
            statements.append(f"SET statement_timeout = {self.statement_timeout_ms}")
        return statements

    @property
    def display_name(self) -> str:
        return f"{self.host}:{self.port}/{self.database}"


class DatabaseSession:
    """
    Single PostgreSQL connection with one explicit transaction.

    This is the "execute SQL, return rows; begin/commit/rollback" capability
    consumed by the catalog reader and the seed data engine.
    """

    def __init__(self, config: ConnectionConfig, name: str = "default"):
        self.config = config
        self.name = name
        self._connection: Optional[asyncpg.Connection] = None
        self._transaction = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open the underlying connection."""
        if self._connection is not None:
            return

        try:
            logger.info(f"Connecting '{self.name}' to {self.config.display_name}")
            self._connection = await asyncpg.connect(**self.config.to_connection_kwargs())
        except Exception as e:
            logger.error(f"Failed to connect '{self.name}': {e}")
            raise DatabaseConnectionError(
                f"Failed to connect to {self.config.display_name}: {e}",
                {"session": self.name},
            ) from e

    async def begin(self) -> None:
        """Connect if needed and start a READ COMMITTED transaction."""
        await self.connect()

        if self._transaction is not None:
            return

        try:
            self._transaction = self._connection.transaction(isolation="read_committed")
            await self._transaction.start()
            for statement in self.config.session_settings():
                await self.execute(statement)
            logger.debug(f"Transaction started on '{self.name}'")
        except Exception as e:
            logger.error(f"Failed to start transaction on '{self.name}': {e}")
            await self.rollback()
            raise TransactionError(
                f"Failed to start transaction: {e}", {"session": self.name}
            ) from e

    async def commit(self) -> None:
        """Commit the open transaction, rolling back if the commit fails."""
        if self._transaction is None:
            return

        try:
            await self._transaction.commit()
            self._transaction = None
            logger.debug(f"Transaction committed on '{self.name}'")
        except Exception as e:
            logger.error(f"Commit failed on '{self.name}': {e}")
            await self.rollback()
            raise TransactionError(
                f"Failed to commit transaction: {e}", {"session": self.name}
            ) from e

    async def rollback(self) -> None:
        """Roll back the open transaction, if any."""
        transaction, self._transaction = self._transaction, None
        if transaction is None:
            return

        try:
            await transaction.rollback()
            logger.info(f"Transaction rolled back on '{self.name}'")
        except Exception as e:
            logger.error(f"Rollback failed on '{self.name}': {e}")

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        """
        Run the body inside a savepoint of the open transaction.

        A failed statement aborts the whole PostgreSQL transaction. Rolling
        back to the savepoint when the body raises keeps the session usable
        for the next table. Without an open transaction the body runs as is.
        """
        if self._transaction is None:
            yield
            return

        savepoint = self._connection.transaction()
        await savepoint.start()
        try:
            yield
        except Exception:
            logger.debug(f"Rolling back to savepoint on '{self.name}'")
            await savepoint.rollback()
            raise
        await savepoint.commit()

    async def close(self) -> None:
        """Close the underlying connection."""
        connection, self._connection = self._connection, None
        self._transaction = None
        if connection is not None:
            logger.info(f"Closing connection '{self.name}'")
            await connection.close()

    async def execute_query(self, sql: str, *args) -> List[Dict[str, Any]]:
        """Run a query and return its rows as plain dicts."""
        if self._connection is None:
            raise DatabaseConnectionError(
                "Session is not connected", {"session": self.name}
            )

        async with self._lock:
            records = await self._connection.fetch(sql, *args)
        return [dict(record) for record in records]

    async def execute(self, sql: str, *args) -> str:
        """Execute a statement and return its status."""
        if self._connection is None:
            raise DatabaseConnectionError(
                "Session is not connected", {"session": self.name}
            )

        async with self._lock:
            return await self._connection.execute(sql, *args)

    @property
    def is_connected(self) -> bool:
        """Check if the connection is open."""
        if self._connection is None:
            return False
        # Handle both real asyncpg connections and mock objects
        is_closed = getattr(self._connection, "is_closed", None)
        if callable(is_closed):
            return not is_closed()
        return True

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None


class DatabaseManager:
    """Manages the named sessions (source, target) of one comparison run."""

    def __init__(self):
        self._sessions: Dict[str, DatabaseSession] = {}

    @property
    def sessions(self) -> Dict[str, DatabaseSession]:
        """Access to managed sessions."""
        return self._sessions

    def add_database(self, name: str, config: ConnectionConfig) -> DatabaseSession:
        """Register a database connection under a name."""
        if name in self._sessions:
            raise DatabaseConfigurationError(f"Database '{name}' already exists")

        logger.info(f"Adding database connection '{name}' ({config.display_name})")
        session = DatabaseSession(config, name=name)
        self._sessions[name] = session
        return session

    def add_session(self, name: str, session: DatabaseSession) -> None:
        """Register an already built session."""
        if name in self._sessions:
            raise DatabaseConfigurationError(f"Database '{name}' already exists")
        self._sessions[name] = session

    def find_session(self, name: str) -> Optional[DatabaseSession]:
        """Get a session by name, or None when it is not configured."""
        return self._sessions.get(name)

    async def begin_all(self) -> None:
        """Start a transaction on every session before any read."""
        for name, session in self._sessions.items():
            logger.debug(f"Beginning transaction on '{name}'")
            await session.begin()

    async def commit_all(self) -> None:
        """Commit every session."""
        for session in self._sessions.values():
            await session.commit()

    async def rollback_all(self) -> None:
        """Roll back every session."""
        for session in self._sessions.values():
            await session.rollback()

    async def close_all(self) -> None:
        """Close all database connections."""
        logger.info("Closing all database connections")
        for name, session in self._sessions.items():
            try:
                await session.close()
            except Exception as e:
                logger.error(f"Error closing session '{name}': {e}")

    @asynccontextmanager
    async def transaction_scope(self) -> AsyncIterator["DatabaseManager"]:
        """
        Hold every session inside one transaction for the body.

        Commits all sessions when the body succeeds, rolls back and re-raises
        on failure, and always closes the connections.
        """
        try:
            await self.begin_all()
            yield self
            await self.commit_all()
        except Exception:
            await self.rollback_all()
            raise
        finally:
            await self.close_all()

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator["DatabaseManager"]:
        """Hold every session inside a savepoint for the body."""
        async with AsyncExitStack() as stack:
            for session in self._sessions.values():
                await stack.enter_async_context(session.savepoint())
            yield self

    def list_databases(self) -> List[str]:
        """List all configured database names."""
        return list(self._sessions.keys())

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close_all()
