"""
SQLite store: the primary, transactional backend.

Wraps a single ``sqlite3`` connection kept open for the life of the process.
Blocking calls run in a worker thread so the event loop stays responsive;
every public method returns a ``StoreResult`` instead of raising.
"""

import asyncio
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Sequence, Union

from biztrack.config import DB_TIMEOUT
from biztrack.exceptions import (
    HydrationError,
    SchemaError,
    StoreConnectionError,
    WriteError,
)

from .base import Statement, StoreResult
from .write_set import value_column

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"


class SqliteStore:
    """
    Primary backend on an embedded SQLite database.

    Lifecycle: ``connect`` creates the connection, ``open`` configures it,
    ``ensure_schema`` creates tables idempotently, after which ``query`` and
    ``bulk_write`` may be used.
    """

    def __init__(self, db_path: Union[Path, str], timeout: float = DB_TIMEOUT):
        """
        Initialize the store without touching the disk.

        Args:
            db_path: Path to the SQLite database file, or ":memory:"
            timeout: Seconds to wait on a locked database
        """
        self.db_path = db_path
        self.timeout = timeout
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def _ensure_db_directory(self):
        """Ensure the database directory exists."""
        if str(self.db_path) == MEMORY_DB:
            return
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Database directory ensured: {Path(self.db_path).parent}")

    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("SQLite store is not connected")
        return self._conn

    @contextmanager
    def _transaction(self):
        """Run the enclosed statements in one transaction, rolling back on error."""
        with self._lock:
            conn = self._require_connection()
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.OperationalError as e:
                logger.error(f"Database locked or operational error: {e}", exc_info=True)
                conn.execute("ROLLBACK")
                raise
            except Exception as e:
                logger.error(f"Database error: {e}", exc_info=True)
                conn.execute("ROLLBACK")
                raise

    # =========================================================================
    # Blocking implementations
    # =========================================================================

    def _connect(self):
        self._ensure_db_directory()
        # Autocommit mode: transactions are opened explicitly in _transaction()
        self._conn = sqlite3.connect(
            self.db_path,
            timeout=self.timeout,
            isolation_level=None,
            check_same_thread=False,
        )

    def _open(self):
        with self._lock:
            conn = self._require_connection()
            mode = conn.execute("PRAGMA journal_mode = WAL").fetchone()[0]
            logger.debug(f"SQLite journal mode: {mode}")

    def _ensure_schema(self, ddl: Sequence[str]):
        with self._transaction() as conn:
            for statement in ddl:
                conn.execute(statement)

    def _query(self, table: str) -> list[tuple[str, str]]:
        with self._lock:
            conn = self._require_connection()
            cursor = conn.execute(
                f"SELECT key, {value_column(table)} FROM {table} ORDER BY rowid"
            )
            return [(row[0], row[1]) for row in cursor.fetchall()]

    def _bulk_write(self, write_set: Sequence[Statement]) -> int:
        with self._transaction() as conn:
            for statement in write_set:
                conn.execute(statement.sql, statement.params)
        return len(write_set)

    def _close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # =========================================================================
    # Backend interface
    # =========================================================================

    async def connect(self) -> StoreResult[None]:
        """Create the database connection."""
        try:
            await asyncio.to_thread(self._connect)
            logger.info(f"Connected to SQLite database: {self.db_path}")
            return StoreResult.success()
        except (sqlite3.Error, OSError) as e:
            return StoreResult.failure(
                StoreConnectionError(f"Could not connect to {self.db_path}: {e}")
            )

    async def open(self) -> StoreResult[None]:
        """Configure the connection (write-ahead logging)."""
        try:
            await asyncio.to_thread(self._open)
            return StoreResult.success()
        except sqlite3.Error as e:
            return StoreResult.failure(
                StoreConnectionError(f"Could not open {self.db_path}: {e}")
            )

    async def ensure_schema(self, ddl: Sequence[str]) -> StoreResult[None]:
        """Run idempotent DDL in one transaction."""
        try:
            await asyncio.to_thread(self._ensure_schema, ddl)
            logger.debug("Ledger schema initialized successfully")
            return StoreResult.success()
        except sqlite3.Error as e:
            return StoreResult.failure(SchemaError(f"Schema creation failed: {e}"))

    async def query(self, table: str) -> StoreResult[list[tuple[str, str]]]:
        """Read every ``(key, value)`` row of a table in storage order."""
        try:
            rows = await asyncio.to_thread(self._query, table)
            return StoreResult.success(rows)
        except sqlite3.Error as e:
            return StoreResult.failure(
                HydrationError(f"Could not read {table}: {e}", details={"table": table})
            )

    async def bulk_write(self, write_set: Sequence[Statement]) -> StoreResult[int]:
        """
        Apply a write-set atomically.

        Returns:
            The number of statements applied, or a WriteError after rollback
        """
        try:
            count = await asyncio.to_thread(self._bulk_write, write_set)
            logger.debug(f"Applied write-set of {count} statements")
            return StoreResult.success(count)
        except sqlite3.Error as e:
            return StoreResult.failure(
                WriteError(
                    f"Bulk write failed: {e}",
                    details={"statements": len(write_set)},
                )
            )

    async def close(self) -> None:
        """Close the connection if it is open."""
        await asyncio.to_thread(self._close)
