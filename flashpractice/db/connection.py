"""
DuckDB connection handling for flashpractice.

One ConnectionHandler owns the process's connection to a database file (or
an in-memory database). Work is done on cursors handed out by `cursor()`:
each DuckDB cursor is its own client context, so every one is pinned to UTC
as it is opened.
"""

import duckdb
import logging
from pathlib import Path
from typing import Optional, Union

from ..exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"


class ConnectionHandler:
    """Opens, hands out cursors on, and closes one DuckDB database."""

    def __init__(self, db_path: Union[str, Path], read_only: bool = False):
        """
        Args:
            db_path: Database file, or ":memory:" (any case) for a private
                in-memory database. File paths are resolved to absolute paths.
            read_only: Open the file without write access.
        """
        self.in_memory: bool = (
            isinstance(db_path, str) and db_path.lower() == MEMORY_PATH
        )
        self.db_path_resolved: Path = (
            Path(MEMORY_PATH) if self.in_memory else Path(db_path).resolve()
        )
        self.read_only: bool = read_only
        self.is_new_db: bool = False
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        logger.info(f"ConnectionHandler set up for {self.db_path_resolved}")

    def get_connection(self) -> duckdb.DuckDBPyConnection:
        """
        Return the open connection, connecting on first use.

        `is_new_db` records whether this call created the database, so the
        caller can decide to lay down the schema.

        Raises:
            DatabaseConnectionError: If DuckDB cannot open the database.
        """
        if self._connection is not None:
            return self._connection

        if self.in_memory:
            self.is_new_db = True
        else:
            self.is_new_db = not self.db_path_resolved.exists()
            if not self.read_only:
                self.db_path_resolved.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._connection = duckdb.connect(
                database=str(self.db_path_resolved), read_only=self.read_only
            )
        except duckdb.Error as e:
            raise DatabaseConnectionError(
                f"Failed to connect to database: {e}", original_exception=e
            ) from e
        logger.info(
            f"Connected to {self.db_path_resolved}"
            + (" (new database)" if self.is_new_db else "")
        )
        return self._connection

    def cursor(self) -> duckdb.DuckDBPyConnection:
        """
        Open a new cursor whose TIMESTAMPTZ values come back in UTC.

        The practice day starts at UTC midnight, so every read and write goes
        through a UTC session.

        Raises:
            DatabaseConnectionError: If the cursor cannot be opened.
        """
        cursor = self.get_connection().cursor()
        try:
            cursor.execute("SET TimeZone = 'UTC';")
        except duckdb.Error as e:
            cursor.close()
            raise DatabaseConnectionError(
                f"Failed to open a cursor: {e}", original_exception=e
            ) from e
        return cursor

    def close_connection(self) -> None:
        """Close the connection if open; the next `get_connection` reconnects."""
        if self._connection is None:
            return
        try:
            self._connection.close()
            logger.info(f"Closed database connection to {self.db_path_resolved}.")
        except duckdb.Error as e:
            logger.error(f"Error closing the database connection: {e}")
        finally:
            self._connection = None

    def __enter__(self) -> duckdb.DuckDBPyConnection:
        return self.get_connection()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close_connection()
