import duckdb
import logging
from .connection import ConnectionHandler
from . import schema
from ..exceptions import DatabaseConnectionError, SchemaInitializationError
from .. import config as flashpractice_config

logger = logging.getLogger(__name__)

# Dropped in this order when tables are force-recreated.
_ENGINE_TABLES = (
    "practice_session_locks",
    "flashcard_schedules",
    "practice_attempts",
    "practice_session_queue",
    "practice_sessions",
    "flashcards",
    "decks",
    "users",
)


class SchemaManager:
    """Manages the database schema initialization and maintenance."""

    def __init__(self, handler: ConnectionHandler):
        self._handler = handler

    def initialize_schema(self, force_recreate_tables: bool = False) -> None:
        """
        Initializes the database schema using a transaction. Skips if in read-only mode
        unless it's an in-memory DB. Can force recreation of tables, which will
        delete all existing data.
        """
        if self._handle_read_only_initialization(force_recreate_tables):
            return

        conn = self._handler.get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.begin()
                if force_recreate_tables:
                    self._recreate_tables(cursor)
                self._create_schema_from_sql(cursor)
                cursor.commit()
            logger.info(f"Database schema at {self._handler.db_path_resolved} initialized successfully (or already exists).")
        except duckdb.Error as e:
            logger.error(f"Error initializing database schema at {self._handler.db_path_resolved}: {e}")
            if conn and not getattr(conn, 'closed', True):
                try:
                    conn.rollback()
                    logger.info("Transaction rolled back due to schema initialization error.")
                except duckdb.Error as rb_err:
                    logger.error(f"Failed to rollback transaction: {rb_err}")
            raise SchemaInitializationError(f"Failed to initialize schema: {e}", original_exception=e) from e

    def _handle_read_only_initialization(self, force_recreate_tables: bool) -> bool:
        """Returns True if initialization should be skipped because the DB is read-only."""
        if self._handler.read_only:
            if force_recreate_tables:
                raise DatabaseConnectionError("Cannot force_recreate_tables in read-only mode.")
            if not self._handler.in_memory:
                logger.warning("Attempting to initialize schema in read-only mode. Skipping.")
                return True
        return False

    def _perform_safety_check(self, cursor: duckdb.DuckDBPyConnection) -> None:
        """Refuses to drop tables that already hold practice history."""
        if self._handler.in_memory or flashpractice_config.settings.testing_mode:
            return

        try:
            existing = {
                row[0]
                for row in cursor.execute(
                    "SELECT table_name FROM information_schema.tables "
                    "WHERE table_name IN ('practice_attempts', 'flashcards');"
                ).fetchall()
            }
            attempt_count = card_count = 0
            if "practice_attempts" in existing:
                attempt_count = cursor.execute("SELECT COUNT(*) FROM practice_attempts").fetchone()[0]
            if "flashcards" in existing:
                card_count = cursor.execute("SELECT COUNT(*) FROM flashcards").fetchone()[0]
        except duckdb.Error as e:
            error_msg = f"CRITICAL: Cannot verify if tables contain data before dropping. Refusing to proceed to prevent data loss. Error: {e}"
            logger.error(error_msg)
            raise ValueError(error_msg) from e

        if attempt_count > 0 or card_count > 0:
            error_msg = f"CRITICAL: Attempted to drop tables with existing data! Attempts: {attempt_count}, Flashcards: {card_count}. This would cause permanent data loss. Use backup/restore instead."
            logger.error(error_msg)
            raise ValueError(error_msg)

    def _recreate_tables(self, cursor: duckdb.DuckDBPyConnection) -> None:
        """Drops all tables to force recreation."""
        self._perform_safety_check(cursor)

        logger.warning(f"Forcing table recreation for {self._handler.db_path_resolved}. ALL EXISTING DATA WILL BE LOST.")
        for table in _ENGINE_TABLES:
            cursor.execute(f"DROP TABLE IF EXISTS {table} CASCADE;")

    def _create_schema_from_sql(self, cursor: duckdb.DuckDBPyConnection) -> None:
        cursor.execute(schema.DB_SCHEMA_SQL)
