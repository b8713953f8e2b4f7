import pytest
from unittest.mock import patch, MagicMock, PropertyMock
from datetime import datetime, timezone
import duckdb
import uuid

from flashpractice.db import PracticeDatabase
from flashpractice.exceptions import (
    DatabaseConnectionError,
    ScheduleOperationError,
    SchemaInitializationError,
    SessionOperationError,
)
from flashpractice.models import ReviewHistoryEntry, SchedulePatch
from flashpractice.schedule_store import ScheduleStore


@patch('duckdb.connect')
def test_get_connection_raises_custom_error_on_duckdb_error(mock_connect):
    """Tests that get_connection raises DatabaseConnectionError on duckdb.Error."""
    mock_connect.side_effect = duckdb.Error("Connection failed")
    db = PracticeDatabase(db_path=':memory:')

    with pytest.raises(DatabaseConnectionError, match="Failed to connect to database"):
        db.get_connection()


@patch('flashpractice.db.connection.duckdb.connect')
def test_initialize_schema_raises_custom_error_on_duckdb_error(mock_duckdb_connect):
    """Tests that initialize_schema raises SchemaInitializationError on duckdb.Error."""
    mock_cursor = MagicMock()
    mock_cursor.execute.side_effect = duckdb.Error("Schema creation failed")

    mock_connection = MagicMock()
    mock_connection.cursor.return_value.__enter__.return_value = mock_cursor
    mock_duckdb_connect.return_value = mock_connection

    db = PracticeDatabase(db_path=':memory:')

    with pytest.raises(SchemaInitializationError, match="Failed to initialize schema"):
        db.initialize_schema()


@patch('flashpractice.db.schema_manager.logger.error')
@patch('flashpractice.db.connection.duckdb.connect')
def test_initialize_schema_handles_rollback_error(mock_duckdb_connect, mock_logger_error):
    """
    Tests that initialize_schema logs an error if rollback fails after an initial
    schema creation error.
    """
    mock_cursor = MagicMock()
    mock_cursor.execute.side_effect = duckdb.Error("Initial schema error")

    mock_connection = MagicMock()
    mock_connection.cursor.return_value.__enter__.return_value = mock_cursor
    mock_connection.rollback.side_effect = duckdb.Error("Rollback failed!")
    type(mock_connection).closed = PropertyMock(return_value=False)

    mock_duckdb_connect.return_value = mock_connection

    db = PracticeDatabase(db_path=':memory:')

    with pytest.raises(SchemaInitializationError, match="Initial schema error"):
        db.initialize_schema()

    assert mock_logger_error.call_count == 2
    final_log_call = str(mock_logger_error.call_args_list[1])
    assert "Failed to rollback transaction: Rollback failed!" in final_log_call


def _patch():
    now = datetime(2024, 5, 14, 9, 0, tzinfo=timezone.utc)
    return SchedulePatch(
        kind="record",
        due_at=now,
        interval_ms=60_000,
        last_multiplier=1.8,
        review_history=[ReviewHistoryEntry(correct=True, time_ms=1000)],
        last_review_time_ms=1000,
        last_review_correct=True,
        last_seen_at=now,
        base_interval_ms=1_800_000,
    )


def test_schedule_store_wraps_duckdb_errors():
    cursor = MagicMock()
    cursor.execute.side_effect = duckdb.Error("disk on fire")
    store = ScheduleStore()

    with pytest.raises(ScheduleOperationError, match="disk on fire"):
        store.get(cursor, uuid.uuid4(), uuid.uuid4(), for_update=True)
    with pytest.raises(ScheduleOperationError):
        store.upsert(cursor, uuid.uuid4(), uuid.uuid4(), _patch(), None)


def test_schedule_store_lets_conflicts_through():
    """Write-write conflicts must reach the transaction wrapper unchanged."""
    cursor = MagicMock()
    cursor.execute.side_effect = duckdb.TransactionException("Conflict on update!")

    with pytest.raises(duckdb.TransactionException):
        ScheduleStore().get(cursor, uuid.uuid4(), uuid.uuid4(), for_update=True)


def test_daily_usage_wraps_duckdb_errors(in_memory_db: PracticeDatabase):
    cursor = MagicMock()
    cursor.execute.side_effect = duckdb.Error("boom")

    with pytest.raises(SessionOperationError, match="Failed to compute daily usage"):
        in_memory_db.get_daily_usage(
            uuid.uuid4(), datetime.now(timezone.utc), cursor=cursor
        )


@patch('flashpractice.db.connection.duckdb.connect')
def test_cursor_setup_failure_raises_connection_error(mock_duckdb_connect):
    mock_cursor = MagicMock()
    mock_cursor.execute.side_effect = duckdb.Error("no such setting")
    mock_duckdb_connect.return_value.cursor.return_value = mock_cursor

    db = PracticeDatabase(db_path=':memory:')

    with pytest.raises(DatabaseConnectionError, match="Failed to open a cursor"):
        with db.reader():
            pass
    mock_cursor.close.assert_called_once()
