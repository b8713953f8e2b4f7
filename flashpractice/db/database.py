"""
DuckDB database interactions for flashpractice.
Implements the PracticeDatabase facade over the deck layer's tables and the
practice engine's session, queue and attempt tables.
"""

import duckdb
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union
import logging

from ..constants import WHITESPACE_RANGES
from ..exceptions import (
    CardOperationError,
    DatabaseConnectionError,
    DatabaseError,
    DeckOperationError,
    MarshallingError,
    PracticeError,
    SessionOperationError,
    TransactionConflictError,
    UserOperationError,
)
from . import db_utils
from ..models import (
    Attempt,
    DailyLimits,
    DailyUsage,
    Deck,
    Flashcard,
    PracticeSession,
    QueueEntry,
    SchedulerSettings,
    User,
)
from .connection import ConnectionHandler
from .schema_manager import SchemaManager

# --- Logging Setup ---
logger = logging.getLogger(__name__)

# A flashcard is playable when its front and back both contain a character
# str.strip() keeps; RE2's \S only knows ASCII whitespace.
_NON_WHITESPACE_RE2 = "[^" + "".join(
    f"\\x{{{lo:x}}}" if lo == hi else f"\\x{{{lo:x}}}-\\x{{{hi:x}}}"
    for lo, hi in WHITESPACE_RANGES
) + "]"
PLAYABLE_SQL = (
    f"regexp_matches(f.front, '{_NON_WHITESPACE_RE2}') "
    f"AND regexp_matches(f.back, '{_NON_WHITESPACE_RE2}')"
)

_ATTEMPTED_BEFORE_SQL = """
    EXISTS (
        SELECT 1 FROM practice_attempts pa
        WHERE pa.user_id = $user_id AND pa.flashcard_id = f.id
    )
"""

_DUE_REVIEW_FROM_SQL = f"""
    FROM flashcards f
    LEFT JOIN flashcard_schedules fs
        ON fs.user_id = $user_id AND fs.flashcard_id = f.id
    WHERE f.deck_id = $deck_id
      AND {PLAYABLE_SQL}
      AND {_ATTEMPTED_BEFORE_SQL}
      AND (fs.due_at IS NULL OR fs.due_at <= $now)
"""

_NOVEL_FROM_SQL = f"""
    FROM flashcards f
    WHERE f.deck_id = $deck_id
      AND {PLAYABLE_SQL}
      AND NOT {_ATTEMPTED_BEFORE_SQL}
"""


class PracticeDatabase:
    """
    Acts as a Facade for the database subsystem, providing a simple, high-level
    interface for all practice data operations.

    It coordinates the ConnectionHandler, SchemaManager, and data marshalling
    utilities. Intended for use as a context manager.

    Methods taking a ``cursor`` run inside a caller-owned transaction (see
    :meth:`transaction`); where the cursor is optional, omitting it runs the
    statement on its own cursor outside any explicit transaction.
    """

    def __init__(self, db_path: Union[str, Path], read_only: bool = False):
        """
        Create a PracticeDatabase backed by the given DuckDB path.

        Args:
            db_path (str | Path): Path to the database file. Use ':memory:' for an in-memory database.
            read_only (bool): If True, open the database in read-only mode.
        """
        self._handler = ConnectionHandler(db_path=db_path, read_only=read_only)
        self._schema_manager = SchemaManager(self._handler)
        logger.info(
            f"PracticeDatabase initialized for DB at: {self._handler.db_path_resolved}"  # noqa: E501
        )

    @property
    def db_path_resolved(self) -> Path:
        return self._handler.db_path_resolved

    @property
    def read_only(self) -> bool:
        return self._handler.read_only

    def get_connection(self) -> duckdb.DuckDBPyConnection:
        return self._handler.get_connection()

    def close_connection(self) -> None:
        self._handler.close_connection()

    def __enter__(self) -> "PracticeDatabase":
        """
        Open the database connection and initialize the schema if a new writable database was created.
        """
        self.get_connection()
        if self._handler.is_new_db and not self._handler.read_only:
            self.initialize_schema()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close_connection()

    def initialize_schema(self, force_recreate_tables: bool = False) -> None:
        self._schema_manager.initialize_schema(
            force_recreate_tables=force_recreate_tables
        )

    # --- Transactions ---

    def _open_cursor(self) -> duckdb.DuckDBPyConnection:
        return self._handler.cursor()

    @contextmanager
    def reader(
        self, cursor: Optional[duckdb.DuckDBPyConnection] = None
    ) -> Iterator[duckdb.DuckDBPyConnection]:
        """Yield `cursor` if given, otherwise a fresh cursor closed on exit."""
        if cursor is not None:
            yield cursor
            return
        own_cursor = self._open_cursor()
        try:
            yield own_cursor
        finally:
            own_cursor.close()

    @contextmanager
    def transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """
        Run a block inside one DuckDB transaction on a dedicated cursor.

        Commits when the block exits normally. Any exception rolls the whole
        transaction back: engine outcomes (PracticeError) and our own
        DatabaseErrors propagate unchanged, write-write conflicts become
        TransactionConflictError and other duckdb errors become DatabaseError.

        Raises:
            DatabaseConnectionError: If the database is opened in read-only mode.
        """
        if self.read_only:
            raise DatabaseConnectionError(
                "Cannot open a write transaction in read-only mode."
            )
        cursor = self._open_cursor()
        try:
            cursor.begin()
            try:
                yield cursor
                cursor.commit()
            except Exception as e:
                self._rollback(cursor, e)
                if isinstance(e, (PracticeError, DatabaseError)):
                    raise
                if isinstance(e, duckdb.TransactionException):
                    raise TransactionConflictError(
                        f"Transaction conflict, rolled back: {e}",
                        original_exception=e,
                    ) from e
                if isinstance(e, duckdb.Error):
                    raise DatabaseError(
                        f"Transaction failed, rolled back: {e}",
                        original_exception=e,
                    ) from e
                raise
        finally:
            cursor.close()

    def _rollback(self, cursor, error: Exception) -> None:
        if isinstance(error, PracticeError):
            logger.debug(f"Rolling back transaction: {error}")
        else:
            logger.error(f"Error during transaction, rolling back: {error}")
        try:
            cursor.rollback()
        except duckdb.Error as rb_err:
            # A failed commit may already have ended the transaction.
            logger.debug(f"Rollback after failure reported: {rb_err}")

    # --- User Operations ---

    def create_user(
        self, username: str, user_id: Optional[uuid.UUID] = None
    ) -> User:
        """
        Insert a user with default scheduler settings and daily limits.

        Raises:
            UserOperationError: If the insert fails (e.g. duplicate username).
        """
        user = User(id=user_id or uuid.uuid4(), username=username)
        sql = "INSERT INTO users (id, username, created_at) VALUES ($1, $2, $3);"
        try:
            with self.transaction() as cursor:
                cursor.execute(sql, (user.id, user.username, user.created_at))
        except DatabaseError as e:
            raise UserOperationError(
                f"Failed to create user '{username}': {e}",
                original_exception=e,
            ) from e
        logger.info(f"Created user {user.id} ({username})")
        return user

    def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        sql = "SELECT * FROM users WHERE id = $1;"
        try:
            with self.reader() as cursor:
                row = db_utils.fetch_one_dict(cursor.execute(sql, (user_id,)))
        except duckdb.Error as e:
            logger.error(f"Error fetching user {user_id}: {e}")
            raise UserOperationError(
                f"Failed to fetch user: {e}", original_exception=e
            ) from e
        return db_utils.db_row_to_user(row) if row else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        sql = "SELECT * FROM users WHERE username = $1;"
        try:
            with self.reader() as cursor:
                row = db_utils.fetch_one_dict(cursor.execute(sql, (username,)))
        except duckdb.Error as e:
            raise UserOperationError(
                f"Failed to fetch user: {e}", original_exception=e
            ) from e
        return db_utils.db_row_to_user(row) if row else None

    def get_scheduler_settings(
        self, user_id: uuid.UUID, cursor=None
    ) -> SchedulerSettings:
        """
        Read the user's raw scheduler settings; unset columns fall back to defaults.

        Values are returned unclamped; the interval scheduler clamps them.
        """
        sql = """
            SELECT scheduler_base_interval_ms, scheduler_reward_multiplier,
                   scheduler_penalty_multiplier, scheduler_required_time_ms,
                   scheduler_time_history_limit
            FROM users WHERE id = $1;
        """
        try:
            with self.reader(cursor) as cur:
                row = db_utils.fetch_one_dict(cur.execute(sql, (user_id,)))
        except duckdb.Error as e:
            raise UserOperationError(
                f"Failed to read scheduler settings: {e}", original_exception=e
            ) from e
        row = row or {}
        values = {
            "base_interval_ms": row.get("scheduler_base_interval_ms"),
            "reward_multiplier": row.get("scheduler_reward_multiplier"),
            "penalty_multiplier": row.get("scheduler_penalty_multiplier"),
            "required_time_ms": row.get("scheduler_required_time_ms"),
            "time_history_limit": row.get("scheduler_time_history_limit"),
        }
        return SchedulerSettings(
            **{k: v for k, v in values.items() if v is not None}
        )

    def get_daily_limits(self, user_id: uuid.UUID, cursor=None) -> DailyLimits:
        sql = "SELECT daily_novel_limit, daily_review_limit FROM users WHERE id = $1;"
        try:
            with self.reader(cursor) as cur:
                row = db_utils.fetch_one_dict(cur.execute(sql, (user_id,)))
        except duckdb.Error as e:
            raise UserOperationError(
                f"Failed to read daily limits: {e}", original_exception=e
            ) from e
        row = row or {}
        values = {
            "novel_limit": row.get("daily_novel_limit"),
            "review_limit": row.get("daily_review_limit"),
        }
        return DailyLimits(**{k: max(0, v) for k, v in values.items() if v is not None})

    def update_scheduler_settings(
        self, user_id: uuid.UUID, settings: SchedulerSettings
    ) -> None:
        sql = """
            UPDATE users SET
                scheduler_base_interval_ms = $1,
                scheduler_reward_multiplier = $2,
                scheduler_penalty_multiplier = $3,
                scheduler_required_time_ms = $4,
                scheduler_time_history_limit = $5
            WHERE id = $6;
        """
        params = (
            int(settings.base_interval_ms),
            float(settings.reward_multiplier),
            float(settings.penalty_multiplier),
            int(settings.required_time_ms),
            int(settings.time_history_limit),
            user_id,
        )
        try:
            with self.transaction() as cursor:
                cursor.execute(sql, params)
        except DatabaseError as e:
            raise UserOperationError(
                f"Failed to update scheduler settings: {e}", original_exception=e
            ) from e

    def update_daily_limits(self, user_id: uuid.UUID, limits: DailyLimits) -> None:
        sql = """
            UPDATE users SET daily_novel_limit = $1, daily_review_limit = $2
            WHERE id = $3;
        """
        try:
            with self.transaction() as cursor:
                cursor.execute(sql, (limits.novel_limit, limits.review_limit, user_id))
        except DatabaseError as e:
            raise UserOperationError(
                f"Failed to update daily limits: {e}", original_exception=e
            ) from e

    # --- Deck Operations ---

    def insert_deck(self, cursor, deck: Deck) -> Deck:
        cursor.execute(
            """
            INSERT INTO decks (id, user_id, name, is_archived, created_at)
            VALUES ($1, $2, $3, $4, $5);
            """,
            (deck.id, deck.user_id, deck.name, deck.is_archived, deck.created_at),
        )
        return deck

    def create_deck(self, user_id: uuid.UUID, name: str) -> Deck:
        deck = Deck(user_id=user_id, name=name)
        try:
            with self.transaction() as cursor:
                self.insert_deck(cursor, deck)
        except DatabaseError as e:
            raise DeckOperationError(
                f"Failed to create deck '{name}': {e}", original_exception=e
            ) from e
        logger.info(f"Created deck {deck.id} ('{name}') for user {user_id}")
        return deck

    def get_deck(self, deck_id: uuid.UUID, cursor=None) -> Optional[Deck]:
        sql = "SELECT * FROM decks WHERE id = $1;"
        try:
            with self.reader(cursor) as cur:
                row = db_utils.fetch_one_dict(cur.execute(sql, (deck_id,)))
        except duckdb.Error as e:
            logger.error(f"Error fetching deck {deck_id}: {e}")
            raise DeckOperationError(
                f"Failed to fetch deck: {e}", original_exception=e
            ) from e
        return db_utils.db_row_to_deck(row) if row else None

    def get_practicable_deck(
        self, user_id: uuid.UUID, deck_id: uuid.UUID, cursor=None
    ) -> Optional[Deck]:
        """Return the deck only if it exists, belongs to the user and is not archived."""
        deck = self.get_deck(deck_id, cursor=cursor)
        if deck is None or deck.user_id != user_id or deck.is_archived:
            return None
        return deck

    def get_decks_for_user(
        self, user_id: uuid.UUID, include_archived: bool = False
    ) -> List[Deck]:
        sql = "SELECT * FROM decks WHERE user_id = $1"
        if not include_archived:
            sql += " AND is_archived = false"
        sql += " ORDER BY created_at ASC, name ASC;"
        try:
            with self.reader() as cursor:
                rows = db_utils.rows_to_dicts(cursor.execute(sql, (user_id,)))
            return [db_utils.db_row_to_deck(row) for row in rows]
        except duckdb.Error as e:
            raise DeckOperationError(
                f"Failed to list decks: {e}", original_exception=e
            ) from e
        except MarshallingError as e:
            raise DeckOperationError(
                "Failed to parse decks from database.", original_exception=e
            ) from e

    def set_deck_archived(self, deck_id: uuid.UUID, archived: bool) -> None:
        try:
            with self.transaction() as cursor:
                cursor.execute(
                    "UPDATE decks SET is_archived = $1 WHERE id = $2;",
                    (archived, deck_id),
                )
        except DatabaseError as e:
            raise DeckOperationError(
                f"Failed to archive deck {deck_id}: {e}", original_exception=e
            ) from e

    # --- Flashcard Operations ---

    _INSERT_FLASHCARD_SQL = """
        INSERT INTO flashcards (id, deck_id, kind, front, back, mcq_options,
                                mcq_correct_index, sketch_code, sketch_width,
                                sketch_height, created_at)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11);
    """

    def insert_flashcards(self, cursor, cards: Sequence[Flashcard]) -> int:
        if not cards:
            return 0
        params = [db_utils.flashcard_to_db_params_tuple(card) for card in cards]
        cursor.executemany(self._INSERT_FLASHCARD_SQL, params)
        return len(params)

    def add_flashcards_batch(self, cards: Sequence[Flashcard]) -> int:
        """
        Insert flashcards in a single transactional batch.

        Returns:
            int: Number of flashcards inserted; an empty sequence is a no-op.

        Raises:
            CardOperationError: If the batch insert fails.
        """
        if not cards:
            return 0
        try:
            with self.transaction() as cursor:
                count = self.insert_flashcards(cursor, cards)
        except DatabaseError as e:
            raise CardOperationError(
                f"Batch flashcard insert failed: {e}", original_exception=e
            ) from e
        logger.info(f"Inserted {count} flashcards.")
        return count

    def get_flashcards_for_deck(
        self, deck_id: uuid.UUID, playable_only: bool = False, cursor=None
    ) -> List[Flashcard]:
        sql = "SELECT * FROM flashcards f WHERE f.deck_id = $1"
        if playable_only:
            sql += f" AND {PLAYABLE_SQL}"
        sql += " ORDER BY f.created_at ASC, f.id ASC;"
        try:
            with self.reader(cursor) as cur:
                rows = db_utils.rows_to_dicts(cur.execute(sql, (deck_id,)))
            return [db_utils.db_row_to_flashcard(row) for row in rows]
        except duckdb.Error as e:
            raise CardOperationError(
                f"Failed to fetch flashcards for deck {deck_id}: {e}",
                original_exception=e,
            ) from e
        except MarshallingError as e:
            raise CardOperationError(
                "Failed to parse flashcards from database.", original_exception=e
            ) from e

    def count_playable_flashcards(self, deck_id: uuid.UUID, cursor=None) -> int:
        sql = f"SELECT COUNT(*) FROM flashcards f WHERE f.deck_id = $1 AND {PLAYABLE_SQL};"
        try:
            with self.reader(cursor) as cur:
                result = cur.execute(sql, (deck_id,)).fetchone()
        except duckdb.Error as e:
            raise CardOperationError(
                f"Failed to count playable flashcards: {e}", original_exception=e
            ) from e
        return result[0] if result else 0

    # --- Practice Availability ---

    def count_due_review_cards(
        self, user_id: uuid.UUID, deck_id: uuid.UUID, now: datetime, cursor=None
    ) -> int:
        """Count playable cards the user attempted before that are due at `now` (or unscheduled)."""
        sql = f"SELECT COUNT(*) {_DUE_REVIEW_FROM_SQL};"
        params = {"user_id": user_id, "deck_id": deck_id, "now": now}
        with self.reader(cursor) as cur:
            result = cur.execute(sql, params).fetchone()
        return result[0] if result else 0

    def select_due_review_card_ids(
        self,
        user_id: uuid.UUID,
        deck_id: uuid.UUID,
        now: datetime,
        limit: int,
        cursor=None,
    ) -> List[uuid.UUID]:
        """
        Due review cards, least-established first: shortest interval, then
        earliest due, then card creation order.
        """
        if limit <= 0:
            return []
        sql = f"""
            SELECT f.id {_DUE_REVIEW_FROM_SQL}
            ORDER BY fs.interval_ms ASC NULLS FIRST,
                     fs.due_at ASC NULLS FIRST,
                     f.created_at ASC, f.id ASC
            LIMIT $limit;
        """
        params = {"user_id": user_id, "deck_id": deck_id, "now": now, "limit": limit}
        with self.reader(cursor) as cur:
            rows = cur.execute(sql, params).fetchall()
        return [row[0] for row in rows]

    def count_novel_cards(
        self, user_id: uuid.UUID, deck_id: uuid.UUID, cursor=None
    ) -> int:
        sql = f"SELECT COUNT(*) {_NOVEL_FROM_SQL};"
        with self.reader(cursor) as cur:
            result = cur.execute(sql, {"user_id": user_id, "deck_id": deck_id}).fetchone()
        return result[0] if result else 0

    def select_novel_card_ids(
        self, user_id: uuid.UUID, deck_id: uuid.UUID, limit: int, cursor=None
    ) -> List[uuid.UUID]:
        if limit <= 0:
            return []
        sql = f"""
            SELECT f.id {_NOVEL_FROM_SQL}
            ORDER BY f.created_at ASC, f.id ASC
            LIMIT $limit;
        """
        params = {"user_id": user_id, "deck_id": deck_id, "limit": limit}
        with self.reader(cursor) as cur:
            rows = cur.execute(sql, params).fetchall()
        return [row[0] for row in rows]

    def get_daily_usage(
        self, user_id: uuid.UUID, since: datetime, cursor=None
    ) -> DailyUsage:
        """Count the user's attempts answered at or after `since`, split by novelty."""
        sql = """
            SELECT
                COUNT(*) FILTER (WHERE is_novel) AS novel_used,
                COUNT(*) FILTER (WHERE NOT is_novel) AS review_used
            FROM practice_attempts
            WHERE user_id = $1 AND answered_at >= $2;
        """
        try:
            with self.reader(cursor) as cur:
                row = db_utils.fetch_one_dict(cur.execute(sql, (user_id, since)))
        except duckdb.Error as e:
            raise SessionOperationError(
                f"Failed to compute daily usage: {e}", original_exception=e
            ) from e
        row = row or {}
        return DailyUsage(
            novel_used=int(row.get("novel_used") or 0),
            review_used=int(row.get("review_used") or 0),
        )

    # --- Practice Session Operations ---

    def claim_lifecycle_lock(
        self, cursor, user_id: uuid.UUID, deck_id: uuid.UUID, now: datetime
    ) -> None:
        """
        Claim the (user, deck) lifecycle row for the rest of the transaction.

        Each claim bumps the row's lock_version, so of two concurrent
        transactions claiming the same pair only one can commit; the other
        fails with a write-write conflict at the claim or at commit.
        """
        cursor.execute(
            """
            INSERT INTO practice_session_locks (user_id, deck_id, claimed_at)
            VALUES ($1, $2, $3)
            ON CONFLICT (user_id, deck_id) DO UPDATE SET
                claimed_at = EXCLUDED.claimed_at,
                lock_version = lock_version + 1;
            """,
            (user_id, deck_id, now),
        )

    def claim_session(self, cursor, session_id: uuid.UUID, now: datetime) -> bool:
        """
        Claim the session row for the rest of the transaction.

        Returns:
            bool: False if no session with this id exists.
        """
        result = cursor.execute(
            """
            UPDATE practice_sessions
            SET updated_at = $1, lock_version = lock_version + 1
            WHERE id = $2;
            """,
            (now, session_id),
        ).fetchone()
        return bool(result and result[0])

    def get_session(
        self, session_id: uuid.UUID, cursor=None
    ) -> Optional[PracticeSession]:
        sql = "SELECT * FROM practice_sessions WHERE id = $1;"
        try:
            with self.reader(cursor) as cur:
                row = db_utils.fetch_one_dict(cur.execute(sql, (session_id,)))
        except duckdb.Error as e:
            raise SessionOperationError(
                f"Failed to fetch session {session_id}: {e}", original_exception=e
            ) from e
        return db_utils.db_row_to_session(row) if row else None

    def find_active_session(
        self, cursor, user_id: uuid.UUID, deck_id: uuid.UUID
    ) -> Optional[PracticeSession]:
        """Most recently created active session for the pair, if any."""
        row = db_utils.fetch_one_dict(
            cursor.execute(
                """
                SELECT * FROM practice_sessions
                WHERE user_id = $1 AND deck_id = $2 AND status = 'active'
                ORDER BY created_at DESC
                LIMIT 1;
                """,
                (user_id, deck_id),
            )
        )
        return db_utils.db_row_to_session(row) if row else None

    def insert_session(self, cursor, session: PracticeSession) -> PracticeSession:
        cursor.execute(
            """
            INSERT INTO practice_sessions (id, user_id, deck_id, status, state,
                progress_index, view_index, front_started_at, front_elapsed_ms,
                created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11);
            """,
            (
                session.id,
                session.user_id,
                session.deck_id,
                session.status.value,
                session.state.value,
                session.progress_index,
                session.view_index,
                session.front_started_at,
                session.front_elapsed_ms,
                session.created_at,
                session.updated_at,
            ),
        )
        return session

    def update_session(self, cursor, session: PracticeSession) -> None:
        """Write back every mutable field of the session row."""
        cursor.execute(
            """
            UPDATE practice_sessions SET
                status = $1,
                state = $2,
                progress_index = $3,
                view_index = $4,
                front_started_at = $5,
                front_elapsed_ms = $6,
                updated_at = $7
            WHERE id = $8;
            """,
            (
                session.status.value,
                session.state.value,
                session.progress_index,
                session.view_index,
                session.front_started_at,
                session.front_elapsed_ms,
                session.updated_at,
                session.id,
            ),
        )

    # --- Queue Operations ---

    def insert_queue_entries(self, cursor, entries: Sequence[QueueEntry]) -> int:
        if not entries:
            return 0
        cursor.executemany(
            """
            INSERT INTO practice_session_queue (session_id, position, flashcard_id, is_novel)
            VALUES ($1, $2, $3, $4);
            """,
            [
                (e.session_id, e.position, e.flashcard_id, e.is_novel)
                for e in entries
            ],
        )
        return len(entries)

    def count_queue(self, session_id: uuid.UUID, cursor=None) -> int:
        with self.reader(cursor) as cur:
            result = cur.execute(
                "SELECT COUNT(*) FROM practice_session_queue WHERE session_id = $1;",
                (session_id,),
            ).fetchone()
        return result[0] if result else 0

    def get_queue_entry(
        self, session_id: uuid.UUID, position: int, cursor=None
    ) -> Optional[QueueEntry]:
        with self.reader(cursor) as cur:
            row = db_utils.fetch_one_dict(
                cur.execute(
                    """
                    SELECT * FROM practice_session_queue
                    WHERE session_id = $1 AND position = $2;
                    """,
                    (session_id, position),
                )
            )
        return QueueEntry(**row) if row else None

    def get_queue_card(
        self, session_id: uuid.UUID, position: int, cursor=None
    ) -> Optional[tuple]:
        """
        Returns:
            (QueueEntry, Flashcard) for the slot, or None if the position is
            outside the queue.
        """
        with self.reader(cursor) as cur:
            row = db_utils.fetch_one_dict(
                cur.execute(
                    """
                    SELECT q.session_id, q.position, q.flashcard_id, q.is_novel,
                           f.deck_id, f.kind, f.front, f.back, f.mcq_options,
                           f.mcq_correct_index, f.sketch_code, f.sketch_width,
                           f.sketch_height, f.created_at
                    FROM practice_session_queue q
                    JOIN flashcards f ON f.id = q.flashcard_id
                    WHERE q.session_id = $1 AND q.position = $2;
                    """,
                    (session_id, position),
                )
            )
        if not row:
            return None
        entry = QueueEntry(
            session_id=row.pop("session_id"),
            position=row.pop("position"),
            flashcard_id=row["flashcard_id"],
            is_novel=row.pop("is_novel"),
        )
        row["id"] = row.pop("flashcard_id")
        return entry, db_utils.db_row_to_flashcard(row)

    # --- Attempt Operations ---

    def get_attempt(
        self, session_id: uuid.UUID, position: int, cursor=None
    ) -> Optional[Attempt]:
        with self.reader(cursor) as cur:
            row = db_utils.fetch_one_dict(
                cur.execute(
                    """
                    SELECT * FROM practice_attempts
                    WHERE session_id = $1 AND position = $2;
                    """,
                    (session_id, position),
                )
            )
        return db_utils.db_row_to_attempt(row) if row else None

    def insert_attempt(self, cursor, attempt: Attempt) -> None:
        cursor.execute(
            """
            INSERT INTO practice_attempts (session_id, position, user_id, deck_id,
                flashcard_id, is_novel, answered_correct, time_ms, answered_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9);
            """,
            db_utils.attempt_to_db_params_tuple(attempt),
        )

    def update_attempt_outcome(
        self,
        cursor,
        session_id: uuid.UUID,
        position: int,
        correct: bool,
        time_ms: Optional[int] = None,
    ) -> None:
        """Overwrite correctness (and optionally time_ms); answered_at never changes."""
        if time_ms is None:
            cursor.execute(
                """
                UPDATE practice_attempts SET answered_correct = $1
                WHERE session_id = $2 AND position = $3;
                """,
                (correct, session_id, position),
            )
        else:
            cursor.execute(
                """
                UPDATE practice_attempts SET answered_correct = $1, time_ms = $2
                WHERE session_id = $3 AND position = $4;
                """,
                (correct, time_ms, session_id, position),
            )

    def get_attempts_for_session(
        self, session_id: uuid.UUID, cursor=None
    ) -> Dict[int, Attempt]:
        with self.reader(cursor) as cur:
            rows = db_utils.rows_to_dicts(
                cur.execute(
                    "SELECT * FROM practice_attempts WHERE session_id = $1 ORDER BY position;",
                    (session_id,),
                )
            )
        return {row["position"]: db_utils.db_row_to_attempt(row) for row in rows}

    def get_attempts_for_deck(
        self,
        user_id: uuid.UUID,
        deck_id: uuid.UUID,
        since: Optional[datetime] = None,
    ) -> List[Attempt]:
        """All of the user's attempts on the deck's playable cards, oldest first."""
        sql = f"""
            SELECT pa.* FROM practice_attempts pa
            JOIN flashcards f ON f.id = pa.flashcard_id
            WHERE pa.user_id = $1 AND f.deck_id = $2 AND {PLAYABLE_SQL}
        """
        params: List[Any] = [user_id, deck_id]
        if since is not None:
            sql += " AND pa.answered_at >= $3"
            params.append(since)
        sql += " ORDER BY pa.answered_at ASC, pa.position ASC;"
        try:
            with self.reader() as cursor:
                rows = db_utils.rows_to_dicts(cursor.execute(sql, params))
        except duckdb.Error as e:
            raise SessionOperationError(
                f"Failed to fetch attempts for deck {deck_id}: {e}",
                original_exception=e,
            ) from e
        return [db_utils.db_row_to_attempt(row) for row in rows]

    def count_learned_cards(self, user_id: uuid.UUID, deck_id: uuid.UUID) -> int:
        """Playable cards in the deck the user has attempted at least once."""
        sql = f"""
            SELECT COUNT(*) FROM flashcards f
            WHERE f.deck_id = $deck_id AND {PLAYABLE_SQL} AND {_ATTEMPTED_BEFORE_SQL};
        """
        with self.reader() as cursor:
            result = cursor.execute(
                sql, {"user_id": user_id, "deck_id": deck_id}
            ).fetchone()
        return result[0] if result else 0


def utc_day_start(now: Optional[datetime] = None) -> datetime:
    """UTC midnight of the day containing `now`."""
    now = now or datetime.now(timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)
