"""
Data access for flashcard schedules, one row per (user, flashcard).

Every method runs on a caller-owned cursor inside an open transaction. A
schedule is created on the first attempt at a flashcard and is never deleted
by the practice engine.
"""

import logging
from typing import Optional
from uuid import UUID

import duckdb

from .db import db_utils
from .exceptions import ScheduleOperationError
from .models import FlashcardSchedule, SchedulePatch

logger = logging.getLogger(__name__)


class ScheduleStore:
    """Reads and writes `flashcard_schedules` rows."""

    def get(
        self,
        cursor,
        user_id: UUID,
        flashcard_id: UUID,
        for_update: bool = False,
    ) -> Optional[FlashcardSchedule]:
        """
        Fetch the schedule for (user, flashcard), or None if it does not exist.

        With ``for_update=True`` the row is claimed for write before it is
        read, so a concurrent transaction touching the same schedule conflicts
        instead of interleaving its read-modify-write with ours.
        """
        params = (user_id, flashcard_id)
        try:
            if for_update:
                cursor.execute(
                    """
                    UPDATE flashcard_schedules SET lock_version = lock_version + 1
                    WHERE user_id = $1 AND flashcard_id = $2;
                    """,
                    params,
                )
            row = db_utils.fetch_one_dict(
                cursor.execute(
                    """
                    SELECT * FROM flashcard_schedules
                    WHERE user_id = $1 AND flashcard_id = $2;
                    """,
                    params,
                )
            )
        except duckdb.TransactionException:
            raise
        except duckdb.Error as e:
            raise ScheduleOperationError(
                f"Failed to read schedule for flashcard {flashcard_id}: {e}",
                original_exception=e,
            ) from e
        return db_utils.db_row_to_schedule(row) if row else None

    def upsert(
        self,
        cursor,
        user_id: UUID,
        flashcard_id: UUID,
        patch: SchedulePatch,
        existing: Optional[FlashcardSchedule],
    ) -> FlashcardSchedule:
        """
        Write a full replacement of the schedule's mutable fields.

        A ``record`` patch rotates the current interval and last-seen time
        into their ``prev_`` columns. A ``correct`` patch leaves both
        ``prev_`` columns as stored. A new row starts with the base interval
        as its previous interval and its own first sighting as the previous
        last-seen time, so ``prev_last_seen_at`` is never null.

        Returns:
            The schedule as written.
        """
        if existing is None:
            prev_interval_ms = patch.base_interval_ms
            prev_last_seen_at = patch.last_seen_at
        elif patch.kind == "record":
            prev_interval_ms = existing.interval_ms
            prev_last_seen_at = existing.last_seen_at
        else:
            prev_interval_ms = existing.prev_interval_ms
            prev_last_seen_at = existing.prev_last_seen_at

        schedule = FlashcardSchedule(
            user_id=user_id,
            flashcard_id=flashcard_id,
            due_at=patch.due_at,
            interval_ms=patch.interval_ms,
            prev_interval_ms=prev_interval_ms,
            last_multiplier=patch.last_multiplier,
            review_history=list(patch.review_history),
            last_review_time_ms=patch.last_review_time_ms,
            last_review_correct=patch.last_review_correct,
            last_seen_at=patch.last_seen_at,
            prev_last_seen_at=prev_last_seen_at,
        )
        values = (
            schedule.due_at,
            schedule.interval_ms,
            schedule.prev_interval_ms,
            schedule.last_multiplier,
            db_utils.encode_review_history(schedule.review_history),
            schedule.last_review_time_ms,
            schedule.last_review_correct,
            schedule.last_seen_at,
            schedule.prev_last_seen_at,
            user_id,
            flashcard_id,
        )

        try:
            if existing is None:
                cursor.execute(
                    """
                    INSERT INTO flashcard_schedules (due_at, interval_ms,
                        prev_interval_ms, last_multiplier, review_history,
                        last_review_time_ms, last_review_correct, last_seen_at,
                        prev_last_seen_at, user_id, flashcard_id)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11);
                    """,
                    values,
                )
            else:
                cursor.execute(
                    """
                    UPDATE flashcard_schedules SET
                        due_at = $1,
                        interval_ms = $2,
                        prev_interval_ms = $3,
                        last_multiplier = $4,
                        review_history = $5,
                        last_review_time_ms = $6,
                        last_review_correct = $7,
                        last_seen_at = $8,
                        prev_last_seen_at = $9
                    WHERE user_id = $10 AND flashcard_id = $11;
                    """,
                    values,
                )
        except duckdb.TransactionException:
            raise
        except duckdb.Error as e:
            raise ScheduleOperationError(
                f"Failed to write schedule for flashcard {flashcard_id}: {e}",
                original_exception=e,
            ) from e

        logger.debug(
            f"Schedule {patch.kind} for flashcard {flashcard_id}: "
            f"interval {schedule.interval_ms}ms, due {schedule.due_at.isoformat()}"
        )
        return schedule
