# flashpractice/scheduler.py

"""
Defines the BaseScheduler abstract class and the IntervalScheduler, which
grows a flashcard's review interval on success and shrinks it otherwise.

The computation is kept apart from persistence: `compute_review` and
`compute_correction` are pure, while `record_review` and `correct_review`
read settings and schedules inside the caller's transaction and write the
result through the ScheduleStore.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, List, Optional
from uuid import UUID

from .constants import (
    MAX_HISTORY_LIMIT,
    MAX_INTERVAL_MS,
    MAX_MULTIPLIER,
    MAX_REQUIRED_TIME_MS,
    MIN_HISTORY_LIMIT,
    MIN_INTERVAL_MS,
    MIN_MULTIPLIER,
)
from .db import db_utils
from .db.database import PracticeDatabase
from .models import (
    FlashcardSchedule,
    ReviewHistoryEntry,
    SchedulePatch,
    SchedulerSettings,
)
from .schedule_store import ScheduleStore

logger = logging.getLogger(__name__)


def _clamp_int(value: Any, low: int, high: int) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return low
    if not math.isfinite(number):
        return low
    return max(low, min(high, int(math.floor(number))))


def _clamp_float(value: Any, low: float, high: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return low
    if not math.isfinite(number):
        return low
    return max(low, min(high, number))


def clamp_settings(settings: SchedulerSettings) -> SchedulerSettings:
    """
    Force per-user settings into sane bounds.

    Integer fields are floored; a non-finite value falls to the field's
    lower bound.
    """
    return SchedulerSettings(
        base_interval_ms=_clamp_int(
            settings.base_interval_ms, MIN_INTERVAL_MS, MAX_INTERVAL_MS
        ),
        reward_multiplier=_clamp_float(
            settings.reward_multiplier, MIN_MULTIPLIER, MAX_MULTIPLIER
        ),
        penalty_multiplier=_clamp_float(
            settings.penalty_multiplier, MIN_MULTIPLIER, MAX_MULTIPLIER
        ),
        required_time_ms=_clamp_int(
            settings.required_time_ms, 0, MAX_REQUIRED_TIME_MS
        ),
        time_history_limit=_clamp_int(
            settings.time_history_limit, MIN_HISTORY_LIMIT, MAX_HISTORY_LIMIT
        ),
    )


def is_within_required_time(time_ms: int, required_time_ms: float) -> bool:
    """A budget of zero (or less) disables the time check."""
    if required_time_ms <= 0:
        return True
    return time_ms <= required_time_ms


def choose_multiplier(
    correct: bool, time_ms: int, settings: SchedulerSettings
) -> float:
    if correct and is_within_required_time(time_ms, settings.required_time_ms):
        return settings.reward_multiplier
    return settings.penalty_multiplier


def compute_next_interval_ms(prev_interval_ms: int, multiplier: float) -> int:
    """
    Scale an interval and keep it inside [1s, 10y].

    Uses the built-in round(), so exact .5 products round half to even.
    """
    raw = round(prev_interval_ms * multiplier)
    return max(MIN_INTERVAL_MS, min(MAX_INTERVAL_MS, int(raw)))


def append_history(
    history: List[ReviewHistoryEntry], entry: ReviewHistoryEntry, limit: int
) -> List[ReviewHistoryEntry]:
    """Append `entry`, dropping the oldest entries beyond `limit`."""
    updated = list(history) + [entry]
    if len(updated) <= limit:
        return updated
    return updated[len(updated) - limit:]


def replace_last_history_entry(
    history: List[ReviewHistoryEntry], entry: ReviewHistoryEntry
) -> List[ReviewHistoryEntry]:
    if not history:
        return [entry]
    return list(history[:-1]) + [entry]


@dataclass
class SchedulerOutput:
    interval_ms: int
    prev_interval_ms: int
    multiplier: float
    due_at: datetime
    review_history: List[ReviewHistoryEntry] = field(default_factory=list)


class BaseScheduler(ABC):
    """
    Abstract base class for all schedulers in flashpractice.
    """

    @abstractmethod
    def compute_review(
        self,
        existing: Optional[FlashcardSchedule],
        settings: SchedulerSettings,
        correct: bool,
        time_ms: int,
        answered_at: datetime,
    ) -> SchedulerOutput:
        """
        Computes the schedule after a fresh attempt.

        Args:
            existing: The flashcard's schedule before this attempt, if any.
            settings: Clamped scheduler settings for the user.
            correct: Whether the attempt was judged correct.
            time_ms: Think-time for the attempt, in milliseconds.
            answered_at: The UTC timestamp of the attempt.

        Returns:
            A SchedulerOutput describing the new schedule.
        """
        pass

    @abstractmethod
    def compute_correction(
        self,
        existing: FlashcardSchedule,
        settings: SchedulerSettings,
        correct: bool,
        time_ms: int,
        answered_at: datetime,
    ) -> SchedulerOutput:
        """
        Computes the schedule after amending the most recent attempt.

        The result must replace, not compound, the adjustment made when the
        attempt was first recorded.
        """
        pass


class IntervalScheduler(BaseScheduler):
    """
    Multiplicative interval scheduler.

    A correct answer given within the think-time budget multiplies the
    interval by the reward multiplier; anything else applies the penalty
    multiplier.
    """

    def __init__(
        self, db: PracticeDatabase, store: Optional[ScheduleStore] = None
    ):
        self.db = db
        self.store = store or ScheduleStore()

    def compute_review(
        self,
        existing: Optional[FlashcardSchedule],
        settings: SchedulerSettings,
        correct: bool,
        time_ms: int,
        answered_at: datetime,
    ) -> SchedulerOutput:
        multiplier = choose_multiplier(correct, time_ms, settings)
        if existing is None:
            prev_interval_ms = int(settings.base_interval_ms)
            history: List[ReviewHistoryEntry] = []
        else:
            prev_interval_ms = _clamp_int(
                existing.interval_ms, MIN_INTERVAL_MS, MAX_INTERVAL_MS
            )
            history = existing.review_history

        interval_ms = compute_next_interval_ms(prev_interval_ms, multiplier)
        return SchedulerOutput(
            interval_ms=interval_ms,
            prev_interval_ms=prev_interval_ms,
            multiplier=multiplier,
            due_at=answered_at + timedelta(milliseconds=interval_ms),
            review_history=append_history(
                history,
                ReviewHistoryEntry(correct=correct, time_ms=time_ms),
                int(settings.time_history_limit),
            ),
        )

    def compute_correction(
        self,
        existing: FlashcardSchedule,
        settings: SchedulerSettings,
        correct: bool,
        time_ms: int,
        answered_at: datetime,
    ) -> SchedulerOutput:
        history = existing.review_history
        previous_correct = history[-1].correct if history else None

        # Fixing a miss after the fact keeps the interval; it is not a
        # second reward.
        if previous_correct is False and correct:
            multiplier = 1.0
        else:
            multiplier = choose_multiplier(correct, time_ms, settings)

        prev_interval_ms = existing.prev_interval_ms
        if prev_interval_ms is None:
            prev_interval_ms = int(settings.base_interval_ms)
        prev_interval_ms = _clamp_int(
            prev_interval_ms, MIN_INTERVAL_MS, MAX_INTERVAL_MS
        )

        interval_ms = compute_next_interval_ms(prev_interval_ms, multiplier)
        return SchedulerOutput(
            interval_ms=interval_ms,
            prev_interval_ms=prev_interval_ms,
            multiplier=multiplier,
            due_at=answered_at + timedelta(milliseconds=interval_ms),
            review_history=replace_last_history_entry(
                history, ReviewHistoryEntry(correct=correct, time_ms=time_ms)
            ),
        )

    def _load_settings(self, cursor, user_id: UUID) -> SchedulerSettings:
        return clamp_settings(self.db.get_scheduler_settings(user_id, cursor=cursor))

    def record_review(
        self,
        cursor,
        user_id: UUID,
        flashcard_id: UUID,
        correct: bool,
        time_ms: int,
        answered_at: datetime,
    ) -> FlashcardSchedule:
        """
        Schedule a flashcard after a fresh attempt and persist the result.

        Must run inside the caller's transaction; the schedule row is claimed
        before it is read.

        Returns:
            The schedule as written.
        """
        time_ms = db_utils.clamp_time_ms(time_ms)
        correct = bool(correct)
        answered_at = db_utils.as_utc(answered_at)

        settings = self._load_settings(cursor, user_id)
        existing = self.store.get(cursor, user_id, flashcard_id, for_update=True)
        output = self.compute_review(existing, settings, correct, time_ms, answered_at)

        logger.debug(
            f"Recording review for flashcard {flashcard_id}: correct={correct}, "
            f"time_ms={time_ms}, {output.prev_interval_ms}ms x {output.multiplier} "
            f"-> {output.interval_ms}ms"
        )
        return self.store.upsert(
            cursor,
            user_id,
            flashcard_id,
            self._patch("record", output, correct, time_ms, answered_at, settings),
            existing,
        )

    def correct_review(
        self,
        cursor,
        user_id: UUID,
        flashcard_id: UUID,
        correct: bool,
        time_ms: int,
        answered_at: datetime,
    ) -> Optional[FlashcardSchedule]:
        """
        Amend the most recently recorded outcome for a flashcard.

        The interval is recomputed from `prev_interval_ms`, which is never
        moved, so repeating a correction gives the same result.

        Returns:
            The schedule as written, or None if the flashcard has no schedule
            (there is nothing to correct).
        """
        time_ms = db_utils.clamp_time_ms(time_ms)
        correct = bool(correct)
        answered_at = db_utils.as_utc(answered_at)

        settings = self._load_settings(cursor, user_id)
        existing = self.store.get(cursor, user_id, flashcard_id, for_update=True)
        if existing is None:
            logger.debug(
                f"No schedule for flashcard {flashcard_id}; correction skipped."
            )
            return None

        output = self.compute_correction(
            existing, settings, correct, time_ms, answered_at
        )
        logger.debug(
            f"Correcting review for flashcard {flashcard_id}: correct={correct}, "
            f"{output.prev_interval_ms}ms x {output.multiplier} -> {output.interval_ms}ms"
        )
        return self.store.upsert(
            cursor,
            user_id,
            flashcard_id,
            self._patch("correct", output, correct, time_ms, answered_at, settings),
            existing,
        )

    @staticmethod
    def _patch(
        kind: str,
        output: SchedulerOutput,
        correct: bool,
        time_ms: int,
        answered_at: datetime,
        settings: SchedulerSettings,
    ) -> SchedulePatch:
        return SchedulePatch(
            kind=kind,
            due_at=output.due_at,
            interval_ms=output.interval_ms,
            last_multiplier=output.multiplier,
            review_history=output.review_history,
            last_review_time_ms=time_ms,
            last_review_correct=correct,
            last_seen_at=answered_at,
            base_interval_ms=int(settings.base_interval_ms),
        )
