"""
Tests for the interval scheduler: the pure interval arithmetic and the
record/correct flow persisted through the schedule store.
"""

import math
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from flashpractice.constants import (
    DAY_MS,
    MAX_INTERVAL_MS,
    MAX_MULTIPLIER,
    MAX_REQUIRED_TIME_MS,
    MIN_INTERVAL_MS,
    MIN_MULTIPLIER,
)
from flashpractice.db import PracticeDatabase
from flashpractice.models import (
    FlashcardSchedule,
    ReviewHistoryEntry,
    SchedulerSettings,
)
from flashpractice.schedule_store import ScheduleStore
from flashpractice.scheduler import (
    IntervalScheduler,
    append_history,
    choose_multiplier,
    clamp_settings,
    compute_next_interval_ms,
    is_within_required_time,
    replace_last_history_entry,
)

T0 = datetime(2024, 5, 14, 9, 0, 0, tzinfo=timezone.utc)


def entry(correct: bool, time_ms: int = 1000) -> ReviewHistoryEntry:
    return ReviewHistoryEntry(correct=correct, time_ms=time_ms)


# --- Pure helpers ---


class TestClampSettings:
    def test_defaults_pass_through(self):
        settings = clamp_settings(SchedulerSettings())
        assert settings.base_interval_ms == 1_800_000
        assert settings.reward_multiplier == 1.8
        assert settings.penalty_multiplier == 0.6
        assert settings.required_time_ms == 10_000
        assert settings.time_history_limit == 10

    def test_out_of_range_values_are_clamped(self):
        settings = clamp_settings(
            SchedulerSettings(
                base_interval_ms=0,
                reward_multiplier=5000,
                penalty_multiplier=-1,
                required_time_ms=5 * 60 * 60 * 1000,
                time_history_limit=0,
            )
        )
        assert settings.base_interval_ms == MIN_INTERVAL_MS
        assert settings.reward_multiplier == MAX_MULTIPLIER
        assert settings.penalty_multiplier == MIN_MULTIPLIER
        assert settings.required_time_ms == MAX_REQUIRED_TIME_MS
        assert settings.time_history_limit == 1

    def test_non_finite_values_fall_to_lower_bound(self):
        settings = clamp_settings(
            SchedulerSettings(
                base_interval_ms=math.inf,
                reward_multiplier=math.nan,
                required_time_ms=math.nan,
            )
        )
        assert settings.base_interval_ms == MIN_INTERVAL_MS
        assert settings.reward_multiplier == MIN_MULTIPLIER
        assert settings.required_time_ms == 0

    def test_integer_fields_are_floored(self):
        settings = clamp_settings(
            SchedulerSettings(base_interval_ms=1500.9, time_history_limit=2.7)
        )
        assert settings.base_interval_ms == 1500
        assert settings.time_history_limit == 2


class TestMultiplier:
    def test_zero_budget_disables_time_check(self):
        assert is_within_required_time(10**9, 0)

    def test_budget_is_inclusive(self):
        assert is_within_required_time(10_000, 10_000)
        assert not is_within_required_time(10_001, 10_000)

    def test_correct_and_fast_gets_reward(self):
        assert choose_multiplier(True, 5000, SchedulerSettings()) == 1.8

    def test_correct_but_slow_gets_penalty(self):
        assert choose_multiplier(True, 20_000, SchedulerSettings()) == 0.6

    def test_incorrect_gets_penalty(self):
        assert choose_multiplier(False, 100, SchedulerSettings()) == 0.6


class TestNextInterval:
    def test_reward_and_penalty_from_default_base(self):
        assert compute_next_interval_ms(1_800_000, 1.8) == 3_240_000
        assert compute_next_interval_ms(1_800_000, 0.6) == 1_080_000

    def test_rounds_half_to_even(self):
        assert compute_next_interval_ms(3001, 0.5) == 1500
        assert compute_next_interval_ms(3003, 0.5) == 1502

    def test_clamped_to_bounds(self):
        assert compute_next_interval_ms(1000, 0.0001) == MIN_INTERVAL_MS
        assert compute_next_interval_ms(MAX_INTERVAL_MS, 1000) == MAX_INTERVAL_MS


class TestHistory:
    def test_append_keeps_most_recent(self):
        history = [entry(True, 1), entry(False, 2)]
        updated = append_history(history, entry(True, 3), limit=2)
        assert [e.time_ms for e in updated] == [2, 3]
        assert len(history) == 2

    def test_replace_last(self):
        history = [entry(True, 1), entry(True, 2)]
        updated = replace_last_history_entry(history, entry(False, 9))
        assert updated == [entry(True, 1), entry(False, 9)]

    def test_replace_last_on_empty_history_appends(self):
        assert replace_last_history_entry([], entry(False)) == [entry(False)]


class TestComputeCorrection:
    def existing(self, last_correct: bool) -> FlashcardSchedule:
        return FlashcardSchedule(
            user_id=uuid.uuid4(),
            flashcard_id=uuid.uuid4(),
            due_at=T0,
            interval_ms=1_080_000 if not last_correct else 3_240_000,
            prev_interval_ms=1_800_000,
            review_history=[entry(last_correct)],
        )

    def test_fixing_a_miss_keeps_previous_interval(self):
        scheduler = IntervalScheduler(db=None)
        output = scheduler.compute_correction(
            self.existing(False), SchedulerSettings(), True, 2000, T0
        )
        assert output.multiplier == 1.0
        assert output.interval_ms == 1_800_000

    def test_downgrading_a_hit_applies_penalty(self):
        scheduler = IntervalScheduler(db=None)
        output = scheduler.compute_correction(
            self.existing(True), SchedulerSettings(), False, 2000, T0
        )
        assert output.interval_ms == 1_080_000
        assert output.review_history == [entry(False, 2000)]


# --- Persisted flow ---


@pytest.fixture
def scheduler(in_memory_db: PracticeDatabase) -> IntervalScheduler:
    return IntervalScheduler(in_memory_db)


def stored(db: PracticeDatabase, user_id, card_id) -> FlashcardSchedule:
    with db.reader() as cursor:
        return ScheduleStore().get(cursor, user_id, card_id)


def record(db, scheduler, user_id, card_id, correct, time_ms, at):
    with db.transaction() as cursor:
        return scheduler.record_review(cursor, user_id, card_id, correct, time_ms, at)


def correct(db, scheduler, user_id, card_id, is_correct, time_ms, at):
    with db.transaction() as cursor:
        return scheduler.correct_review(
            cursor, user_id, card_id, is_correct, time_ms, at
        )


def test_first_review_starts_from_base_interval(in_memory_db, scheduler, sample_user):
    card_id = uuid.uuid4()
    schedule = record(in_memory_db, scheduler, sample_user.id, card_id, True, 4000, T0)

    assert schedule.interval_ms == 3_240_000
    assert schedule.prev_interval_ms == 1_800_000
    assert schedule.due_at == T0 + timedelta(milliseconds=3_240_000)
    assert schedule.last_multiplier == 1.8
    assert schedule.review_history == [entry(True, 4000)]
    assert schedule.last_seen_at == T0
    assert schedule.prev_last_seen_at == T0

    assert stored(in_memory_db, sample_user.id, card_id) == schedule


def test_first_review_incorrect(in_memory_db, scheduler, sample_user):
    schedule = record(
        in_memory_db, scheduler, sample_user.id, uuid.uuid4(), False, 4000, T0
    )
    assert schedule.interval_ms == 1_080_000
    assert schedule.last_review_correct is False


def test_second_review_rotates_previous_values(in_memory_db, scheduler, sample_user):
    card_id = uuid.uuid4()
    record(in_memory_db, scheduler, sample_user.id, card_id, True, 4000, T0)
    later = T0 + timedelta(days=1)
    schedule = record(in_memory_db, scheduler, sample_user.id, card_id, True, 3000, later)

    assert schedule.prev_interval_ms == 3_240_000
    assert schedule.interval_ms == 5_832_000
    assert schedule.prev_last_seen_at == T0
    assert schedule.last_seen_at == later
    assert len(schedule.review_history) == 2


def test_correction_recomputes_from_previous_interval(
    in_memory_db, scheduler, sample_user
):
    card_id = uuid.uuid4()
    record(in_memory_db, scheduler, sample_user.id, card_id, True, 4000, T0)

    downgraded = correct(in_memory_db, scheduler, sample_user.id, card_id, False, 4000, T0)
    assert downgraded.interval_ms == 1_080_000
    assert downgraded.prev_interval_ms == 1_800_000
    assert downgraded.review_history == [entry(False, 4000)]

    restored = correct(in_memory_db, scheduler, sample_user.id, card_id, True, 4000, T0)
    assert restored.interval_ms == 1_800_000
    assert restored.prev_interval_ms == 1_800_000
    assert restored.review_history == [entry(True, 4000)]


def test_repeated_correction_is_idempotent(in_memory_db, scheduler, sample_user):
    card_id = uuid.uuid4()
    record(in_memory_db, scheduler, sample_user.id, card_id, True, 4000, T0)
    first = correct(in_memory_db, scheduler, sample_user.id, card_id, False, 4000, T0)
    second = correct(in_memory_db, scheduler, sample_user.id, card_id, False, 4000, T0)
    assert first == second


@pytest.mark.parametrize(
    "is_correct, time_ms", [(True, 4000), (True, 20_000), (False, 4000)]
)
def test_correction_with_same_outcome_restores_recorded_schedule(
    in_memory_db, scheduler, sample_user, is_correct, time_ms
):
    card_id = uuid.uuid4()
    record(in_memory_db, scheduler, sample_user.id, card_id, True, 4000, T0)
    second_at = T0 + timedelta(hours=2)
    recorded = record(
        in_memory_db, scheduler, sample_user.id, card_id, is_correct, time_ms, second_at
    )

    corrected = correct(
        in_memory_db, scheduler, sample_user.id, card_id, is_correct, time_ms, second_at
    )
    assert corrected.due_at == recorded.due_at
    assert corrected.interval_ms == recorded.interval_ms
    assert corrected.prev_interval_ms == recorded.prev_interval_ms
    assert stored(in_memory_db, sample_user.id, card_id) == recorded


def test_correction_without_schedule_is_skipped(in_memory_db, scheduler, sample_user):
    result = correct(
        in_memory_db, scheduler, sample_user.id, uuid.uuid4(), True, 1000, T0
    )
    assert result is None


def test_slow_correct_answer_is_penalized(in_memory_db, scheduler, sample_user):
    schedule = record(
        in_memory_db, scheduler, sample_user.id, uuid.uuid4(), True, 10_001, T0
    )
    assert schedule.interval_ms == 1_080_000


def test_zero_budget_rewards_any_correct_answer(in_memory_db, scheduler, sample_user):
    in_memory_db.update_scheduler_settings(
        sample_user.id, SchedulerSettings(required_time_ms=0)
    )
    schedule = record(
        in_memory_db, scheduler, sample_user.id, uuid.uuid4(), True, 3_000_000, T0
    )
    assert schedule.interval_ms == 3_240_000


def test_review_time_is_clamped_to_one_hour(in_memory_db, scheduler, sample_user):
    schedule = record(
        in_memory_db, scheduler, sample_user.id, uuid.uuid4(), False, 10**9, T0
    )
    assert schedule.last_review_time_ms == 3_600_000
    assert schedule.review_history[-1].time_ms == 3_600_000


def test_history_limit_from_user_settings(in_memory_db, scheduler, sample_user):
    in_memory_db.update_scheduler_settings(
        sample_user.id, SchedulerSettings(time_history_limit=2)
    )
    card_id = uuid.uuid4()
    for i in range(3):
        schedule = record(
            in_memory_db, scheduler, sample_user.id, card_id, True, 1000 + i,
            T0 + timedelta(days=i),
        )
    assert [e.time_ms for e in schedule.review_history] == [1001, 1002]


def test_custom_base_interval(in_memory_db, scheduler, sample_user):
    in_memory_db.update_scheduler_settings(
        sample_user.id,
        SchedulerSettings(base_interval_ms=DAY_MS, reward_multiplier=2.0),
    )
    schedule = record(
        in_memory_db, scheduler, sample_user.id, uuid.uuid4(), True, 1000, T0
    )
    assert schedule.interval_ms == 2 * DAY_MS
    assert schedule.due_at == T0 + timedelta(days=2)
