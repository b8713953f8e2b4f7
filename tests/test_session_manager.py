import uuid

import pytest

from flashpractice.events import (
    AdvanceEvent,
    AnswerEvent,
    RevealBackEvent,
    StartEvent,
)
from flashpractice.exceptions import (
    DailyLimitExhaustedError,
    DeckNotFoundError,
    NoPlayableCardsError,
    NothingAvailableError,
)
from flashpractice.models import DailyLimits, Flashcard, SessionStatus


def play_card(engine, user_id, session_id, correct=True, clock=None):
    engine.apply_event(user_id, session_id, StartEvent())
    if clock is not None:
        clock.advance(seconds=3)
    engine.apply_event(user_id, session_id, RevealBackEvent())
    engine.apply_event(user_id, session_id, AnswerEvent(correct=correct))
    return engine.apply_event(user_id, session_id, AdvanceEvent())


def queue_ids(db, session_id):
    return [
        db.get_queue_entry(session_id, pos).flashcard_id
        for pos in range(db.count_queue(session_id))
    ]


def test_new_session_queues_novel_cards_in_creation_order(
    in_memory_db, manager, sample_user, sample_deck, sample_cards
):
    handle = manager.create_or_resume(sample_user.id, sample_deck.id)

    assert handle.resumed is False
    assert handle.deck_name == "Capitals"
    session = in_memory_db.get_session(handle.session_id)
    assert session.status == SessionStatus.Active
    assert session.progress_index == 0
    assert queue_ids(in_memory_db, handle.session_id) == [c.id for c in sample_cards]
    assert all(
        in_memory_db.get_queue_entry(handle.session_id, pos).is_novel
        for pos in range(3)
    )


def test_same_day_call_resumes_active_session(
    manager, clock, sample_user, sample_deck, sample_cards
):
    first = manager.create_or_resume(sample_user.id, sample_deck.id)
    clock.advance(hours=2)
    second = manager.create_or_resume(sample_user.id, sample_deck.id)

    assert second.session_id == first.session_id
    assert second.resumed is True


def test_session_from_previous_day_is_ended(
    in_memory_db, manager, clock, sample_user, sample_deck, sample_cards
):
    first = manager.create_or_resume(sample_user.id, sample_deck.id)
    clock.advance(days=1)
    second = manager.create_or_resume(sample_user.id, sample_deck.id)

    assert second.session_id != first.session_id
    assert second.resumed is False
    assert in_memory_db.get_session(first.session_id).status == SessionStatus.Ended


def test_reviews_come_first_shortest_interval_first(
    in_memory_db, manager, engine, clock, sample_user, sample_deck, sample_cards,
    card_factory,
):
    handle = manager.create_or_resume(sample_user.id, sample_deck.id)
    # Card 1 is missed, so it ends up with the shortest interval.
    for correct in (True, False, True):
        play_card(engine, sample_user.id, handle.session_id, correct, clock)

    new_card = card_factory(sample_deck.id, 1, clock.now)[0]
    in_memory_db.add_flashcards_batch([new_card])

    clock.advance(days=1)
    next_day = manager.create_or_resume(sample_user.id, sample_deck.id)
    ids = queue_ids(in_memory_db, next_day.session_id)

    assert ids == [
        sample_cards[1].id,
        sample_cards[0].id,
        sample_cards[2].id,
        new_card.id,
    ]
    novelty = [
        in_memory_db.get_queue_entry(next_day.session_id, pos).is_novel
        for pos in range(4)
    ]
    assert novelty == [False, False, False, True]


def test_queue_is_sized_by_remaining_daily_limits(
    in_memory_db, manager, sample_user, sample_deck, sample_cards
):
    in_memory_db.update_daily_limits(
        sample_user.id, DailyLimits(novel_limit=2, review_limit=200)
    )
    handle = manager.create_or_resume(sample_user.id, sample_deck.id)
    assert in_memory_db.count_queue(handle.session_id) == 2


def test_nothing_available_when_novel_limit_used_and_nothing_due(
    in_memory_db, manager, engine, clock, sample_user, sample_deck, sample_cards
):
    in_memory_db.update_daily_limits(
        sample_user.id, DailyLimits(novel_limit=2, review_limit=200)
    )
    handle = manager.create_or_resume(sample_user.id, sample_deck.id)
    play_card(engine, sample_user.id, handle.session_id, True, clock)
    view = play_card(engine, sample_user.id, handle.session_id, True, clock)
    assert view.status == SessionStatus.Ended

    usage = manager.get_daily_usage(sample_user.id)
    assert usage.novel_used == 2
    assert usage.review_used == 0

    with pytest.raises(NothingAvailableError):
        manager.create_or_resume(sample_user.id, sample_deck.id)

    in_memory_db.update_daily_limits(
        sample_user.id, DailyLimits(novel_limit=2, review_limit=0)
    )
    with pytest.raises(DailyLimitExhaustedError):
        manager.create_or_resume(sample_user.id, sample_deck.id)


def test_zero_limits_are_exhausted(
    in_memory_db, manager, sample_user, sample_deck, sample_cards
):
    in_memory_db.update_daily_limits(
        sample_user.id, DailyLimits(novel_limit=0, review_limit=0)
    )
    with pytest.raises(DailyLimitExhaustedError):
        manager.create_or_resume(sample_user.id, sample_deck.id)


def test_unknown_deck(manager, sample_user):
    with pytest.raises(DeckNotFoundError):
        manager.create_or_resume(sample_user.id, uuid.uuid4())


def test_foreign_deck(manager, other_user, sample_deck, sample_cards):
    with pytest.raises(DeckNotFoundError):
        manager.create_or_resume(other_user.id, sample_deck.id)


def test_archived_deck(in_memory_db, manager, sample_user, sample_deck, sample_cards):
    in_memory_db.set_deck_archived(sample_deck.id, True)
    with pytest.raises(DeckNotFoundError):
        manager.create_or_resume(sample_user.id, sample_deck.id)


def test_deck_without_playable_cards(in_memory_db, manager, sample_user, sample_deck):
    in_memory_db.add_flashcards_batch(
        [
            Flashcard(deck_id=sample_deck.id, front="   ", back="answer"),
            Flashcard(deck_id=sample_deck.id, front="question", back="\n"),
        ]
    )
    with pytest.raises(NoPlayableCardsError):
        manager.create_or_resume(sample_user.id, sample_deck.id)


@pytest.mark.parametrize("blank", ["\u00a0", "\x0b"])
def test_deck_of_unicode_blank_cards_has_nothing_to_play(
    in_memory_db, manager, sample_user, sample_deck, blank
):
    in_memory_db.add_flashcards_batch(
        [Flashcard(deck_id=sample_deck.id, front=blank, back="answer")]
    )
    with pytest.raises(NoPlayableCardsError):
        manager.create_or_resume(sample_user.id, sample_deck.id)


def test_unplayable_cards_are_never_queued(
    in_memory_db, manager, sample_user, sample_deck, sample_cards
):
    in_memory_db.add_flashcards_batch(
        [Flashcard(deck_id=sample_deck.id, front="", back="blank front")]
    )
    handle = manager.create_or_resume(sample_user.id, sample_deck.id)
    assert queue_ids(in_memory_db, handle.session_id) == [c.id for c in sample_cards]


def test_failed_creation_writes_nothing(in_memory_db, manager, sample_user):
    with pytest.raises(DeckNotFoundError):
        manager.create_or_resume(sample_user.id, uuid.uuid4())
    with in_memory_db.reader() as cursor:
        count = cursor.execute("SELECT COUNT(*) FROM practice_sessions;").fetchone()[0]
    assert count == 0


def test_concurrent_creation_for_same_pair_conflicts(
    in_memory_db, manager, clock, sample_user, sample_deck, sample_cards, overlapping
):
    with in_memory_db.transaction() as cursor:
        in_memory_db.claim_lifecycle_lock(
            cursor, sample_user.id, sample_deck.id, clock()
        )

    # Same clock value on both sides: the claim must still conflict.
    held, created = overlapping(
        in_memory_db,
        lambda cursor: in_memory_db.claim_lifecycle_lock(
            cursor, sample_user.id, sample_deck.id, clock()
        ),
        lambda: manager.create_or_resume(sample_user.id, sample_deck.id),
    )
    assert held != created

    handle = manager.create_or_resume(sample_user.id, sample_deck.id)
    assert handle.resumed is created
    with in_memory_db.reader() as cursor:
        active = cursor.execute(
            "SELECT COUNT(*) FROM practice_sessions WHERE status = 'active';"
        ).fetchone()[0]
    assert active == 1
