"""
Per-deck practice statistics for flashpractice.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from statistics import mean, median
from typing import List, Optional
from uuid import UUID

from .db.database import PracticeDatabase
from .exceptions import DeckNotFoundError
from .models import Attempt, utc_now

logger = logging.getLogger(__name__)

RECENT_WINDOW = timedelta(days=7)


@dataclass
class AttemptStats:
    total: int
    correct: int
    accuracy: Optional[float]  # None when there are no attempts
    mean_time_ms: Optional[float]
    median_time_ms: Optional[float]


@dataclass
class DeckStats:
    """Card counts and attempt figures for one user's deck."""

    # Flashcards (playable only)
    total_cards: int
    learned_cards: int
    novel_cards: int
    due_now: int

    # Attempts
    attempts: AttemptStats
    last_7_days: AttemptStats
    last_practiced_at: Optional[datetime]


def summarize_attempts(attempts: List[Attempt]) -> AttemptStats:
    if not attempts:
        return AttemptStats(
            total=0, correct=0, accuracy=None, mean_time_ms=None, median_time_ms=None
        )
    times = [attempt.time_ms for attempt in attempts]
    correct = sum(1 for attempt in attempts if attempt.answered_correct)
    return AttemptStats(
        total=len(attempts),
        correct=correct,
        accuracy=correct / len(attempts),
        mean_time_ms=float(mean(times)),
        median_time_ms=float(median(times)),
    )


def get_deck_stats(
    db: PracticeDatabase,
    user_id: UUID,
    deck_id: UUID,
    now: Optional[datetime] = None,
) -> DeckStats:
    """
    Raises:
        DeckNotFoundError: If the deck does not exist or is not the user's.
    """
    now = now or utc_now()
    deck = db.get_deck(deck_id)
    if deck is None or deck.user_id != user_id:
        raise DeckNotFoundError()

    total = db.count_playable_flashcards(deck_id)
    learned = db.count_learned_cards(user_id, deck_id)
    attempts = db.get_attempts_for_deck(user_id, deck_id)
    window_start = now - RECENT_WINDOW
    recent = [a for a in attempts if a.answered_at >= window_start]

    stats = DeckStats(
        total_cards=total,
        learned_cards=learned,
        novel_cards=max(0, total - learned),
        due_now=db.count_due_review_cards(user_id, deck_id, now),
        attempts=summarize_attempts(attempts),
        last_7_days=summarize_attempts(recent),
        last_practiced_at=max((a.answered_at for a in attempts), default=None),
    )
    logger.debug(f"Deck {deck_id} stats: {stats}")
    return stats
