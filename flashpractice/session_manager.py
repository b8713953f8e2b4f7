"""
Practice session lifecycle for flashpractice.

The SessionLifecycleManager decides, for a (user, deck) pair, whether to
resume the session created earlier today or to build a new one. A new
session gets a frozen queue of due review cards followed by novel cards,
sized to what is left of the user's daily limits.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional
from uuid import UUID

from .db.database import PracticeDatabase, utc_day_start
from .exceptions import (
    DailyLimitExhaustedError,
    DeckNotFoundError,
    NoPlayableCardsError,
    NothingAvailableError,
)
from .models import (
    DailyUsage,
    PracticeSession,
    QueueEntry,
    SessionHandle,
    SessionState,
    SessionStatus,
    utc_now,
)

# Initialize logger
logger = logging.getLogger(__name__)


class SessionLifecycleManager:
    """
    Creates or resumes practice sessions.

    All of `create_or_resume` runs in one transaction that claims the
    (user, deck) lifecycle row first, so concurrent callers for the same pair
    are serialized and at most one queue is built per pair and day.
    """

    def __init__(
        self,
        db: PracticeDatabase,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            db: Database facade holding decks, sessions and attempts.
            clock: Returns the current UTC time; injectable for tests.
        """
        self.db = db
        self._clock = clock or utc_now

    def create_or_resume(self, user_id: UUID, deck_id: UUID) -> SessionHandle:
        """
        Return today's active session for the deck, or start a new one.

        Raises:
            DeckNotFoundError: The deck is missing, archived or not the user's.
            NoPlayableCardsError: The deck has no playable flashcards.
            DailyLimitExhaustedError: Both daily limits are used up.
            NothingAvailableError: Nothing is due and nothing is new within
                the remaining limits.
            TransactionConflictError: A concurrent caller holds the lifecycle
                row; nothing was written and the call may be retried.
        """
        now = self._clock()
        day_start = utc_day_start(now)

        with self.db.transaction() as cursor:
            deck = self.db.get_practicable_deck(user_id, deck_id, cursor=cursor)
            if deck is None:
                raise DeckNotFoundError()
            if self.db.count_playable_flashcards(deck_id, cursor=cursor) == 0:
                raise NoPlayableCardsError()

            self.db.claim_lifecycle_lock(cursor, user_id, deck_id, now)

            active = self.db.find_active_session(cursor, user_id, deck_id)
            if active is not None:
                if active.created_at >= day_start:
                    logger.info(
                        f"Resuming practice session {active.id} for deck {deck_id}"
                    )
                    return SessionHandle(
                        session_id=active.id, deck_name=deck.name, resumed=True
                    )
                logger.info(
                    f"Ending stale practice session {active.id} from "
                    f"{active.created_at.date().isoformat()}"
                )
                self._end_session(cursor, active, now)

            limits = self.db.get_daily_limits(user_id, cursor=cursor)
            usage = self.db.get_daily_usage(user_id, day_start, cursor=cursor)
            remaining_novel = max(0, limits.novel_limit - usage.novel_used)
            remaining_review = max(0, limits.review_limit - usage.review_used)
            if remaining_novel == 0 and remaining_review == 0:
                raise DailyLimitExhaustedError()

            review_available = min(
                remaining_review,
                self.db.count_due_review_cards(user_id, deck_id, now, cursor=cursor),
            )
            novel_available = min(
                remaining_novel,
                self.db.count_novel_cards(user_id, deck_id, cursor=cursor),
            )
            if review_available == 0 and novel_available == 0:
                raise NothingAvailableError()

            session = PracticeSession(
                user_id=user_id, deck_id=deck_id, created_at=now, updated_at=now
            )
            self.db.insert_session(cursor, session)

            entries = self._build_queue(
                cursor, session, now, review_available, novel_available
            )
            self.db.insert_queue_entries(cursor, entries)
            if not entries:
                logger.warning(
                    f"Queue for session {session.id} came out empty; ending it."
                )
                self._end_session(cursor, session, now)

        logger.info(
            f"Created practice session {session.id} for deck {deck_id} with "
            f"{len(entries)} cards ({review_available} review, {novel_available} novel)"
        )
        return SessionHandle(session_id=session.id, deck_name=deck.name)

    def _build_queue(
        self,
        cursor,
        session: PracticeSession,
        now: datetime,
        review_limit: int,
        novel_limit: int,
    ) -> List[QueueEntry]:
        """Reviews first, then novel cards, at dense positions from 0."""
        review_ids = self.db.select_due_review_card_ids(
            session.user_id, session.deck_id, now, review_limit, cursor=cursor
        )
        novel_ids = self.db.select_novel_card_ids(
            session.user_id, session.deck_id, novel_limit, cursor=cursor
        )
        ordered = [(card_id, False) for card_id in review_ids] + [
            (card_id, True) for card_id in novel_ids
        ]
        return [
            QueueEntry(
                session_id=session.id,
                position=position,
                flashcard_id=card_id,
                is_novel=is_novel,
            )
            for position, (card_id, is_novel) in enumerate(ordered)
        ]

    def _end_session(self, cursor, session: PracticeSession, now: datetime) -> None:
        session.status = SessionStatus.Ended
        session.state = SessionState.Done
        session.front_started_at = None
        session.updated_at = now
        self.db.update_session(cursor, session)

    def get_daily_usage(self, user_id: UUID) -> DailyUsage:
        """Attempts the user has made since UTC midnight, split by novelty."""
        return self.db.get_daily_usage(user_id, utc_day_start(self._clock()))
