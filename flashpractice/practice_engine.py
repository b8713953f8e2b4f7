"""
Session event machine for flashpractice.

The PracticeEngine applies one tagged event at a time to a practice session
and projects the session into a SessionView for rendering. Each event runs
in its own transaction which claims the session row before anything is read,
so events on one session are strictly serialized.

Unmet preconditions are mostly idempotent no-ops: callers may replay or
duplicate events across retries, and the machine answers with the current
view. Only the cases that mean client state has drifted are errors.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Union
from uuid import UUID

from .db.database import PracticeDatabase, utc_day_start
from .events import (
    AdvanceEvent,
    AnswerEvent,
    NavigateEvent,
    RevealBackEvent,
    SetOutcomeEvent,
    StartEvent,
    parse_event,
)
from .exceptions import (
    AnswerRequiredError,
    InvalidTransitionError,
    SessionEndedError,
    SessionForbiddenError,
    SessionNotFoundError,
)
from .models import (
    AnsweredOutcome,
    Attempt,
    CurrentCardView,
    DailyView,
    PracticeSession,
    SessionState,
    SessionStatus,
    SessionView,
    utc_now,
)
from .scheduler import IntervalScheduler

logger = logging.getLogger(__name__)


def display_state(
    state: SessionState, view_index: int, progress_index: int
) -> SessionState:
    """
    The state shown to the learner.

    Browsing an earlier slot always reads as ``past``; at the progress slot
    the stored state is authoritative.
    """
    if view_index < progress_index:
        return SessionState.Past
    return state


def _elapsed_ms(started: datetime, now: datetime) -> int:
    return max(0, int((now - started).total_seconds() * 1000))


class PracticeEngine:
    """
    Drives practice sessions through intro → front → back → (advance) and
    records outcomes with the interval scheduler.
    """

    def __init__(
        self,
        db: PracticeDatabase,
        scheduler: Optional[IntervalScheduler] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.scheduler = scheduler or IntervalScheduler(db)
        self._clock = clock or utc_now
        self._handlers = {
            "start": self._on_start,
            "revealBack": self._on_reveal_back,
            "answer": self._on_answer,
            "advance": self._on_advance,
            "navigate": self._on_navigate,
            "setOutcome": self._on_set_outcome,
        }

    # --- Public API ---

    def get_view(
        self,
        user_id: UUID,
        session_id: UUID,
        reset_reveal_state: bool = False,
    ) -> SessionView:
        """
        Build the read-only projection of a session.

        With `reset_reveal_state`, an unanswered current slot left in
        ``front`` or ``back`` (e.g. by a dropped connection) is rolled back to
        ``intro`` and its timer cleared; an answered slot is left alone.

        Raises:
            SessionNotFoundError: Unknown session, or one owned by another user.
        """
        now = self._clock()
        if not reset_reveal_state:
            with self.db.reader() as cursor:
                session = self.db.get_session(session_id, cursor=cursor)
                if session is None or session.user_id != user_id:
                    raise SessionNotFoundError()
                queue_length = self.db.count_queue(session.id, cursor=cursor)
                self._clamp_indices(session, queue_length)
                return self._build_view(cursor, session, queue_length, now)

        with self.db.transaction() as cursor:
            if not self.db.claim_session(cursor, session_id, now):
                raise SessionNotFoundError()
            session = self.db.get_session(session_id, cursor=cursor)
            if session is None or session.user_id != user_id:
                raise SessionNotFoundError()
            queue_length = self.db.count_queue(session.id, cursor=cursor)
            self._clamp_indices(session, queue_length)

            if session.state in (SessionState.Front, SessionState.Back):
                attempt = self.db.get_attempt(
                    session.id, session.progress_index, cursor=cursor
                )
                if attempt is None:
                    logger.debug(
                        f"Resetting unanswered {session.state.value} slot "
                        f"{session.progress_index} of session {session.id}"
                    )
                    self._reset_timer(session)
                    session.state = SessionState.Intro
                    session.updated_at = now
                    self.db.update_session(cursor, session)
            return self._build_view(cursor, session, queue_length, now)

    def apply_event(
        self,
        user_id: UUID,
        session_id: UUID,
        event: Union[Mapping[str, Any], Any],
    ) -> SessionView:
        """
        Apply one event to the session and return the resulting view.

        Args:
            user_id: The acting user.
            session_id: The session to drive.
            event: An event model from `flashpractice.events` or a raw mapping
                such as ``{"type": "navigate", "to": 2}``.

        Raises:
            SessionNotFoundError: No session with this id.
            SessionForbiddenError: The session belongs to another user.
            SessionEndedError: start/revealBack/answer/advance on an ended session.
            AnswerRequiredError: advance on a revealed card that was not answered.
            InvalidTransitionError: answer before the back was revealed, or a
                malformed event.
            TransactionConflictError: A concurrent event claimed the session
                first; nothing was written.
        """
        parsed = parse_event(event)
        now = self._clock()

        with self.db.transaction() as cursor:
            if not self.db.claim_session(cursor, session_id, now):
                raise SessionNotFoundError()
            session = self.db.get_session(session_id, cursor=cursor)
            if session is None:
                raise SessionNotFoundError()
            if session.user_id != user_id:
                raise SessionForbiddenError()

            queue_length = self.db.count_queue(session.id, cursor=cursor)
            self._clamp_indices(session, queue_length)

            before = (session.state, session.progress_index, session.view_index)
            self._handlers[parsed.type](cursor, session, parsed, queue_length, now)

            session.updated_at = now
            self.db.update_session(cursor, session)
            view = self._build_view(cursor, session, queue_length, now)

        logger.debug(
            f"Session {session_id} {parsed.type}: "
            f"{before[0].value}@{before[1]}/{before[2]} -> "
            f"{session.state.value}@{session.progress_index}/{session.view_index}"
        )
        return view

    # --- Event handlers ---

    def _on_start(
        self, cursor, session: PracticeSession, event: StartEvent,
        queue_length: int, now: datetime,
    ) -> None:
        self._require_active(session)
        if session.progress_index >= queue_length:
            self._end(session)
            return
        if (
            session.view_index != session.progress_index
            or session.state != SessionState.Intro
        ):
            return
        session.state = SessionState.Front
        session.front_started_at = now
        session.front_elapsed_ms = 0

    def _on_reveal_back(
        self, cursor, session: PracticeSession, event: RevealBackEvent,
        queue_length: int, now: datetime,
    ) -> None:
        self._require_active(session)
        if (
            session.view_index != session.progress_index
            or session.state != SessionState.Front
        ):
            return
        started = session.front_started_at
        session.front_elapsed_ms = _elapsed_ms(started, now) if started else 0
        session.front_started_at = None
        session.state = SessionState.Back

    def _on_answer(
        self, cursor, session: PracticeSession, event: AnswerEvent,
        queue_length: int, now: datetime,
    ) -> None:
        self._require_active(session)
        if session.view_index != session.progress_index:
            return
        if session.state != SessionState.Back:
            raise InvalidTransitionError("Reveal the back of the flashcard first.")

        position = session.progress_index
        slot = self.db.get_queue_card(session.id, position, cursor=cursor)
        if slot is None:
            logger.warning(
                f"Session {session.id} has no queue entry at {position}; ending it."
            )
            self._end(session)
            return
        entry, _card = slot

        correct = bool(event.correct)
        time_ms = max(0, session.front_elapsed_ms)
        existing = self.db.get_attempt(session.id, position, cursor=cursor)
        if existing is None:
            attempt = Attempt(
                session_id=session.id,
                position=position,
                user_id=session.user_id,
                deck_id=session.deck_id,
                flashcard_id=entry.flashcard_id,
                is_novel=entry.is_novel,
                answered_correct=correct,
                time_ms=time_ms,
                answered_at=now,
            )
            self.db.insert_attempt(cursor, attempt)
            self.scheduler.record_review(
                cursor, session.user_id, entry.flashcard_id,
                correct, time_ms, now,
            )
        else:
            # Repeated answer for the same slot amends the recorded attempt.
            self.db.update_attempt_outcome(
                cursor, session.id, position, correct, time_ms=time_ms
            )
            self.scheduler.correct_review(
                cursor, session.user_id, entry.flashcard_id,
                correct, time_ms, existing.answered_at,
            )
        session.front_started_at = None
        session.front_elapsed_ms = time_ms

    def _on_advance(
        self, cursor, session: PracticeSession, event: AdvanceEvent,
        queue_length: int, now: datetime,
    ) -> None:
        self._require_active(session)
        if (
            session.view_index != session.progress_index
            or session.state != SessionState.Back
        ):
            return
        position = session.progress_index
        if self.db.get_attempt(session.id, position, cursor=cursor) is None:
            raise AnswerRequiredError()

        next_position = min(queue_length, position + 1)
        session.progress_index = next_position
        session.view_index = next_position
        self._reset_timer(session)
        if next_position >= queue_length:
            self._end(session)
        else:
            session.state = SessionState.Intro

    def _on_navigate(
        self, cursor, session: PracticeSession, event: NavigateEvent,
        queue_length: int, now: datetime,
    ) -> None:
        progress = session.progress_index
        to = max(0, min(int(event.to), progress))
        current_answered = (
            self.db.get_attempt(session.id, progress, cursor=cursor) is not None
        )

        # Abandoning a live front/back view never leaves a partial attempt.
        leaving_live_slot = (
            session.view_index == progress
            and session.state in (SessionState.Front, SessionState.Back)
            and not current_answered
        )
        if leaving_live_slot:
            self._reset_timer(session)
            session.state = SessionState.Intro

        session.view_index = to
        if to == progress:
            if not session.is_active:
                session.state = SessionState.Done
            elif current_answered:
                session.state = SessionState.Back
            else:
                session.state = SessionState.Intro

    def _on_set_outcome(
        self, cursor, session: PracticeSession, event: SetOutcomeEvent,
        queue_length: int, now: datetime,
    ) -> None:
        if session.view_index >= session.progress_index:
            return
        position = session.view_index
        attempt = self.db.get_attempt(session.id, position, cursor=cursor)
        if attempt is None:
            logger.warning(
                f"Session {session.id} has no attempt at past slot {position}."
            )
            return
        correct = bool(event.correct)
        self.db.update_attempt_outcome(cursor, session.id, position, correct)
        self.scheduler.correct_review(
            cursor, session.user_id, attempt.flashcard_id,
            correct, attempt.time_ms, attempt.answered_at,
        )

    # --- Helpers ---

    @staticmethod
    def _require_active(session: PracticeSession) -> None:
        if not session.is_active:
            raise SessionEndedError()

    @staticmethod
    def _clamp_indices(session: PracticeSession, queue_length: int) -> None:
        session.progress_index = min(session.progress_index, queue_length)
        session.view_index = min(session.view_index, session.progress_index)

    @staticmethod
    def _reset_timer(session: PracticeSession) -> None:
        session.front_started_at = None
        session.front_elapsed_ms = 0

    def _end(self, session: PracticeSession) -> None:
        session.status = SessionStatus.Ended
        session.state = SessionState.Done
        self._reset_timer(session)
        logger.info(f"Practice session {session.id} ended.")

    def _build_view(
        self, cursor, session: PracticeSession, queue_length: int, now: datetime
    ) -> SessionView:
        deck = self.db.get_deck(session.deck_id, cursor=cursor)
        limits = self.db.get_daily_limits(session.user_id, cursor=cursor)
        usage = self.db.get_daily_usage(
            session.user_id, utc_day_start(now), cursor=cursor
        )

        current: Optional[CurrentCardView] = None
        slot = self.db.get_queue_card(session.id, session.view_index, cursor=cursor)
        if slot is not None:
            entry, card = slot
            attempt = self.db.get_attempt(session.id, entry.position, cursor=cursor)
            answered = (
                AnsweredOutcome(
                    correct=attempt.answered_correct, time_ms=attempt.time_ms
                )
                if attempt
                else None
            )
            current = CurrentCardView(
                position=entry.position,
                flashcard_id=card.id,
                is_novel=entry.is_novel,
                kind=card.kind,
                front=card.front,
                back=card.back,
                mcq_options=card.mcq_options,
                mcq_correct_index=card.mcq_correct_index,
                sketch_code=card.sketch_code or None,
                sketch_width=card.sketch_width,
                sketch_height=card.sketch_height,
                answered=answered,
            )

        return SessionView(
            id=session.id,
            deck_id=session.deck_id,
            deck_name=deck.name if deck else "",
            status=session.status,
            state=display_state(
                session.state, session.view_index, session.progress_index
            ),
            progress_index=session.progress_index,
            view_index=session.view_index,
            queue_length=queue_length,
            daily=DailyView(
                novel_limit=limits.novel_limit,
                review_limit=limits.review_limit,
                novel_used=usage.novel_used,
                review_used=usage.review_used,
            ),
            current=current,
        )

    def get_attempts(self, user_id: UUID, session_id: UUID) -> Dict[int, Attempt]:
        """All attempts of an owned session keyed by queue position."""
        session = self.db.get_session(session_id)
        if session is None or session.user_id != user_id:
            raise SessionNotFoundError()
        return self.db.get_attempts_for_session(session_id)
