"""
Pydantic models for the practice engine and the collaborator records it reads.
"""

from __future__ import annotations

import uuid
from enum import Enum
from uuid import UUID
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .constants import (
    DEFAULT_BASE_INTERVAL_MS,
    DEFAULT_DAILY_NOVEL_LIMIT,
    DEFAULT_DAILY_REVIEW_LIMIT,
    DEFAULT_PENALTY_MULTIPLIER,
    DEFAULT_REQUIRED_TIME_MS,
    DEFAULT_REWARD_MULTIPLIER,
    DEFAULT_TIME_HISTORY_LIMIT,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FlashcardKind(str, Enum):
    Basic = "basic"
    Mcq = "mcq"


class SessionStatus(str, Enum):
    Active = "active"
    Ended = "ended"


class SessionState(str, Enum):
    """
    Where the learner is within the slot being displayed.

    ``Past`` is never stored; it is derived when a view is built for an
    earlier, already-answered position.
    """

    Intro = "intro"
    Front = "front"
    Back = "back"
    Past = "past"
    Done = "done"


# --- Collaborator records ---


class User(BaseModel):
    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    id: UUID = Field(default_factory=uuid.uuid4)
    username: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utc_now)


class Deck(BaseModel):
    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    id: UUID = Field(default_factory=uuid.uuid4)
    user_id: UUID
    name: str = Field(..., min_length=1)
    is_archived: bool = False
    created_at: datetime = Field(default_factory=utc_now)


class Flashcard(BaseModel):
    """
    A flashcard as stored by the deck layer.

    The engine only ever sees playable cards: ones whose trimmed front and
    back are both non-empty.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    id: UUID = Field(default_factory=uuid.uuid4)
    deck_id: UUID
    kind: FlashcardKind = FlashcardKind.Basic
    front: str = ""
    back: str = ""
    mcq_options: Optional[List[str]] = Field(
        default=None, description="Answer options for multiple-choice cards."
    )
    mcq_correct_index: Optional[int] = Field(default=None, ge=0)
    sketch_code: Optional[str] = Field(
        default=None, description="Inline sketch source rendered with the card."
    )
    sketch_width: Optional[int] = Field(default=None, ge=0)
    sketch_height: Optional[int] = Field(default=None, ge=0)
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def is_playable(self) -> bool:
        return bool(self.front.strip()) and bool(self.back.strip())


class SchedulerSettings(BaseModel):
    """Per-user tunables for the interval scheduler (unclamped)."""

    model_config = ConfigDict(frozen=True)

    base_interval_ms: float = DEFAULT_BASE_INTERVAL_MS
    reward_multiplier: float = DEFAULT_REWARD_MULTIPLIER
    penalty_multiplier: float = DEFAULT_PENALTY_MULTIPLIER
    required_time_ms: float = DEFAULT_REQUIRED_TIME_MS
    time_history_limit: float = DEFAULT_TIME_HISTORY_LIMIT


class DailyLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    novel_limit: int = Field(default=DEFAULT_DAILY_NOVEL_LIMIT, ge=0)
    review_limit: int = Field(default=DEFAULT_DAILY_REVIEW_LIMIT, ge=0)


class DailyUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    novel_used: int = 0
    review_used: int = 0


# --- Practice engine records ---


class PracticeSession(BaseModel):
    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    id: UUID = Field(default_factory=uuid.uuid4)
    user_id: UUID
    deck_id: UUID
    status: SessionStatus = SessionStatus.Active
    state: SessionState = SessionState.Intro
    progress_index: int = Field(default=0, ge=0)
    view_index: int = Field(default=0, ge=0)
    front_started_at: Optional[datetime] = None
    front_elapsed_ms: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.Active


class QueueEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: UUID
    position: int = Field(..., ge=0)
    flashcard_id: UUID
    is_novel: bool


class Attempt(BaseModel):
    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    session_id: UUID
    position: int = Field(..., ge=0)
    user_id: UUID
    deck_id: UUID
    flashcard_id: UUID
    is_novel: bool
    answered_correct: bool
    time_ms: int = Field(..., ge=0)
    answered_at: datetime


class ReviewHistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    correct: bool
    time_ms: int = Field(..., ge=0)


class FlashcardSchedule(BaseModel):
    """
    Scheduling state for one (user, flashcard) pair.

    ``prev_interval_ms`` is the interval that was in effect before the most
    recent fresh attempt; corrections recompute from it and never move it.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    user_id: UUID
    flashcard_id: UUID
    due_at: datetime
    interval_ms: int = Field(..., ge=0)
    prev_interval_ms: Optional[int] = Field(default=None, ge=0)
    last_multiplier: Optional[float] = None
    review_history: List[ReviewHistoryEntry] = Field(default_factory=list)
    last_review_time_ms: Optional[int] = Field(default=None, ge=0)
    last_review_correct: Optional[bool] = None
    last_seen_at: Optional[datetime] = None
    prev_last_seen_at: Optional[datetime] = None


class SchedulePatch(BaseModel):
    """
    Full replacement of a schedule's mutable fields.

    ``kind`` tells the store whether this write records a fresh attempt
    (rotate interval and last-seen into their ``prev_`` columns) or corrects
    the latest one (leave the ``prev_`` columns alone).
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["record", "correct"]
    due_at: datetime
    interval_ms: int
    last_multiplier: float
    review_history: List[ReviewHistoryEntry]
    last_review_time_ms: int
    last_review_correct: bool
    last_seen_at: datetime
    base_interval_ms: int = Field(
        ..., description="prev_interval_ms used when the row is first created."
    )


# --- Views ---


class AnsweredOutcome(BaseModel):
    correct: bool
    time_ms: int


class CurrentCardView(BaseModel):
    position: int
    flashcard_id: UUID
    is_novel: bool
    kind: FlashcardKind
    front: str
    back: str
    mcq_options: Optional[List[str]] = None
    mcq_correct_index: Optional[int] = None
    sketch_code: Optional[str] = None
    sketch_width: Optional[int] = None
    sketch_height: Optional[int] = None
    answered: Optional[AnsweredOutcome] = None


class DailyView(BaseModel):
    novel_limit: int
    review_limit: int
    novel_used: int
    review_used: int


class SessionView(BaseModel):
    """Read-only projection of a practice session for rendering."""

    id: UUID
    deck_id: UUID
    deck_name: str
    status: SessionStatus
    state: SessionState
    progress_index: int
    view_index: int
    queue_length: int
    daily: DailyView
    current: Optional[CurrentCardView] = None


class SessionHandle(BaseModel):
    session_id: UUID
    deck_name: str
    resumed: bool = False
