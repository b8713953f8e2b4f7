"""Flashpractice - adaptive-interval flashcard practice on DuckDB."""

from .models import (
    Attempt,
    Deck,
    Flashcard,
    FlashcardKind,
    FlashcardSchedule,
    PracticeSession,
    SessionState,
    SessionStatus,
    SessionView,
)
from .db import PracticeDatabase
from .scheduler import IntervalScheduler
from .session_manager import SessionLifecycleManager
from .practice_engine import PracticeEngine
from .deck_import import export_deck, import_deck

__all__ = [
    "Attempt",
    "Deck",
    "Flashcard",
    "FlashcardKind",
    "FlashcardSchedule",
    "PracticeSession",
    "SessionState",
    "SessionStatus",
    "SessionView",
    "PracticeDatabase",
    "IntervalScheduler",
    "SessionLifecycleManager",
    "PracticeEngine",
    "export_deck",
    "import_deck",
]
