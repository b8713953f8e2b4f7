from pathlib import Path
from typing import Optional, Union


class DatabaseError(Exception):
    """Base exception for database-related errors."""

    def __init__(
        self, message: str, original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.original_exception = original_exception


class DatabaseConnectionError(DatabaseError):
    """Raised for errors connecting to the database."""

    pass


class SchemaInitializationError(DatabaseError):
    """Raised for errors during schema setup."""

    pass


class MarshallingError(DatabaseError):
    """Indicates an error during data conversion between application models
    and DB format."""

    pass


class CardOperationError(DatabaseError):
    """Raised for errors during flashcard operations."""

    pass


class DeckOperationError(DatabaseError):
    """Raised for errors during deck operations."""

    pass


class UserOperationError(DatabaseError):
    """Raised for errors reading or writing user settings."""

    pass


class SessionOperationError(DatabaseError):
    """Indicates an error during a practice-session database operation."""

    pass


class ScheduleOperationError(DatabaseError):
    """Indicates an error while reading or writing a flashcard schedule."""

    pass


class TransactionConflictError(DatabaseError):
    """Raised when a concurrent transaction already claimed a row we write.

    The transaction has been rolled back in full and is safe to retry.
    """

    pass


class PracticeError(Exception):
    """Base class for practice-engine outcomes reported to the caller."""

    code: str = "practice_error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__.strip())


# --- Precondition errors (session creation) ---


class DeckNotFoundError(PracticeError):
    """Deck not found."""

    code = "deck_not_found"


class NoPlayableCardsError(PracticeError):
    """No flashcards available in this deck."""

    code = "no_playable_cards"


class DailyLimitExhaustedError(PracticeError):
    """Daily limits exhausted."""

    code = "daily_limit_exhausted"


class NothingAvailableError(PracticeError):
    """No flashcards available within daily limits."""

    code = "nothing_available"


# --- Transition errors (session events) ---


class SessionNotFoundError(PracticeError):
    """Practice session not found."""

    code = "not_found"


class SessionForbiddenError(PracticeError):
    """Practice session belongs to another user."""

    code = "forbidden"


class SessionEndedError(PracticeError):
    """Session ended."""

    code = "session_ended"


class AnswerRequiredError(PracticeError):
    """Answer the flashcard first."""

    code = "answer_required"


class InvalidTransitionError(PracticeError):
    """Event is not valid in the current session state."""

    code = "invalid_transition"


class MalformedEventError(InvalidTransitionError):
    """Event payload is malformed."""

    code = "malformed_event"


class DeckImportError(Exception):
    """Raised when a deck export file cannot be read or validated."""

    def __init__(self, file_path: Union[str, Path], message: str):
        self.file_path = Path(file_path)
        self.message = message
        super().__init__(f"{self.file_path}: {message}")
