import sys
import pytest
from pathlib import Path
from typing import Generator, List
from datetime import datetime, timedelta, timezone

from flashpractice.db import PracticeDatabase
from flashpractice.exceptions import TransactionConflictError
from flashpractice.models import Deck, Flashcard, FlashcardKind, User
from flashpractice.practice_engine import PracticeEngine
from flashpractice.scheduler import IntervalScheduler
from flashpractice.session_manager import SessionLifecycleManager


# each test runs on cwd to its temp dir
@pytest.fixture(autouse=True)
def go_to_tmpdir(request):
    """
    Temporarily change the working directory to the test's tmpdir.
    """
    tmpdir = request.getfixturevalue("tmpdir")
    sys.path.insert(0, str(tmpdir))
    with tmpdir.as_cwd():
        yield


class FakeClock:
    """A settable clock; call it to read the time, `advance` to move it."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# --- Database Fixtures ---
@pytest.fixture
def db_path_memory() -> str:
    return ":memory:"


@pytest.fixture
def db_path_file(tmp_path: Path) -> Path:
    return tmp_path / "test_practice.db"


@pytest.fixture(params=["memory", "file"])
def db_manager(
    request, db_path_memory: str, db_path_file: Path
) -> Generator[PracticeDatabase, None, None]:
    """
    A PracticeDatabase, either in-memory or file-backed, closed on teardown.
    """
    if request.param == "memory":
        db_man = PracticeDatabase(db_path_memory)
    else:
        db_man = PracticeDatabase(db_path_file)
    try:
        yield db_man
    finally:
        db_man.close_connection()


@pytest.fixture
def initialized_db_manager(
    db_manager: PracticeDatabase,
) -> Generator[PracticeDatabase, None, None]:
    db_manager.initialize_schema()
    yield db_manager


@pytest.fixture
def in_memory_db() -> Generator[PracticeDatabase, None, None]:
    db = PracticeDatabase(":memory:")
    db.initialize_schema()
    try:
        yield db
    finally:
        db.close_connection()


# --- Clock and sample data ---
@pytest.fixture
def clock() -> FakeClock:
    """Mid-morning UTC, so a few hours can pass without crossing midnight."""
    return FakeClock(datetime(2024, 5, 14, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def sample_user(in_memory_db: PracticeDatabase) -> User:
    return in_memory_db.create_user("ada")


@pytest.fixture
def other_user(in_memory_db: PracticeDatabase) -> User:
    return in_memory_db.create_user("grace")


def make_cards(deck_id, count: int, start: datetime) -> List[Flashcard]:
    """Basic cards with strictly increasing created_at, so queue order is known."""
    return [
        Flashcard(
            deck_id=deck_id,
            kind=FlashcardKind.Basic,
            front=f"Question {i}",
            back=f"Answer {i}",
            created_at=start + timedelta(seconds=i),
        )
        for i in range(count)
    ]


@pytest.fixture
def sample_deck(in_memory_db: PracticeDatabase, sample_user: User) -> Deck:
    return in_memory_db.create_deck(sample_user.id, "Capitals")


@pytest.fixture
def sample_cards(
    in_memory_db: PracticeDatabase, sample_deck: Deck, clock: FakeClock
) -> List[Flashcard]:
    cards = make_cards(sample_deck.id, 3, clock.now - timedelta(days=30))
    in_memory_db.add_flashcards_batch(cards)
    return cards


@pytest.fixture
def manager(in_memory_db: PracticeDatabase, clock: FakeClock) -> SessionLifecycleManager:
    return SessionLifecycleManager(in_memory_db, clock=clock)


@pytest.fixture
def engine(in_memory_db: PracticeDatabase, clock: FakeClock) -> PracticeEngine:
    return PracticeEngine(in_memory_db, IntervalScheduler(in_memory_db), clock=clock)


@pytest.fixture
def card_factory():
    return make_cards


def run_overlapping(db: PracticeDatabase, hold, contend):
    """
    Call `contend()` while a transaction that ran `hold(cursor)` is still open.

    DuckDB may report a write-write conflict on the contending statement or
    only when the later of the two transactions commits, so this returns
    which side committed rather than where the conflict surfaced.

    Returns:
        (hold_committed, contend_committed)
    """
    contend_committed = False
    try:
        with db.transaction() as cursor:
            hold(cursor)
            try:
                contend()
                contend_committed = True
            except TransactionConflictError:
                pass
        hold_committed = True
    except TransactionConflictError:
        hold_committed = False
    return hold_committed, contend_committed


@pytest.fixture
def overlapping():
    return run_overlapping
