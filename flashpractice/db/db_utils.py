"""
Utility functions for data marshalling between Pydantic models and database formats.  # noqa: E501
This module helps decouple the core database logic from the specifics of data conversion.  # noqa: E501
"""

import json
import math
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from ..constants import MAX_REVIEW_TIME_MS
from ..exceptions import MarshallingError
from ..models import (
    Attempt,
    Deck,
    Flashcard,
    FlashcardSchedule,
    PracticeSession,
    ReviewHistoryEntry,
    User,
)


def rows_to_dicts(cursor) -> List[Dict[str, Any]]:
    """Convert cursor results to list of dictionaries using column names."""
    rows = cursor.fetchall()
    if not rows:
        return []
    description = cursor.description
    if description is None:
        return []
    columns = [desc[0] for desc in description]
    return [dict(zip(columns, row, strict=True)) for row in rows]


def fetch_one_dict(cursor) -> Optional[Dict[str, Any]]:
    rows = rows_to_dicts(cursor)
    return rows[0] if rows else None


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime read from DuckDB to an aware UTC datetime."""
    if value is None:
        return None
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _normalize_timestamps(data: Dict[str, Any], *fields: str) -> Dict[str, Any]:
    for field in fields:
        if field in data:
            data[field] = as_utc(data[field])
    return data


def _build(model, data: Dict[str, Any], label: str):
    try:
        return model(**data)
    except ValidationError as e:
        raise MarshallingError(
            f"Failed to parse {label} from DB row: {data}. Error: {e}",
            original_exception=e,
        ) from e


# --- Review history (stored as a JSON string) ---


def clamp_time_ms(value: Any) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return max(0, min(MAX_REVIEW_TIME_MS, int(math.floor(number))))


def decode_review_history(raw: Any) -> List[ReviewHistoryEntry]:
    """
    Parse the stored review history, dropping malformed entries.

    Entries that are not objects are skipped; `correct` is coerced to bool
    and `time_ms` (or legacy `timeMs`) clamped to [0, 1h].
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return []
    if not isinstance(raw, list):
        return []

    history: List[ReviewHistoryEntry] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        time_value = item.get("time_ms", item.get("timeMs"))
        history.append(
            ReviewHistoryEntry(
                correct=bool(item.get("correct")),
                time_ms=clamp_time_ms(time_value),
            )
        )
    return history


def encode_review_history(history: List[ReviewHistoryEntry]) -> str:
    return json.dumps([entry.model_dump() for entry in history])


# --- Row -> model ---


def db_row_to_user(row_dict: Dict[str, Any]) -> User:
    data = {
        "id": row_dict["id"],
        "username": row_dict["username"],
        "created_at": as_utc(row_dict["created_at"]),
    }
    return _build(User, data, "user")


def db_row_to_deck(row_dict: Dict[str, Any]) -> Deck:
    data = _normalize_timestamps(dict(row_dict), "created_at")
    return _build(Deck, data, "deck")


def db_row_to_flashcard(row_dict: Dict[str, Any]) -> Flashcard:
    data = _normalize_timestamps(dict(row_dict), "created_at")
    if data.get("kind") not in ("basic", "mcq"):
        data["kind"] = "basic"
    if data.get("mcq_options") is not None:
        data["mcq_options"] = [str(option) for option in data["mcq_options"]]
    return _build(Flashcard, data, "flashcard")


def db_row_to_session(row_dict: Dict[str, Any]) -> PracticeSession:
    data = _normalize_timestamps(
        dict(row_dict), "front_started_at", "created_at", "updated_at"
    )
    data.pop("lock_version", None)
    data["front_elapsed_ms"] = max(0, int(data.get("front_elapsed_ms") or 0))
    data["progress_index"] = max(0, int(data.get("progress_index") or 0))
    data["view_index"] = max(0, int(data.get("view_index") or 0))
    return _build(PracticeSession, data, "practice session")


def db_row_to_attempt(row_dict: Dict[str, Any]) -> Attempt:
    data = _normalize_timestamps(dict(row_dict), "answered_at")
    return _build(Attempt, data, "attempt")


def db_row_to_schedule(row_dict: Dict[str, Any]) -> FlashcardSchedule:
    data = _normalize_timestamps(
        dict(row_dict), "due_at", "last_seen_at", "prev_last_seen_at"
    )
    data.pop("lock_version", None)
    data["review_history"] = decode_review_history(data.get("review_history"))
    return _build(FlashcardSchedule, data, "flashcard schedule")


# --- Model -> params ---


def flashcard_to_db_params_tuple(card: Flashcard) -> Tuple:
    """
    Returns:
        tuple: (id, deck_id, kind, front, back, mcq_options, mcq_correct_index,
                sketch_code, sketch_width, sketch_height, created_at)
    """
    return (
        card.id,
        card.deck_id,
        card.kind.value,
        card.front,
        card.back,
        list(card.mcq_options) if card.mcq_options else None,
        card.mcq_correct_index,
        card.sketch_code,
        card.sketch_width,
        card.sketch_height,
        card.created_at,
    )


def attempt_to_db_params_tuple(attempt: Attempt) -> Tuple:
    """
    Returns:
        tuple: (session_id, position, user_id, deck_id, flashcard_id, is_novel,
                answered_correct, time_ms, answered_at)
    """
    return (
        attempt.session_id,
        attempt.position,
        attempt.user_id,
        attempt.deck_id,
        attempt.flashcard_id,
        attempt.is_novel,
        attempt.answered_correct,
        attempt.time_ms,
        attempt.answered_at,
    )


# --- Backups ---


def find_latest_backup(db_path: Path) -> Optional[Path]:
    """
    Locate the most recent backup file for the given database path, or None.
    """
    backup_dir = db_path.parent / "backups"
    if not backup_dir.exists():
        return None

    backup_files = list(backup_dir.glob(f"{db_path.stem}-backup-*{db_path.suffix}"))
    if not backup_files:
        return None

    # Names embed the timestamp, so the max name is the latest backup.
    return max(backup_files, key=lambda p: p.name)


def backup_database(db_path: Path) -> Path:
    """
    Creates a timestamped backup of the database file and returns its path.

    If the database file does not exist yet, returns `db_path` unchanged.
    """
    if not db_path.exists():
        return db_path

    backup_dir = db_path.parent / "backups"
    backup_dir.mkdir(exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    backup_filename = f"{db_path.stem}-backup-{timestamp}{db_path.suffix}"
    backup_path = backup_dir / backup_filename

    shutil.copy2(db_path, backup_path)
    return backup_path
