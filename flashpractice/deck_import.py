"""
Deck import and export for flashpractice.

A deck export is a YAML or JSON mapping::

    name: Spanish verbs
    flashcards:
      - front: hablar
        back: to speak
      - front: Pick the past participle of "ver"
        back: visto
        kind: mcq
        mcq: {options: [vido, visto, veído], correct_index: 1}

JSON is read through the same YAML loader. Exports written by older clients
(camelCase `correctIndex`, `p5` sketches, an `{"ok": true, "deck": ...}`
envelope) are accepted as well.
"""

import logging
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import (
    AliasChoices,
    BaseModel as PydanticBaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from .constants import (
    MAX_DECK_NAME_LENGTH,
    MAX_IMPORT_FILE_BYTES,
    MAX_IMPORT_FLASHCARDS,
    MAX_IMPORT_TEXT_LENGTH,
    MAX_SKETCH_CODE_LENGTH,
)
from .db.database import PracticeDatabase
from .exceptions import DatabaseError, DeckImportError, DeckNotFoundError
from .models import Deck, Flashcard, FlashcardKind, utc_now

logger = logging.getLogger(__name__)


# --- Raw file models ---


class _RawMcq(PydanticBaseModel):
    options: List[str] = Field(..., min_length=2, max_length=8)
    correct_index: int = Field(
        ...,
        ge=0,
        le=7,
        validation_alias=AliasChoices("correct_index", "correctIndex"),
    )

    model_config = ConfigDict(extra="ignore")

    @field_validator("options")
    @classmethod
    def check_option_length(cls, v: List[str]) -> List[str]:
        for option in v:
            if len(option) > MAX_IMPORT_TEXT_LENGTH:
                raise ValueError(
                    f"option longer than {MAX_IMPORT_TEXT_LENGTH} characters"
                )
        return v


class _RawSketch(PydanticBaseModel):
    code: str = Field(..., max_length=MAX_SKETCH_CODE_LENGTH)
    width: Optional[int] = Field(default=None, ge=100, le=1200)
    height: Optional[int] = Field(default=None, ge=100, le=900)

    model_config = ConfigDict(extra="ignore")


class _RawFlashcard(PydanticBaseModel):
    front: str = Field(..., max_length=MAX_IMPORT_TEXT_LENGTH)
    back: str = Field(..., max_length=MAX_IMPORT_TEXT_LENGTH)
    kind: Optional[str] = Field(default=None, max_length=32)
    mcq: Optional[_RawMcq] = None
    sketch: Optional[_RawSketch] = Field(
        default=None, validation_alias=AliasChoices("sketch", "p5")
    )

    model_config = ConfigDict(extra="ignore")


class _RawDeckFile(PydanticBaseModel):
    name: str = Field(..., min_length=1, max_length=MAX_DECK_NAME_LENGTH)
    flashcards: List[_RawFlashcard] = Field(
        default_factory=list, max_length=MAX_IMPORT_FLASHCARDS
    )

    model_config = ConfigDict(extra="ignore")

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


# --- Reading ---


def load_deck_file(file_path: Union[str, Path]) -> _RawDeckFile:
    """
    Read and validate a deck export file.

    Raises:
        DeckImportError: If the file is missing, too large, not valid
            YAML/JSON, or fails validation (the message names the first
            offending field).
    """
    file_path = Path(file_path)
    try:
        if file_path.stat().st_size > MAX_IMPORT_FILE_BYTES:
            raise DeckImportError(file_path, "Deck file is too large.")
        content = file_path.read_text(encoding="utf-8")
        raw = yaml.safe_load(content)
    except FileNotFoundError:
        raise DeckImportError(file_path, "File not found.") from None
    except UnicodeDecodeError as e:
        raise DeckImportError(file_path, f"File is not UTF-8 text: {e}") from e
    except OSError as e:
        raise DeckImportError(file_path, f"Could not read file: {e}") from e
    except yaml.YAMLError as e:
        raise DeckImportError(file_path, f"Invalid YAML/JSON syntax: {e}") from e

    if isinstance(raw, dict) and isinstance(raw.get("deck"), dict):
        raw = raw["deck"]
    if not isinstance(raw, dict):
        raise DeckImportError(
            file_path, "Top level must be a mapping with 'name' and 'flashcards'."
        )

    try:
        return _RawDeckFile.model_validate(raw)
    except ValidationError as e:
        error_details = e.errors()[0]
        field = ".".join(map(str, error_details["loc"]))
        msg = error_details["msg"]
        raise DeckImportError(
            file_path, f"Validation error in field '{field}': {msg}"
        ) from e


def _to_flashcard(
    raw: _RawFlashcard, deck_id: uuid.UUID, created_at: datetime
) -> Optional[Flashcard]:
    """
    Normalize one imported card; unplayable cards are dropped (None).

    The kind is derived from the payload: a card is `mcq` only when it
    carries options with an in-range correct index.
    """
    mcq_options = None
    mcq_correct_index = None
    if raw.mcq is not None and raw.mcq.correct_index < len(raw.mcq.options):
        mcq_options = [option.strip() for option in raw.mcq.options]
        mcq_correct_index = raw.mcq.correct_index

    sketch = raw.sketch
    sketch_code = sketch.code if sketch and sketch.code.strip() else None

    card = Flashcard(
        deck_id=deck_id,
        kind=FlashcardKind.Mcq if mcq_options else FlashcardKind.Basic,
        front=raw.front.strip(),
        back=raw.back.strip(),
        mcq_options=mcq_options,
        mcq_correct_index=mcq_correct_index,
        sketch_code=sketch_code,
        sketch_width=sketch.width if sketch_code else None,
        sketch_height=sketch.height if sketch_code else None,
        created_at=created_at,
    )
    return card if card.is_playable else None


def find_available_deck_name(
    db: PracticeDatabase, user_id: uuid.UUID, base_name: str
) -> str:
    """
    Pick a deck name that does not clash (case-insensitively) with the
    user's existing decks: `name`, then `name (import)`, `name (import 2)`...
    """
    trimmed = base_name.strip() or "import deck"
    taken = {
        deck.name.lower()
        for deck in db.get_decks_for_user(user_id, include_archived=True)
    }
    if trimmed.lower() not in taken:
        return trimmed

    candidate = f"{trimmed} (import)"
    counter = 2
    while candidate.lower() in taken:
        candidate = f"{trimmed} (import {counter})"
        counter += 1
    return candidate


def import_deck(
    db: PracticeDatabase, user_id: uuid.UUID, file_path: Union[str, Path]
) -> Deck:
    """
    Create a deck and its flashcards from an export file in one transaction.

    Returns:
        The created Deck.

    Raises:
        DeckImportError: If the file cannot be read or validated, or the
            deck cannot be written.
    """
    raw_deck = load_deck_file(file_path)
    deck = Deck(user_id=user_id, name=find_available_deck_name(db, user_id, raw_deck.name))
    # Cards keep file order: creation times step by one microsecond.
    imported_at = utc_now()
    cards: List[Flashcard] = []
    for raw in raw_deck.flashcards:
        card = _to_flashcard(
            raw, deck.id, imported_at + timedelta(microseconds=len(cards))
        )
        if card is not None:
            cards.append(card)

    try:
        with db.transaction() as cursor:
            db.insert_deck(cursor, deck)
            db.insert_flashcards(cursor, cards)
    except DatabaseError as e:
        raise DeckImportError(file_path, f"Import failed: {e}") from e

    skipped = len(raw_deck.flashcards) - len(cards)
    logger.info(
        f"Imported deck '{deck.name}' ({deck.id}) with {len(cards)} flashcards"
        + (f", skipped {skipped} unplayable" if skipped else "")
    )
    return deck


def export_deck(
    db: PracticeDatabase, user_id: uuid.UUID, deck_id: uuid.UUID
) -> Dict[str, Any]:
    """
    Build an export mapping for one of the user's decks (playable cards only).

    Raises:
        DeckNotFoundError: If the deck does not exist or is not the user's.
    """
    deck = db.get_deck(deck_id)
    if deck is None or deck.user_id != user_id:
        raise DeckNotFoundError()

    flashcards: List[Dict[str, Any]] = []
    for card in db.get_flashcards_for_deck(deck_id, playable_only=True):
        entry: Dict[str, Any] = {
            "front": card.front,
            "back": card.back,
            "kind": card.kind.value,
        }
        if (
            card.mcq_options
            and card.mcq_correct_index is not None
            and card.mcq_correct_index < len(card.mcq_options)
        ):
            entry["mcq"] = {
                "options": list(card.mcq_options),
                "correct_index": card.mcq_correct_index,
            }
        if card.sketch_code:
            entry["sketch"] = {
                "code": card.sketch_code,
                "width": card.sketch_width,
                "height": card.sketch_height,
            }
        flashcards.append(entry)

    return {"name": deck.name, "flashcards": flashcards}
