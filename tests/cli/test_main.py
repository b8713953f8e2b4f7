# Standard library imports
import json
import re
from pathlib import Path

# Third-party imports
import pytest
import yaml
from typer.testing import CliRunner

# Local application imports
from flashpractice.cli.main import app
from flashpractice.db.database import PracticeDatabase


runner = CliRunner()


def normalize_output(text: str) -> str:
    """Strip ANSI codes and collapse whitespace so wrapped rich output can be matched."""
    text = re.sub(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])", "", text)
    return re.sub(r"\s+", " ", text).strip()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "cli.db"
    result = runner.invoke(app, ["init", "--db", str(path)])
    assert result.exit_code == 0, result.output
    result = runner.invoke(app, ["user-add", "ada", "--db", str(path)])
    assert result.exit_code == 0, result.output
    return path


@pytest.fixture
def deck_file(tmp_path: Path) -> Path:
    path = tmp_path / "capitals.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "name": "Capitals",
                "flashcards": [{"front": "Capital of France?", "back": "Paris"}],
            }
        ),
        encoding="utf-8",
    )
    return path


def invoke(db_path: Path, *args: str, **kwargs):
    return runner.invoke(app, [*args, "--db", str(db_path), "--user", "ada"], **kwargs)


@pytest.fixture
def imported(db_path: Path, deck_file: Path) -> Path:
    result = invoke(db_path, "import", str(deck_file))
    assert result.exit_code == 0, result.output
    return db_path


def test_init_creates_database(tmp_path: Path):
    path = tmp_path / "nested" / "new.db"
    result = runner.invoke(app, ["init", "--db", str(path)])
    assert result.exit_code == 0
    assert path.exists()
    assert "Database ready" in normalize_output(result.output)


def test_user_add_duplicate_fails(db_path: Path):
    result = runner.invoke(app, ["user-add", "ada", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "Could not create user" in normalize_output(result.output)


def test_unknown_user(db_path: Path):
    result = runner.invoke(app, ["decks", "--db", str(db_path), "--user", "nobody"])
    assert result.exit_code == 1
    assert "user 'nobody' not found" in normalize_output(result.output)


def test_import_and_list_decks(imported: Path):
    result = invoke(imported, "decks")
    assert result.exit_code == 0, result.output
    output = normalize_output(result.output)
    assert "Capitals" in output


def test_archive_hides_deck(imported: Path):
    result = invoke(imported, "archive", "Capitals")
    assert result.exit_code == 0, result.output

    result = invoke(imported, "practice", "Capitals")
    assert result.exit_code == 1
    assert "Deck not found" in normalize_output(result.output)

    result = invoke(imported, "decks", "--archived")
    assert "(archived)" in normalize_output(result.output)

    result = invoke(imported, "archive", "Capitals", "--unarchive")
    assert result.exit_code == 0, result.output
    assert "Capitals" in normalize_output(invoke(imported, "decks").output)


def test_import_invalid_file(db_path: Path, tmp_path: Path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("name: Bad\nflashcards:\n  - front: only a front\n", encoding="utf-8")
    result = invoke(db_path, "import", str(bad))
    assert result.exit_code == 1
    assert "Import failed" in normalize_output(result.output)


def test_export_to_json_file(imported: Path, tmp_path: Path):
    out = tmp_path / "out.json"
    result = invoke(imported, "export", "Capitals", "--output", str(out))
    assert result.exit_code == 0, result.output
    data = json.loads(out.read_text(encoding="utf-8"))
    assert data["name"] == "Capitals"
    assert data["flashcards"][0]["back"] == "Paris"


def test_export_unknown_deck(imported: Path):
    result = invoke(imported, "export", "Rivers")
    assert result.exit_code == 1
    assert "Deck not found" in normalize_output(result.output)


def test_settings_update(db_path: Path):
    result = invoke(
        db_path, "settings", "--base-minutes", "60", "--reward", "2", "--daily-novel", "5"
    )
    assert result.exit_code == 0, result.output
    output = normalize_output(result.output)
    assert "60 min" in output

    with PracticeDatabase(db_path) as db:
        user = db.get_user_by_username("ada")
        settings = db.get_scheduler_settings(user.id)
        assert settings.base_interval_ms == 3_600_000
        assert settings.reward_multiplier == 2.0
        assert db.get_daily_limits(user.id).novel_limit == 5


def test_practice_full_deck(imported: Path):
    # Enter reveals, "y" answers, Enter advances past the only card.
    result = invoke(imported, "practice", "Capitals", input="\ny\n\n")
    assert result.exit_code == 0, result.output
    output = normalize_output(result.output)
    assert "Starting practice for deck: Capitals" in output
    assert "Session finished. 1 of 1 correct." in output
    assert (imported.parent / "backups").exists()

    result = invoke(imported, "stats", "Capitals")
    assert result.exit_code == 0, result.output
    assert "Last 7 days" in normalize_output(result.output)

    # Nothing is due and no card is new any more.
    result = invoke(imported, "practice", "Capitals")
    assert result.exit_code == 1
    assert "No flashcards available within daily limits" in normalize_output(result.output)


def test_practice_quit_then_resume(imported: Path):
    result = invoke(imported, "practice", "Capitals", input="q\n")
    assert result.exit_code == 0, result.output
    assert "Leaving practice" in normalize_output(result.output)

    result = invoke(imported, "practice", "Capitals", input="\nn\n\n")
    assert result.exit_code == 0, result.output
    output = normalize_output(result.output)
    assert "Resuming practice" in output
    assert "Session finished. 0 of 1 correct." in output


def test_restore_without_backups(db_path: Path):
    result = runner.invoke(app, ["restore", "--db", str(db_path), "--yes"])
    assert result.exit_code == 1
    assert "No backup files found" in normalize_output(result.output)


def test_restore_latest_backup(imported: Path):
    invoke(imported, "practice", "Capitals", input="q\n")
    result = runner.invoke(app, ["restore", "--db", str(imported), "--yes"])
    assert result.exit_code == 0, result.output
    assert "successfully restored" in normalize_output(result.output)


def test_practice_shows_bracketed_card_text(db_path: Path, tmp_path: Path):
    deck = tmp_path / "markup.yaml"
    deck.write_text(
        yaml.safe_dump(
            {
                "name": "Markup",
                "flashcards": [{"front": "What does [/b] close?", "back": "arr[i]"}],
            }
        ),
        encoding="utf-8",
    )
    assert invoke(db_path, "import", str(deck)).exit_code == 0

    result = invoke(db_path, "practice", "Markup", input="\ny\n\n")
    assert result.exit_code == 0, result.output
    output = normalize_output(result.output)
    assert "What does [/b] close?" in output
    assert "arr[i]" in output
