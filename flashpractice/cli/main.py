"""
CLI entry point for flashpractice.
"""

# Standard library imports
import json
import logging
import shutil
import uuid
from pathlib import Path
from typing import Optional

# Third-party imports
import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

# Local application imports
from flashpractice import config
from flashpractice.cli.practice_ui import start_practice_flow
from flashpractice.constants import MAX_DAILY_LIMIT, MINUTE_MS, SECOND_MS
from flashpractice.db.database import PracticeDatabase
from flashpractice.db.db_utils import backup_database, find_latest_backup
from flashpractice.deck_import import export_deck, import_deck
from flashpractice.exceptions import (
    DatabaseError,
    DeckImportError,
    DeckNotFoundError,
    PracticeError,
)
from flashpractice.models import DailyLimits, Deck, SchedulerSettings
from flashpractice.practice_engine import PracticeEngine
from flashpractice.scheduler import clamp_settings
from flashpractice.session_manager import SessionLifecycleManager
from flashpractice.stats import AttemptStats, DeckStats, get_deck_stats


console = Console()

app = typer.Typer(
    name="flashpractice",
    help="Flashpractice: adaptive-interval flashcard practice.",
    add_completion=False,
    rich_markup_mode="markdown",
)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def _main_callback(
    log_level: Optional[str] = typer.Option(  # noqa: B008
        None,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR). "
        "Falls back to FLASHPRACTICE_LOG_LEVEL.",
    ),
):
    """Adaptive-interval flashcard practice on a local DuckDB database."""
    level = (log_level or config.settings.log_level).upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        console.print(f"[bold red]Error: unknown log level '{level}'.[/bold red]")
        raise typer.Exit(code=1)
    _configure_logging(level)


# ---------------------------------------------------------------------------
# Helpers for resolving --db and --user
# ---------------------------------------------------------------------------


def _resolve_db_path(db: Optional[Path]) -> Path:
    """Resolve db path from the CLI flag (or FLASHPRACTICE_DB), else settings."""
    if db is not None:
        return db
    return config.settings.db_path


# Common typer options reused across commands
_db_option = typer.Option(  # noqa: B008
    None,
    "--db",
    help="Path to the DuckDB database file. "
    "Falls back to FLASHPRACTICE_DB, then FLASHPRACTICE_DB_PATH.",
    envvar="FLASHPRACTICE_DB",
)

_user_option = typer.Option(  # noqa: B008
    None,
    "--user",
    "-u",
    help="User id or username. Falls back to FLASHPRACTICE_USER_ID.",
)


def _resolve_user_id(db: PracticeDatabase, user: Optional[str]) -> uuid.UUID:
    """Resolve --user as a UUID or a username. Exits if no such user."""
    if user is None:
        if config.settings.user_id is None:
            console.print(
                "[bold red]Error: --user is required "
                "(or set FLASHPRACTICE_USER_ID).[/bold red]"
            )
            raise typer.Exit(code=1)
        user = str(config.settings.user_id)

    try:
        found = db.get_user(uuid.UUID(user))
    except ValueError:
        found = db.get_user_by_username(user)
    if found is None:
        console.print(f"[bold red]Error: user '{user}' not found.[/bold red]")
        raise typer.Exit(code=1)
    return found.id


def _resolve_deck(db: PracticeDatabase, user_id: uuid.UUID, deck: str) -> Deck:
    """Resolve a deck argument given as a UUID or as a deck name."""
    try:
        found = db.get_deck(uuid.UUID(deck))
    except ValueError:
        matches = [
            d
            for d in db.get_decks_for_user(user_id, include_archived=True)
            if d.name.lower() == deck.strip().lower()
        ]
        found = matches[0] if matches else None
    if found is None or found.user_id != user_id:
        raise DeckNotFoundError()
    return found


def _fail(message: str, error: Exception) -> None:
    console.print(f"[bold red]{message}[/bold red] {escape(str(error))}")
    raise typer.Exit(code=1) from error


# ---------------------------------------------------------------------------
# Setup commands
# ---------------------------------------------------------------------------


@app.command()
def init(
    db: Optional[Path] = _db_option,
):
    """Create the database schema (safe to run on an existing database)."""
    db_path = _resolve_db_path(db)
    try:
        with PracticeDatabase(db_path=db_path) as db_inst:
            db_inst.initialize_schema()
    except DatabaseError as e:
        _fail("A database error occurred:", e)
    console.print(f"[bold green]Database ready at[/bold green] [cyan]{db_path}[/cyan]")


@app.command("user-add")
def user_add(
    username: str = typer.Argument(..., help="Name of the new user."),  # noqa: B008
    db: Optional[Path] = _db_option,
):
    """Create a user with default scheduler settings and daily limits."""
    db_path = _resolve_db_path(db)
    try:
        with PracticeDatabase(db_path=db_path) as db_inst:
            user = db_inst.create_user(username.strip())
    except DatabaseError as e:
        _fail("Could not create user:", e)
    console.print(f"[green]Created user[/green] [bold]{user.username}[/bold]: {user.id}")


# ---------------------------------------------------------------------------
# Deck commands
# ---------------------------------------------------------------------------


@app.command("import")
def import_cmd(
    file: Path = typer.Argument(  # noqa: B008
        ..., help="Deck export file (YAML or JSON)."
    ),
    db: Optional[Path] = _db_option,
    user: Optional[str] = _user_option,
):
    """Import a deck from a YAML or JSON export file."""
    db_path = _resolve_db_path(db)
    try:
        with PracticeDatabase(db_path=db_path) as db_inst:
            user_id = _resolve_user_id(db_inst, user)
            deck = import_deck(db_inst, user_id, file)
            card_count = db_inst.count_playable_flashcards(deck.id)
    except DeckImportError as e:
        _fail("Import failed:", e)
    except DatabaseError as e:
        _fail("A database error occurred:", e)
    console.print(
        f"[bold green]Imported[/bold green] [cyan]{deck.name}[/cyan] "
        f"with {card_count} flashcards ({deck.id})."
    )


@app.command()
def export(
    deck: str = typer.Argument(..., help="Deck id or name."),  # noqa: B008
    db: Optional[Path] = _db_option,
    user: Optional[str] = _user_option,
    output: Optional[Path] = typer.Option(  # noqa: B008
        None,
        "--output",
        "-o",
        help="File to write. A .json suffix writes JSON, anything else YAML. "
        "Prints YAML when omitted.",
    ),
):
    """Export a deck's playable flashcards."""
    db_path = _resolve_db_path(db)
    try:
        with PracticeDatabase(db_path=db_path, read_only=True) as db_inst:
            user_id = _resolve_user_id(db_inst, user)
            data = export_deck(db_inst, user_id, _resolve_deck(db_inst, user_id, deck).id)
    except PracticeError as e:
        _fail("Error:", e)
    except DatabaseError as e:
        _fail("A database error occurred:", e)

    if output is not None and output.suffix.lower() == ".json":
        text = json.dumps(data, ensure_ascii=False, indent=2)
    else:
        text = yaml.safe_dump(data, allow_unicode=True, sort_keys=False)

    if output is None:
        console.print(text, markup=False, highlight=False, soft_wrap=True)
        return
    try:
        output.write_text(text, encoding="utf-8")
    except OSError as e:
        _fail("Could not write export:", e)
    console.print(
        f"Exported {len(data['flashcards'])} flashcards to [cyan]{output}[/cyan]."
    )


@app.command()
def decks(
    db: Optional[Path] = _db_option,
    user: Optional[str] = _user_option,
    archived: bool = typer.Option(  # noqa: B008
        False, "--archived", help="Include archived decks."
    ),
):
    """List the user's decks with due and novel counts."""
    db_path = _resolve_db_path(db)
    try:
        with PracticeDatabase(db_path=db_path) as db_inst:
            user_id = _resolve_user_id(db_inst, user)
            user_decks = db_inst.get_decks_for_user(user_id, include_archived=archived)
            if not user_decks:
                console.print("[yellow]No decks found. Import one first.[/yellow]")
                return

            table = Table(title="Decks")
            table.add_column("Deck Name", style="cyan")
            table.add_column("Id", style="dim")
            table.add_column("Cards", style="magenta")
            table.add_column("Due", style="yellow")
            table.add_column("Novel", style="green")
            for deck in user_decks:
                stats = get_deck_stats(db_inst, user_id, deck.id)
                name = f"{deck.name} (archived)" if deck.is_archived else deck.name
                table.add_row(
                    name,
                    str(deck.id),
                    str(stats.total_cards),
                    str(stats.due_now),
                    str(stats.novel_cards),
                )
            console.print(table)
    except DatabaseError as e:
        _fail("A database error occurred:", e)


@app.command()
def archive(
    deck: str = typer.Argument(..., help="Deck id or name."),  # noqa: B008
    db: Optional[Path] = _db_option,
    user: Optional[str] = _user_option,
    unarchive: bool = typer.Option(  # noqa: B008
        False, "--unarchive", help="Make an archived deck practicable again."
    ),
):
    """Archive a deck so it can no longer be practiced."""
    db_path = _resolve_db_path(db)
    try:
        with PracticeDatabase(db_path=db_path) as db_inst:
            user_id = _resolve_user_id(db_inst, user)
            deck_obj = _resolve_deck(db_inst, user_id, deck)
            db_inst.set_deck_archived(deck_obj.id, not unarchive)
    except PracticeError as e:
        _fail("Error:", e)
    except DatabaseError as e:
        _fail("A database error occurred:", e)
    state = "unarchived" if unarchive else "archived"
    console.print(f"Deck [cyan]{deck_obj.name}[/cyan] {state}.")


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def _display_settings(
    raw: SchedulerSettings, limits: DailyLimits
) -> None:
    effective = clamp_settings(raw)
    table = Table(title="Practice Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Base interval", f"{effective.base_interval_ms / MINUTE_MS:g} min")
    table.add_row("Reward multiplier", f"{effective.reward_multiplier:g}")
    table.add_row("Penalty multiplier", f"{effective.penalty_multiplier:g}")
    table.add_row(
        "Think-time budget",
        f"{effective.required_time_ms / SECOND_MS:g} s"
        if effective.required_time_ms
        else "off",
    )
    table.add_row("History length", f"{int(effective.time_history_limit)}")
    table.add_row("Daily novel limit", str(limits.novel_limit))
    table.add_row("Daily review limit", str(limits.review_limit))
    console.print(table)


@app.command("settings")
def settings_cmd(
    db: Optional[Path] = _db_option,
    user: Optional[str] = _user_option,
    base_minutes: Optional[float] = typer.Option(  # noqa: B008
        None, "--base-minutes", help="Interval for a card's first review."
    ),
    reward: Optional[float] = typer.Option(  # noqa: B008
        None, "--reward", help="Multiplier for a correct, timely answer."
    ),
    penalty: Optional[float] = typer.Option(  # noqa: B008
        None, "--penalty", help="Multiplier for any other answer."
    ),
    required_seconds: Optional[float] = typer.Option(  # noqa: B008
        None, "--required-seconds", help="Think-time budget; 0 disables it."
    ),
    history_limit: Optional[int] = typer.Option(  # noqa: B008
        None, "--history-limit", help="Outcomes kept per card."
    ),
    daily_novel: Optional[int] = typer.Option(  # noqa: B008
        None, "--daily-novel", min=0, max=MAX_DAILY_LIMIT,
        help="New cards per day.",
    ),
    daily_review: Optional[int] = typer.Option(  # noqa: B008
        None, "--daily-review", min=0, max=MAX_DAILY_LIMIT,
        help="Review cards per day.",
    ),
):
    """Show the user's practice settings, updating any that are given."""
    db_path = _resolve_db_path(db)
    try:
        with PracticeDatabase(db_path=db_path) as db_inst:
            user_id = _resolve_user_id(db_inst, user)
            current = db_inst.get_scheduler_settings(user_id)
            limits = db_inst.get_daily_limits(user_id)

            updates = {
                "base_interval_ms": base_minutes * MINUTE_MS
                if base_minutes is not None
                else None,
                "reward_multiplier": reward,
                "penalty_multiplier": penalty,
                "required_time_ms": required_seconds * SECOND_MS
                if required_seconds is not None
                else None,
                "time_history_limit": history_limit,
            }
            updates = {k: v for k, v in updates.items() if v is not None}
            if updates:
                current = clamp_settings(current.model_copy(update=updates))
                db_inst.update_scheduler_settings(user_id, current)

            if daily_novel is not None or daily_review is not None:
                limits = DailyLimits(
                    novel_limit=limits.novel_limit if daily_novel is None else daily_novel,
                    review_limit=limits.review_limit if daily_review is None else daily_review,
                )
                db_inst.update_daily_limits(user_id, limits)

            _display_settings(current, limits)
    except DatabaseError as e:
        _fail("A database error occurred:", e)


# ---------------------------------------------------------------------------
# Practice command
# ---------------------------------------------------------------------------


@app.command()
def practice(
    deck: str = typer.Argument(..., help="Deck id or name."),  # noqa: B008
    db: Optional[Path] = _db_option,
    user: Optional[str] = _user_option,
):
    """Practice a deck: resumes today's session or starts a new one."""
    db_path = _resolve_db_path(db)
    try:
        backup_path = backup_database(db_path)
        if backup_path.exists() and "backups" in str(backup_path):
            console.print(f"Database backed up to: [dim]{backup_path}[/dim]")

        with PracticeDatabase(db_path=db_path) as db_inst:
            user_id = _resolve_user_id(db_inst, user)
            deck_id = _resolve_deck(db_inst, user_id, deck).id
            handle = SessionLifecycleManager(db_inst).create_or_resume(user_id, deck_id)
            verb = "Resuming" if handle.resumed else "Starting"
            console.print(
                f"{verb} practice for deck: [bold cyan]{handle.deck_name}[/bold cyan]"
            )
            start_practice_flow(PracticeEngine(db_inst), user_id, handle.session_id)
    except PracticeError as e:
        _fail("Error:", e)
    except DatabaseError as e:
        _fail("A database error occurred:", e)


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def _format_ms(value: Optional[float]) -> str:
    return "-" if value is None else f"{value / SECOND_MS:.1f} s"


def _format_accuracy(value: Optional[float]) -> str:
    return "-" if value is None else f"{value * 100:.0f}%"


def _attempt_rows(table: Table, label: str, attempts: AttemptStats) -> None:
    table.add_row(
        label,
        str(attempts.total),
        str(attempts.correct),
        _format_accuracy(attempts.accuracy),
        _format_ms(attempts.mean_time_ms),
        _format_ms(attempts.median_time_ms),
    )


def _display_deck_stats(cons: Console, deck: Deck, stats_data: DeckStats) -> None:
    cards_table = Table(title=f"Flashcards: {deck.name}", show_header=False)
    cards_table.add_column("Metric", style="cyan")
    cards_table.add_column("Value", style="magenta")
    cards_table.add_row("Total", str(stats_data.total_cards))
    cards_table.add_row("Learned", str(stats_data.learned_cards))
    cards_table.add_row("Novel", str(stats_data.novel_cards))
    cards_table.add_row("Due now", str(stats_data.due_now))
    cons.print(cards_table)

    attempts_table = Table(title="Attempts")
    attempts_table.add_column("Period", style="cyan")
    attempts_table.add_column("Total", style="magenta")
    attempts_table.add_column("Correct", style="green")
    attempts_table.add_column("Accuracy", style="yellow")
    attempts_table.add_column("Mean time")
    attempts_table.add_column("Median time")
    _attempt_rows(attempts_table, "All time", stats_data.attempts)
    _attempt_rows(attempts_table, "Last 7 days", stats_data.last_7_days)
    cons.print(attempts_table)

    if stats_data.last_practiced_at is not None:
        cons.print(
            f"Last practiced: {stats_data.last_practiced_at:%Y-%m-%d %H:%M} UTC"
        )


@app.command()
def stats(
    deck: str = typer.Argument(..., help="Deck id or name."),  # noqa: B008
    db: Optional[Path] = _db_option,
    user: Optional[str] = _user_option,
):
    """Display practice statistics for a deck."""
    db_path = _resolve_db_path(db)
    try:
        with PracticeDatabase(db_path=db_path, read_only=True) as db_inst:
            user_id = _resolve_user_id(db_inst, user)
            deck_obj = _resolve_deck(db_inst, user_id, deck)
            stats_data = get_deck_stats(db_inst, user_id, deck_obj.id)
            _display_deck_stats(console, deck_obj, stats_data)
    except PracticeError as e:
        _fail("Error:", e)
    except DatabaseError as e:
        _fail("A database error occurred:", e)


# ---------------------------------------------------------------------------
# Restore command
# ---------------------------------------------------------------------------


@app.command()
def restore(
    db: Optional[Path] = _db_option,
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Bypass confirmation prompt."
    ),
):
    """Restores the database from the most recent backup."""
    db_path = _resolve_db_path(db)
    console.print(
        "[bold yellow]Attempting to restore database "
        "from backup...[/bold yellow]"
    )

    latest_backup = find_latest_backup(db_path)

    if not latest_backup:
        console.print("[bold red]Error: No backup files found.[/bold red]")
        raise typer.Exit(code=1)

    console.print(f"Found latest backup: [cyan]{latest_backup.name}[/cyan]")

    if not yes:
        confirmed = typer.confirm(
            "Are you sure you want to overwrite the current "
            "database with this backup?"
        )
        if not confirmed:
            console.print("Restore operation cancelled.")
            raise typer.Exit()

    try:
        shutil.copy2(latest_backup, db_path)
    except OSError as e:
        _fail("An error occurred during restore:", e)
    console.print(
        "[bold green]Database successfully restored "
        f"from {latest_backup.name}[/bold green]"
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """
    Run the CLI application.

    If an unexpected exception occurs, print a bold red error message to the console and exit the process with status code 1.
    """
    try:
        app()
    except Exception as e:
        console.print(f"[bold red]UNEXPECTED ERROR: {e}[/bold red]")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
