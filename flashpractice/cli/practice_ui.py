"""
Command-line interface for practicing a deck.

Each keypress is turned into a practice event and sent to the engine; the
returned SessionView decides what is rendered next.
"""

import logging
from typing import Optional
from uuid import UUID

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from flashpractice.events import (
    AdvanceEvent,
    AnswerEvent,
    NavigateEvent,
    RevealBackEvent,
    SetOutcomeEvent,
    StartEvent,
)
from flashpractice.models import (
    CurrentCardView,
    FlashcardKind,
    SessionState,
    SessionView,
)
from flashpractice.practice_engine import PracticeEngine

logger = logging.getLogger(__name__)
console = Console()

QUIT = "q"
BACK = "b"
FLIP = "f"


def _front_panel(card: CurrentCardView) -> Panel:
    body = escape(card.front)
    if card.kind == FlashcardKind.Mcq and card.mcq_options:
        options = "\n".join(
            f"  {index + 1}. {escape(option)}"
            for index, option in enumerate(card.mcq_options)
        )
        body = f"{body}\n\n{options}"
    title = "Front (new)" if card.is_novel else "Front"
    return Panel(body, title=title, border_style="green")


def _back_panel(card: CurrentCardView) -> Panel:
    body = escape(card.back)
    if (
        card.kind == FlashcardKind.Mcq
        and card.mcq_options
        and card.mcq_correct_index is not None
        and card.mcq_correct_index < len(card.mcq_options)
    ):
        answer = card.mcq_options[card.mcq_correct_index]
        body = f"{body}\n\n[bold]Answer:[/bold] {card.mcq_correct_index + 1}. {escape(answer)}"
    if card.sketch_code:
        body = f"{body}\n\n[dim](has an inline sketch)[/dim]"
    return Panel(body, title="Back", border_style="blue")


def _outcome_text(card: CurrentCardView) -> str:
    if card.answered is None:
        return "[yellow]Not answered yet.[/yellow]"
    seconds = card.answered.time_ms / 1000
    if card.answered.correct:
        return f"[green]Correct[/green] in {seconds:.1f}s"
    return f"[red]Incorrect[/red] after {seconds:.1f}s"


def _ask(prompt: str) -> str:
    return console.input(prompt).strip().lower()


def _get_judgment() -> Optional[bool]:
    """Prompt until the learner says y or n; None means quit."""
    while True:
        answer = _ask("[bold]Did you get it right? (y/n, q to quit): [/bold]")
        if answer in ("y", "yes"):
            return True
        if answer in ("n", "no"):
            return False
        if answer == QUIT:
            return None
        console.print("[bold red]Please answer y or n.[/bold red]")


def _step(
    engine: PracticeEngine, user_id: UUID, view: SessionView
) -> Optional[SessionView]:
    """
    Render the current view, read one input and apply the matching event.

    Returns:
        The next view, or None when the learner quits.
    """
    session_id = view.id
    card = view.current

    if view.state == SessionState.Intro:
        console.rule(
            f"[bold]Card {view.progress_index + 1} of {view.queue_length}[/bold]"
        )
        return engine.apply_event(user_id, session_id, StartEvent())

    if card is None:
        # Nothing left at this position; let the engine close the session.
        return engine.apply_event(user_id, session_id, StartEvent())

    if view.state == SessionState.Front:
        console.print(_front_panel(card))
        choice = _ask("[italic]Press Enter to see the back (b: back, q: quit)...[/italic]")
        if choice == QUIT:
            return None
        if choice == BACK and view.view_index > 0:
            return engine.apply_event(
                user_id, session_id, NavigateEvent(to=view.view_index - 1)
            )
        return engine.apply_event(user_id, session_id, RevealBackEvent())

    if view.state == SessionState.Back:
        console.print(_back_panel(card))
        if card.answered is None:
            correct = _get_judgment()
            if correct is None:
                return None
            return engine.apply_event(user_id, session_id, AnswerEvent(correct=correct))
        console.print(_outcome_text(card))
        choice = _ask("[italic]Enter: next card, f: flip outcome, b: back, q: quit [/italic]")
        if choice == QUIT:
            return None
        if choice == FLIP:
            return engine.apply_event(
                user_id, session_id, AnswerEvent(correct=not card.answered.correct)
            )
        if choice == BACK and view.view_index > 0:
            return engine.apply_event(
                user_id, session_id, NavigateEvent(to=view.view_index - 1)
            )
        return engine.apply_event(user_id, session_id, AdvanceEvent())

    if view.state == SessionState.Past:
        console.rule(
            f"[dim]Reviewing card {view.view_index + 1} of {view.progress_index}[/dim]"
        )
        console.print(Panel(escape(card.front), title="Front", border_style="dim"))
        console.print(_back_panel(card))
        console.print(_outcome_text(card))
        choice = _ask("[italic]Enter: forward, f: flip outcome, b: back, q: quit [/italic]")
        if choice == QUIT:
            return None
        if choice == FLIP and card.answered is not None:
            return engine.apply_event(
                user_id, session_id, SetOutcomeEvent(correct=not card.answered.correct)
            )
        if choice == BACK:
            return engine.apply_event(
                user_id, session_id, NavigateEvent(to=max(0, view.view_index - 1))
            )
        return engine.apply_event(
            user_id, session_id, NavigateEvent(to=view.view_index + 1)
        )

    logger.warning(f"Unexpected session state {view.state.value}; stopping.")
    return None


def start_practice_flow(
    engine: PracticeEngine, user_id: UUID, session_id: UUID
) -> SessionView:
    """
    Manages the command-line practice session flow.

    Args:
        engine: The practice engine driving the session.
        user_id: The learner.
        session_id: A session returned by the lifecycle manager.

    Returns:
        The last view seen, so the caller can print a summary.
    """
    view = engine.get_view(user_id, session_id, reset_reveal_state=True)
    while view.state != SessionState.Done:
        next_view = _step(engine, user_id, view)
        if next_view is None:
            console.print(
                "[yellow]Leaving practice. Run the same command to resume today.[/yellow]"
            )
            return view
        view = next_view

    attempts = engine.get_attempts(user_id, session_id)
    correct = sum(1 for attempt in attempts.values() if attempt.answered_correct)
    console.print(
        f"[bold cyan]Session finished. {correct} of {len(attempts)} correct.[/bold cyan]"
    )
    return view
