"""
lessoncore: command-line interface.

Commands:
- lessoncore recommend   - Show the next best lessons
- lessoncore quiz        - Take a lesson's mastery quiz
- lessoncore complete    - Record a lesson finished outside a quiz
- lessoncore prefer      - Set the preferred lesson difficulty
- lessoncore stats       - Show skills and progress
- lessoncore reset       - Clear a learner's state
"""
from __future__ import annotations

import asyncio
import sys
import time
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from config import Settings, get_settings
from lessoncore.adaptive.models import DifficultyLevel, SkillDomain
from lessoncore.adaptive.skills import average_skill, strongest_domain, weakest_domain
from lessoncore.catalog.loader import Catalog, load_catalog
from lessoncore.delivery.progress_sync import DebouncedProgressSync, ProgressSyncClient
from lessoncore.delivery.telemetry import JsonlTelemetrySink
from lessoncore.exceptions import LessonCoreError
from lessoncore.learning.learning_loop import LearningLoop
from lessoncore.quiz.mastery_engine import progress
from lessoncore.quiz.models import QuizCompletion, QuizState
from lessoncore.store.kv import SQLiteKeyValueStore
from lessoncore.store.repository import LearnerRepository

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="lessoncore",
    help="Adaptive lesson recommendations and mastery quizzes",
    no_args_is_help=True,
)
console = Console()

TIER_LABELS = {1: "[green]easy[/]", 2: "[yellow]medium[/]", 3: "[red]hard[/]"}

UserOption = Annotated[str | None, typer.Option("--user", "-u", help="Learner id")]
DbOption = Annotated[Path | None, typer.Option("--db", help="State database file")]
CatalogOption = Annotated[Path | None, typer.Option("--catalog", "-c", help="Catalog JSON file")]
StreakOption = Annotated[int, typer.Option("--streak", "-s", help="Current daily streak")]


def build_loop(
    settings: Settings,
    db_path: Path | None = None,
    catalog_path: Path | None = None,
) -> LearningLoop:
    """Wire a LearningLoop from settings and command-line overrides."""
    catalog: Catalog = load_catalog(catalog_path or settings.catalog_path)
    store = SQLiteKeyValueStore(db_path or settings.state_db_path)

    telemetry = JsonlTelemetrySink(settings.telemetry_dir) if settings.telemetry_enabled else None

    progress_sync = None
    if settings.has_sync_configured():
        client = ProgressSyncClient(
            base_url=settings.sync_base_url,
            api_key=settings.sync_api_key or None,
            endpoint=settings.sync_endpoint,
            timeout_seconds=settings.sync_timeout_seconds,
        )
        progress_sync = DebouncedProgressSync(client, settings.sync_debounce_seconds)

    return LearningLoop(
        repository=LearnerRepository(store),
        catalog=catalog,
        telemetry=telemetry,
        progress_sync=progress_sync,
    )


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except LessonCoreError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(code=1) from e


# =============================================================================
# Recommendation Commands
# =============================================================================


@app.command()
def recommend(
    user: UserOption = None,
    count: Annotated[
        int | None, typer.Option("--count", "-n", help="Number of lessons to show")
    ] = None,
    streak: StreakOption = 0,
    db: DbOption = None,
    catalog: CatalogOption = None,
) -> None:
    """
    Show the lessons that best fit the learner right now.

    Examples:
        lessoncore recommend
        lessoncore recommend -n 5 --streak 4
    """
    settings = get_settings()
    _run(_recommend(settings, user or settings.default_user_id, count or settings.recommendation_count, streak, db, catalog))


async def _recommend(
    settings: Settings,
    user_id: str,
    count: int,
    streak: int,
    db: Path | None,
    catalog_path: Path | None,
) -> None:
    loop = build_loop(settings, db, catalog_path)
    try:
        recs = await loop.recommend(user_id, count=count, streak=streak)
    finally:
        await loop.close()

    if not recs:
        console.print("[yellow]Every lesson is complete. Nothing left to recommend![/]")
        return

    table = Table(title=f"Recommended for {user_id}")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Lesson", style="cyan")
    table.add_column("Course")
    table.add_column("Score", justify="right")
    table.add_column("Why")

    for rank, rec in enumerate(recs, start=1):
        lesson = loop.catalog.get_lesson(rec.lesson_id)
        title = lesson.title if lesson and lesson.title else rec.lesson_id
        table.add_row(str(rank), title, rec.course_id, f"{rec.score:.2f}", rec.reason)

    console.print(table)


# =============================================================================
# Quiz Commands
# =============================================================================


def _show_question(state: QuizState) -> None:
    item = state.current
    if item is None:
        return
    label = TIER_LABELS.get(item.tier, str(item.tier))
    subtitle = f"{label} | mastery {progress(state):.0%}"
    if item.is_penalty:
        subtitle += " | [magenta]practice[/]"
    console.print(
        Panel(
            item.question.text or item.question.id,
            title=f"Question {state.current_index + 1}/{len(state.queue)}",
            subtitle=subtitle,
            border_style="cyan",
        )
    )


def _show_completion(completion: QuizCompletion) -> None:
    status = "[bold green]All concepts mastered[/]" if completion.all_mastered else "[yellow]Some concepts still need work[/]"
    console.print(
        Panel(
            f"{status}\n"
            f"Score: {completion.score}%  ({completion.total_correct}/{completion.total_attempts})\n"
            f"XP earned: +{completion.xp_earned}\n"
            f"Hearts earned: +{completion.hearts_earned}  lost: {completion.hearts_lost}",
            title="Quiz Complete",
            border_style="green" if completion.passed else "yellow",
        )
    )


@app.command()
def quiz(
    lesson_id: Annotated[str, typer.Argument(help="Lesson whose quiz to take")],
    user: UserOption = None,
    streak: StreakOption = 0,
    db: DbOption = None,
    catalog: CatalogOption = None,
) -> None:
    """
    Take a lesson's mastery quiz.

    Each question is shown, then you grade your own answer. Missing a hard
    question queues easier practice questions for that concept.
    """
    settings = get_settings()
    _run(_quiz(settings, user or settings.default_user_id, lesson_id, streak, db, catalog))


async def _quiz(
    settings: Settings,
    user_id: str,
    lesson_id: str,
    streak: int,
    db: Path | None,
    catalog_path: Path | None,
) -> None:
    loop = build_loop(settings, db, catalog_path)
    try:
        state = await loop.start_quiz(user_id, lesson_id)
        if not state.first_attempt:
            console.print("[dim]Replay: no XP or hearts this time[/]")

        completion = None
        if state.completed:
            console.print("[yellow]This quiz has no questions.[/]")
            return

        while completion is None:
            _show_question(state)
            started = time.monotonic()
            console.input("[dim]Press Enter to reveal the answer[/]")
            item = state.current
            if item is not None and item.question.explanation:
                console.print(f"[italic]{item.question.explanation}[/]")
            correct = Confirm.ask("Did you get it right?")
            response_ms = int((time.monotonic() - started) * 1000)

            state = await loop.answer(user_id, correct, response_ms)
            console.print("[bold green]Correct![/]" if correct else "[bold red]Not quite.[/]")
            state, completion = await loop.continue_quiz(user_id, streak=streak)
            await loop.poll_sync()

        _show_completion(completion)
    finally:
        await loop.close()


@app.command()
def complete(
    lesson_id: Annotated[str, typer.Argument(help="Lesson that was finished")],
    accuracy: Annotated[
        float, typer.Option("--accuracy", "-a", min=0.0, max=1.0, help="Fraction answered correctly")
    ],
    minutes: Annotated[
        float, typer.Option("--minutes", "-m", min=0.0, help="Time spent in minutes")
    ],
    abandoned: Annotated[
        bool, typer.Option("--abandoned", help="The lesson was not finished")
    ] = False,
    rating: Annotated[
        int | None, typer.Option("--rating", "-r", min=1, max=5, help="Learner rating 1-5")
    ] = None,
    user: UserOption = None,
    streak: StreakOption = 0,
    db: DbOption = None,
    catalog: CatalogOption = None,
) -> None:
    """Record a lesson result so future recommendations learn from it."""
    settings = get_settings()
    _run(
        _complete(
            settings,
            user or settings.default_user_id,
            lesson_id,
            accuracy,
            minutes * 60,
            not abandoned,
            rating,
            streak,
            db,
            catalog,
        )
    )


async def _complete(
    settings: Settings,
    user_id: str,
    lesson_id: str,
    accuracy: float,
    seconds: float,
    completed: bool,
    rating: int | None,
    streak: int,
    db: Path | None,
    catalog_path: Path | None,
) -> None:
    loop = build_loop(settings, db, catalog_path)
    try:
        attempt = await loop.record_lesson_attempt(
            user_id,
            lesson_id,
            accuracy=accuracy,
            time_spent_seconds=seconds,
            completed=completed,
            user_rating=rating,
            streak=streak,
        )
    finally:
        await loop.close()

    if attempt is None:
        console.print(f"[bold red]Unknown lesson:[/] {lesson_id}")
        raise typer.Exit(code=1)
    console.print(f"[green]Recorded {lesson_id}[/] (accuracy {accuracy:.0%}, +{attempt.xp_earned} XP)")


# =============================================================================
# State Commands
# =============================================================================


@app.command()
def prefer(
    difficulty: Annotated[DifficultyLevel, typer.Argument(help="Preferred lesson difficulty")],
    user: UserOption = None,
    db: DbOption = None,
    catalog: CatalogOption = None,
) -> None:
    """
    Set the difficulty you would like lessons to lean towards.

    Examples:
        lessoncore prefer intermediate
    """
    settings = get_settings()
    _run(_prefer(settings, user or settings.default_user_id, difficulty, db, catalog))


async def _prefer(
    settings: Settings,
    user_id: str,
    difficulty: DifficultyLevel,
    db: Path | None,
    catalog_path: Path | None,
) -> None:
    loop = build_loop(settings, db, catalog_path)
    try:
        await loop.set_preferred_difficulty(user_id, difficulty)
    finally:
        await loop.close()
    console.print(f"[green]Preferred difficulty for {user_id}:[/] {difficulty.value}")


@app.command()
def stats(
    user: UserOption = None,
    db: DbOption = None,
    catalog: CatalogOption = None,
) -> None:
    """Show skill levels and progress."""
    settings = get_settings()
    _run(_stats(settings, user or settings.default_user_id, db, catalog))


async def _stats(
    settings: Settings,
    user_id: str,
    db: Path | None,
    catalog_path: Path | None,
) -> None:
    loop = build_loop(settings, db, catalog_path)
    try:
        snapshot = await loop.load(user_id)
        ledger = await loop.repository.get_reward_ledger(user_id)
        accuracy = await loop.repository.get_domain_accuracy(user_id)
        pending = await loop.repository.pending_remediation(user_id)
        modules = await loop.repository.get_module_progress(user_id)
    finally:
        await loop.close()

    skills = snapshot.skills
    table = Table(title=f"Skills for {user_id}")
    table.add_column("Domain", style="cyan")
    table.add_column("Level", justify="right")
    table.add_column("Quiz answers", justify="right")
    for domain in SkillDomain:
        tally = accuracy.get(domain.value)
        answers = f"{tally.correct}/{tally.total} ({tally.percentage}%)" if tally else "-"
        table.add_row(domain.value, f"{skills.get(domain):.1f}", answers)
    console.print(table)

    total_lessons = len(loop.catalog)
    console.print(
        Panel(
            f"Average skill: {average_skill(skills):.1f}\n"
            f"Strongest: {strongest_domain(skills).value}  Weakest: {weakest_domain(skills).value}\n"
            f"Lessons completed: {len(snapshot.completed_lessons)}/{total_lessons}\n"
            f"Attempts logged: {len(snapshot.attempts)}\n"
            f"Quiz XP: {sum(int(e.get('xp', 0)) for e in ledger.values())}\n"
            f"Quizzes mastered: {sum(1 for m in modules.values() if m.mastery_achieved)}/{len(modules)}\n"
            f"Concepts to revisit: {len(pending)}\n"
            f"Preferred difficulty: {snapshot.preferences.preferred_difficulty.value}\n"
            f"Bandit pulls: {snapshot.bandit_state.total_pulls}",
            title="Progress",
            border_style="cyan",
        )
    )


@app.command()
def reset(
    user: UserOption = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
    db: DbOption = None,
) -> None:
    """Clear all stored state for a learner."""
    settings = get_settings()
    user_id = user or settings.default_user_id
    if not yes and not Confirm.ask(f"Delete all progress for {user_id}?"):
        console.print("[dim]Cancelled[/]")
        raise typer.Exit()

    store = SQLiteKeyValueStore(db or settings.state_db_path)
    try:
        asyncio.run(LearnerRepository(store).reset(user_id))
    finally:
        store.close()
    console.print(f"[green]Reset state for {user_id}[/]")


# =============================================================================
# Entry Point
# =============================================================================


def configure_logging(settings: Settings) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<level>{message}</level>",
    )
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="10 MB")


def main() -> None:
    """CLI entry point."""
    configure_logging(get_settings())
    app()


if __name__ == "__main__":
    main()
