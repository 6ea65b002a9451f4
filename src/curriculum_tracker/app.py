"""Interactive CLI application."""
import os
from datetime import date
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.prompt import IntPrompt, Prompt
from rich.table import Table

from curriculum_tracker.analytics import overview, progress_series
from curriculum_tracker.catalog import get_lesson, get_phase
from curriculum_tracker.config import get_preferences, save_preferences
from curriculum_tracker.db import DEFAULT_DB_PATH, init_db
from curriculum_tracker.errors import TrackerError
from curriculum_tracker.events import ConflictIgnored, EventBus, LessonCompleted, PlanUpdated
from curriculum_tracker.importer import import_file
from curriculum_tracker.logging_config import setup_logging
from curriculum_tracker.models import COMPLETED, IN_PROGRESS, REDO, StudySession
from curriculum_tracker.planner import (
    add_session, completed_hours, delete_session, get_daily_plan, planned_hours,
    toggle_session_completion, update_session,
)
from curriculum_tracker.progress import (
    add_time_spent, earned_milestones, get_record, is_phase_unlocked, mark_for_redo,
    phase_statuses, record_activity_toggle, set_notes,
)
from curriculum_tracker.seed import is_seeded, seed_all

console = Console()

DEFAULT_LEARNER = os.environ.get("CURRICULUM_TRACKER_LEARNER", "local")
EXIT_WORDS = ("q", "menu")


class SessionExitRequested(Exception):
    """User asked to leave the current session and return to the menu."""


def session_prompt(prompt: str, **kwargs) -> str:
    answer = Prompt.ask(prompt, **kwargs)
    if answer.strip().lower() in EXIT_WORDS:
        raise SessionExitRequested()
    return answer


def session_int_prompt(prompt: str, **kwargs) -> int:
    if "choices" in kwargs:
        kwargs["choices"] = list(kwargs["choices"]) + list(EXIT_WORDS)
    while True:
        answer = session_prompt(prompt, **kwargs).strip()
        if answer.isdigit():
            return int(answer)
        console.print("[red]Enter a whole number.[/red]")


def make_bus() -> EventBus:
    """Event bus whose subscribers print notices to the console."""
    bus = EventBus()
    bus.subscribe(LessonCompleted, lambda e: console.print(
        f"[green]Lesson complete![/green] {e.phase_id} day {e.day} hour {e.hour}"
    ))
    bus.subscribe(PlanUpdated, lambda e: console.print(
        f"[dim]Plan for {e.plan_date} saved ({e.session_count} sessions)[/dim]"
    ))
    bus.subscribe(ConflictIgnored, lambda e: console.print(
        f"[yellow]A newer change to {e.key} already exists; this edit was skipped.[/yellow]"
    ))
    return bus


def show_welcome():
    console.print(Panel(
        "[bold]Curriculum Tracker[/bold]\n[dim]Phases, lessons and study plans[/dim]",
        title="Welcome", border_style="blue",
    ))


def show_menu():
    console.print("\n[bold]Commands:[/bold]")
    commands = [
        ("curriculum", "Phases and unlock status"),
        ("lesson", "Work through a lesson"),
        ("plan", "Today's study plan"),
        ("dashboard", "Progress analytics"),
        ("goal", "Set daily goal hours"),
        ("import", "Add curriculum from a file"),
        ("quit", "Exit"),
    ]
    for cmd, desc in commands:
        console.print(f"  [cyan]{cmd:<14}[/cyan] {desc}")


def status_marker(status: str) -> str:
    if status == COMPLETED:
        return "[green]done[/green]"
    if status == IN_PROGRESS:
        return "[yellow]in progress[/yellow]"
    if status == REDO:
        return "[magenta]redo[/magenta]"
    return "[dim]not started[/dim]"


def cmd_curriculum(db_path: str, learner_id: str):
    table = Table(title="Curriculum")
    table.add_column("#", justify="right")
    table.add_column("Phase", style="cyan")
    table.add_column("Lessons", justify="right")
    table.add_column("Progress", justify="right")
    table.add_column("Status")
    for ps in phase_statuses(db_path, learner_id):
        if ps.is_complete:
            state = "[green]Complete[/green]"
        elif ps.is_unlocked:
            state = "[cyan]Active[/cyan]"
        else:
            state = "[dim]Locked[/dim]"
        table.add_row(
            str(ps.phase_order), f"{ps.title} [dim]({ps.phase_id})[/dim]",
            f"{ps.completed}/{ps.total}", f"{ps.fraction * 100:.0f}%", state,
        )
    console.print(table)


def run_lesson_session(db_path: str, learner_id: str, phase_id: str, day: int, hour: int, bus: EventBus) -> None:
    """Toggle activities and log time until the learner types 'q'."""
    lesson = get_lesson(db_path, phase_id, day, hour)
    while True:
        record = get_record(db_path, learner_id, phase_id, day, hour)
        console.print(f"\n[bold]{lesson.title}[/bold] ({status_marker(record.status)}, {record.time_spent} min logged)")
        for i, activity in enumerate(lesson.activities, 1):
            mark = "[green]x[/green]" if activity.title in record.completed_activities else " "
            optional = " [dim](optional)[/dim]" if activity.is_optional else ""
            console.print(f"  [{mark}] [cyan]{i}[/cyan]) {activity.title} - {activity.activity_type}, {activity.duration} min{optional}")
        choice = session_prompt("Activity number, t=log time, n=notes, r=redo, q=back").strip().lower()
        if choice == "t":
            minutes = session_int_prompt("Minutes spent")
            add_time_spent(db_path, learner_id, phase_id, day, hour, minutes)
        elif choice == "n":
            set_notes(db_path, learner_id, phase_id, day, hour, session_prompt("Notes", default=record.notes))
        elif choice == "r":
            mark_for_redo(db_path, learner_id, phase_id, day, hour, bus=bus)
        elif choice.isdigit() and 1 <= int(choice) <= len(lesson.activities):
            title = lesson.activities[int(choice) - 1].title
            record_activity_toggle(db_path, learner_id, phase_id, day, hour, title, bus=bus)
        else:
            console.print("[red]Unknown choice.[/red]")


def cmd_lesson(db_path: str, learner_id: str, bus: EventBus):
    statuses = phase_statuses(db_path, learner_id)
    phase_id = Prompt.ask("Phase", choices=[s.phase_id for s in statuses])
    if not is_phase_unlocked(db_path, learner_id, phase_id):
        console.print("[yellow]This phase is locked until earlier phases are complete.[/yellow]")
        return
    phase = get_phase(db_path, phase_id)
    table = Table(title=phase.title)
    table.add_column("Day", justify="right")
    table.add_column("Hour", justify="right")
    table.add_column("Lesson")
    table.add_column("Status")
    for lesson in phase.lessons:
        record = get_record(db_path, learner_id, phase_id, lesson.day, lesson.hour)
        table.add_row(str(lesson.day), str(lesson.hour), lesson.title, status_marker(record.status))
    console.print(table)
    day = IntPrompt.ask("Day")
    hour = IntPrompt.ask("Hour", default=1)
    try:
        run_lesson_session(db_path, learner_id, phase_id, day, hour, bus)
    except SessionExitRequested:
        pass
    for milestone in earned_milestones(db_path, learner_id, phase_id):
        console.print(f"[bold yellow]Milestone:[/bold yellow] {milestone.title} ({milestone.badge})")


def show_plan(db_path: str, learner_id: str, plan_date: date):
    plan = get_daily_plan(db_path, learner_id, plan_date)
    table = Table(title=f"Study Plan {plan.plan_date}")
    table.add_column("#", justify="right")
    table.add_column("Time")
    table.add_column("Activity", style="cyan")
    table.add_column("Done")
    table.add_column("Logged", justify="right")
    for i, s in enumerate(plan.sessions, 1):
        table.add_row(
            str(i), f"{s.start_time}-{s.end_time}", s.activity,
            "[green]yes[/green]" if s.completed else "", f"{s.time_spent} min",
        )
    console.print(table)
    console.print(f"  Planned: [bold]{planned_hours(plan):.1f}h[/bold]  |  Completed: [bold]{completed_hours(plan):.1f}h[/bold]")
    return plan


def cmd_plan(db_path: str, learner_id: str, bus: EventBus):
    today = date.today()
    while True:
        plan = show_plan(db_path, learner_id, today)
        action = Prompt.ask("a=add, c=toggle done, t=log time, d=delete, q=back",
                            choices=["a", "c", "t", "d", "q"], default="q")
        if action == "q":
            return
        if action == "a":
            session = StudySession(
                start_time=Prompt.ask("Start (HH:MM)"),
                end_time=Prompt.ask("End (HH:MM)"),
                activity=Prompt.ask("Activity"),
                description=Prompt.ask("Description"),
            )
            add_session(db_path, learner_id, today, session, bus=bus)
            continue
        if not plan.sessions:
            console.print("[yellow]No sessions yet.[/yellow]")
            continue
        index = IntPrompt.ask("Session #", choices=[str(i) for i in range(1, len(plan.sessions) + 1)]) - 1
        if action == "c":
            toggle_session_completion(db_path, learner_id, today, index, bus=bus)
        elif action == "t":
            minutes = IntPrompt.ask("Minutes spent")
            update_session(db_path, learner_id, today, index, {"time_spent": minutes}, bus=bus)
        elif action == "d":
            delete_session(db_path, learner_id, today, index, bus=bus)


def cmd_dashboard(db_path: str, learner_id: str):
    snap = overview(db_path, learner_id)
    console.print(Panel(
        f"[bold]{snap.overall_progress}%[/bold] overall  |  current phase: [cyan]{snap.current_phase or 'N/A'}[/cyan]",
        title="Progress Dashboard", border_style="blue",
    ))
    bar_filled = int(min(snap.weekly_goal_progress, 100) / 5)
    bar = f"[green]{'█' * bar_filled}{'░' * (20 - bar_filled)}[/green]"
    console.print(f"\n  Weekly goal: {snap.weekly_hours} / {snap.weekly_goal_hours:g}h {bar}")
    console.print(f"\n  Total hours: [bold]{snap.total_hours}[/bold]  |  "
                  f"Lessons: [bold]{snap.lessons_completed}/{snap.total_lessons}[/bold]  |  "
                  f"Streak: [bold]{snap.streak}[/bold] days  |  "
                  f"Daily avg: [bold]{snap.daily_average}h[/bold]")

    table = Table(title="Last 7 Days")
    table.add_column("Date")
    table.add_column("Hours", justify="right")
    table.add_column("Lessons", justify="right")
    for point in progress_series(db_path, learner_id, 7):
        table.add_row(point.date, f"{point.hours:.1f}", str(point.lessons))
    console.print(table)


def cmd_goal(db_path: str, learner_id: str):
    current = get_preferences(db_path, learner_id).daily_goal_hours
    hours = IntPrompt.ask("Daily goal (hours)", default=int(current))
    prefs = save_preferences(db_path, learner_id, {"daily_goal_hours": hours})
    console.print(f"[green]Weekly goal is now {prefs.daily_goal_hours * 7:g}h.[/green]")


def cmd_import(db_path: str):
    file_path = Prompt.ask("File path")
    if not Path(file_path).exists():
        console.print(f"[red]File not found: {file_path}[/red]")
        return
    result = import_file(db_path, file_path)
    console.print(f"[green]Imported {result['filename']}: {result['phases']} phase(s), {result['lessons']} lesson(s)[/green]")


def main():
    setup_logging(os.environ.get("CURRICULUM_TRACKER_LOG_LEVEL", "WARNING"))
    db_path = DEFAULT_DB_PATH
    learner_id = DEFAULT_LEARNER
    init_db(db_path)
    first_run = not is_seeded(db_path)
    if first_run:
        console.print("[dim]Setting up for first use...[/dim]")
    seed_all(db_path)
    if first_run:
        console.print("[green]Ready![/green]\n")

    show_welcome()
    bus = make_bus()

    while True:
        show_menu()
        choice = Prompt.ask("\n[bold]>[/bold]", default="dashboard").strip().lower()
        try:
            if choice == "curriculum":
                cmd_curriculum(db_path, learner_id)
            elif choice == "lesson":
                cmd_lesson(db_path, learner_id, bus)
            elif choice == "plan":
                cmd_plan(db_path, learner_id, bus)
            elif choice == "dashboard":
                cmd_dashboard(db_path, learner_id)
            elif choice == "goal":
                cmd_goal(db_path, learner_id)
            elif choice == "import":
                cmd_import(db_path)
            elif choice in ("quit", "exit", "q"):
                console.print("[dim]See you next session![/dim]")
                break
            else:
                console.print("[red]Unknown command. Try again.[/red]")
        except KeyboardInterrupt:
            console.print("\n[dim]Use 'quit' to exit.[/dim]")
        except TrackerError as e:
            console.print(f"[red]Error: {e}[/red]")


if __name__ == "__main__":
    main()
