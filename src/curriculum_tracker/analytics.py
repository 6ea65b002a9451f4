"""Analytics derived on demand from progress records and daily plans.

Nothing here is stored: every figure is recomputed from current state each
time it is asked for.
"""
from collections import defaultdict
from datetime import date, timedelta
from typing import Optional

from curriculum_tracker.config import get_preferences, load_analytics_config
from curriculum_tracker.db import get_connection
from curriculum_tracker.errors import ValidationError
from curriculum_tracker.models import AnalyticsSnapshot, ChallengeCounters, SeriesPoint
from curriculum_tracker.planner import completed_hours, list_plans
from curriculum_tracker.progress import phase_statuses

SERIES_PERIODS = (7, 30, 90)


def completion_rate(solved: int, attempted: int, precision: int = 1) -> float:
    """Solved / attempted as a percentage; 0 when nothing was attempted."""
    if not attempted:
        return 0.0
    return round(solved / attempted * 100, precision)


def overall_progress(lessons_completed: int, total_lessons: int, precision: int = 1) -> float:
    if not total_lessons:
        return 0.0
    return round(lessons_completed / total_lessons * 100, precision)


def daily_minutes(db_path: str, learner_id: str) -> dict[str, int]:
    """Logged minutes per ISO date: lesson time plus completed session time."""
    conn = get_connection(db_path)
    totals = defaultdict(int)
    for row in conn.execute(
        "SELECT logged_on, SUM(minutes) AS m FROM time_log WHERE learner_id = ? GROUP BY logged_on",
        (learner_id,),
    ).fetchall():
        totals[row["logged_on"]] += row["m"]
    for row in conn.execute(
        """SELECT dp.plan_date, SUM(s.time_spent) AS m
        FROM study_sessions s JOIN daily_plans dp ON s.plan_id = dp.id
        WHERE dp.learner_id = ? AND s.completed = 1
        GROUP BY dp.plan_date""",
        (learner_id,),
    ).fetchall():
        totals[row["plan_date"]] += row["m"]
    conn.close()
    return dict(totals)


def _lessons_completed_by_day(db_path: str, learner_id: str) -> dict[str, int]:
    conn = get_connection(db_path)
    rows = conn.execute(
        """SELECT substr(completed_at, 1, 10) AS d, COUNT(*) AS n FROM progress_records
        WHERE learner_id = ? AND status = 'completed' AND completed_at IS NOT NULL
        GROUP BY d""",
        (learner_id,),
    ).fetchall()
    conn.close()
    return {r["d"]: r["n"] for r in rows}


def _total_minutes(db_path: str, learner_id: str) -> int:
    conn = get_connection(db_path)
    lesson_minutes = conn.execute(
        "SELECT COALESCE(SUM(time_spent), 0) FROM progress_records WHERE learner_id = ?", (learner_id,)
    ).fetchone()[0]
    session_minutes = conn.execute(
        """SELECT COALESCE(SUM(s.time_spent), 0)
        FROM study_sessions s JOIN daily_plans dp ON s.plan_id = dp.id
        WHERE dp.learner_id = ? AND s.completed = 1""",
        (learner_id,),
    ).fetchone()[0]
    conn.close()
    return lesson_minutes + session_minutes


def weekly_hours(db_path: str, learner_id: str, today: Optional[date] = None) -> float:
    """Completed session hours over the last 7 calendar days, today included."""
    today = today or date.today()
    plans = list_plans(db_path, learner_id, today - timedelta(days=6), today)
    return sum(completed_hours(p) for p in plans)


def streak(db_path: str, learner_id: str, today: Optional[date] = None) -> int:
    """Consecutive active days ending today, or yesterday if nothing is logged today yet."""
    today = today or date.today()
    minutes = daily_minutes(db_path, learner_id)
    day = today
    if minutes.get(day.isoformat(), 0) <= 0:
        day -= timedelta(days=1)
    count = 0
    while minutes.get(day.isoformat(), 0) > 0:
        count += 1
        day -= timedelta(days=1)
    return count


def progress_series(
    db_path: str, learner_id: str, period: int = 30, today: Optional[date] = None,
) -> list[SeriesPoint]:
    """One point per day for the trailing ``period`` days, oldest first."""
    if period not in SERIES_PERIODS:
        raise ValidationError(f"Period must be one of {SERIES_PERIODS}, got {period!r}")
    today = today or date.today()
    precision = load_analytics_config(db_path, learner_id).hours_precision
    minutes = daily_minutes(db_path, learner_id)
    lessons = _lessons_completed_by_day(db_path, learner_id)
    points = []
    for offset in range(period - 1, -1, -1):
        key = (today - timedelta(days=offset)).isoformat()
        points.append(SeriesPoint(
            date=key,
            hours=round(minutes.get(key, 0) / 60, precision),
            lessons=lessons.get(key, 0),
        ))
    return points


def overview(
    db_path: str,
    learner_id: str,
    counters: Optional[ChallengeCounters] = None,
    today: Optional[date] = None,
) -> AnalyticsSnapshot:
    counters = counters or ChallengeCounters()
    if min(counters.challenges_solved, counters.challenges_attempted, counters.projects_submitted) < 0:
        raise ValidationError("Challenge and project counters must not be negative")
    today = today or date.today()
    config = load_analytics_config(db_path, learner_id)
    prefs = get_preferences(db_path, learner_id)

    statuses = phase_statuses(db_path, learner_id)
    lessons_completed = sum(s.completed for s in statuses)
    total_lessons = sum(s.total for s in statuses)
    current = next((s for s in statuses if not s.is_complete), statuses[-1] if statuses else None)

    week = weekly_hours(db_path, learner_id, today)
    goal = prefs.daily_goal_hours * 7
    goal_progress = min(week / goal * 100, 100.0) if goal else 0.0

    return AnalyticsSnapshot(
        total_hours=round(_total_minutes(db_path, learner_id) / 60, config.hours_precision),
        lessons_completed=lessons_completed,
        total_lessons=total_lessons,
        weekly_hours=round(week, config.hours_precision),
        challenges_solved=counters.challenges_solved,
        challenges_attempted=counters.challenges_attempted,
        projects_submitted=counters.projects_submitted,
        completion_rate=completion_rate(
            counters.challenges_solved, counters.challenges_attempted, config.rate_precision
        ),
        overall_progress=overall_progress(lessons_completed, total_lessons, config.rate_precision),
        current_phase=current.phase_id if current else None,
        weekly_goal_hours=goal,
        weekly_goal_progress=round(goal_progress, config.rate_precision),
        daily_average=round(week / 7, config.hours_precision),
        streak=streak(db_path, learner_id, today),
    )
