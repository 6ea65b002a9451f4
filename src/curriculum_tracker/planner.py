"""Daily study plans: time-boxed sessions a learner schedules for a date."""
import logging
from dataclasses import fields, replace
from datetime import date, datetime
from typing import Optional

from curriculum_tracker.db import get_connection, parse_timestamp, transaction
from curriculum_tracker.errors import ValidationError
from curriculum_tracker.events import ConflictIgnored, EventBus, PlanUpdated, emit
from curriculum_tracker.models import DailyPlan, StudySession

logger = logging.getLogger(__name__)

SESSION_FIELDS = {f.name for f in fields(StudySession)}


def _date_key(plan_date) -> str:
    if isinstance(plan_date, date):
        return plan_date.isoformat()
    try:
        return date.fromisoformat(plan_date).isoformat()
    except (TypeError, ValueError):
        raise ValidationError(f"Malformed plan date {plan_date!r}") from None


def to_minutes(value: str) -> int:
    """Minutes since midnight for an ``HH:MM`` time of day."""
    try:
        parsed = datetime.strptime(value, "%H:%M")
    except (TypeError, ValueError):
        raise ValidationError(f"Malformed time {value!r}, expected HH:MM") from None
    return parsed.hour * 60 + parsed.minute


def validate_session(session: StudySession) -> None:
    if to_minutes(session.end_time) <= to_minutes(session.start_time):
        raise ValidationError(f"Session must end after it starts ({session.start_time}-{session.end_time})")
    if not isinstance(session.activity, str) or not session.activity.strip():
        raise ValidationError("Session activity is required")
    if not isinstance(session.description, str) or not session.description.strip():
        raise ValidationError("Session description is required")
    if isinstance(session.time_spent, bool) or not isinstance(session.time_spent, int) or session.time_spent < 0:
        raise ValidationError(f"time_spent must be a non-negative whole number, got {session.time_spent!r}")
    if not isinstance(session.completed, bool):
        raise ValidationError("completed must be true or false")


def _check_index(plan: DailyPlan, index) -> None:
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(plan.sessions):
        raise ValidationError(f"No session at index {index!r} (plan has {len(plan.sessions)})")


def _check_total_hours(total_hours) -> None:
    if total_hours is None:
        return
    if isinstance(total_hours, bool) or not isinstance(total_hours, (int, float)) or not 0 <= total_hours <= 24:
        raise ValidationError(f"total_hours must be between 0 and 24, got {total_hours!r}")


def _load(conn, learner_id: str, key: str) -> DailyPlan:
    row = conn.execute(
        "SELECT * FROM daily_plans WHERE learner_id = ? AND plan_date = ?", (learner_id, key)
    ).fetchone()
    if not row:
        return DailyPlan(learner_id=learner_id, plan_date=key)
    sessions = conn.execute(
        "SELECT * FROM study_sessions WHERE plan_id = ? ORDER BY position", (row["id"],)
    ).fetchall()
    return DailyPlan(
        learner_id=learner_id,
        plan_date=key,
        sessions=[
            StudySession(
                start_time=s["start_time"],
                end_time=s["end_time"],
                activity=s["activity"],
                description=s["description"],
                resource_url=s["resource_url"],
                completed=bool(s["completed"]),
                time_spent=s["time_spent"],
                notes=s["notes"],
            )
            for s in sessions
        ],
        total_hours=row["total_hours"],
        updated_at=row["updated_at"],
    )


def _write(conn, plan: DailyPlan) -> None:
    """Store the plan, replacing its whole session list."""
    conn.execute(
        """INSERT INTO daily_plans (learner_id, plan_date, total_hours, updated_at) VALUES (?, ?, ?, ?)
        ON CONFLICT(learner_id, plan_date) DO UPDATE SET
            total_hours=excluded.total_hours, updated_at=excluded.updated_at""",
        (plan.learner_id, plan.plan_date, plan.total_hours, plan.updated_at),
    )
    plan_id = conn.execute(
        "SELECT id FROM daily_plans WHERE learner_id = ? AND plan_date = ?",
        (plan.learner_id, plan.plan_date),
    ).fetchone()["id"]
    conn.execute("DELETE FROM study_sessions WHERE plan_id = ?", (plan_id,))
    for position, s in enumerate(plan.sessions):
        conn.execute(
            """INSERT INTO study_sessions
            (plan_id, position, start_time, end_time, activity, description, resource_url,
             completed, time_spent, notes)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (plan_id, position, s.start_time, s.end_time, s.activity, s.description,
             s.resource_url, int(s.completed), s.time_spent, s.notes),
        )


def _mutate(db_path, learner_id, plan_date, action, change, bus, now) -> DailyPlan:
    """Load the plan, apply ``change`` to it and write it back in one transaction."""
    key = _date_key(plan_date)
    now = now or datetime.now()
    with transaction(db_path) as conn:
        plan = _load(conn, learner_id, key)
        change(plan)
        plan.updated_at = now.isoformat()
        _write(conn, plan)
    logger.info("%s plan %s: %s (%d sessions)", learner_id, key, action, len(plan.sessions))
    emit(bus, PlanUpdated(learner_id, key, action, len(plan.sessions)))
    return plan


def get_daily_plan(db_path: str, learner_id: str, plan_date) -> DailyPlan:
    """The learner's plan for the date; an empty plan if none was saved."""
    conn = get_connection(db_path)
    plan = _load(conn, learner_id, _date_key(plan_date))
    conn.close()
    return plan


def list_plans(db_path: str, learner_id: str, start, end) -> list[DailyPlan]:
    """Stored plans dated between ``start`` and ``end`` inclusive, oldest first."""
    first, last = _date_key(start), _date_key(end)
    conn = get_connection(db_path)
    keys = [
        r["plan_date"]
        for r in conn.execute(
            """SELECT plan_date FROM daily_plans
            WHERE learner_id = ? AND plan_date BETWEEN ? AND ? ORDER BY plan_date""",
            (learner_id, first, last),
        ).fetchall()
    ]
    plans = [_load(conn, learner_id, k) for k in keys]
    conn.close()
    return plans


def add_session(
    db_path: str, learner_id: str, plan_date, session: StudySession,
    bus: Optional[EventBus] = None, now: Optional[datetime] = None,
) -> DailyPlan:
    validate_session(session)
    return _mutate(db_path, learner_id, plan_date, "add",
                   lambda plan: plan.sessions.append(replace(session)), bus, now)


def update_session(
    db_path: str, learner_id: str, plan_date, index: int, patch: dict,
    bus: Optional[EventBus] = None, now: Optional[datetime] = None,
) -> DailyPlan:
    unknown = set(patch) - SESSION_FIELDS
    if unknown:
        raise ValidationError(f"Unknown session field(s): {', '.join(sorted(unknown))}")

    def change(plan):
        _check_index(plan, index)
        updated = replace(plan.sessions[index], **patch)
        validate_session(updated)
        plan.sessions[index] = updated

    return _mutate(db_path, learner_id, plan_date, "update", change, bus, now)


def delete_session(
    db_path: str, learner_id: str, plan_date, index: int,
    bus: Optional[EventBus] = None, now: Optional[datetime] = None,
) -> DailyPlan:
    def change(plan):
        _check_index(plan, index)
        del plan.sessions[index]

    return _mutate(db_path, learner_id, plan_date, "delete", change, bus, now)


def toggle_session_completion(
    db_path: str, learner_id: str, plan_date, index: int,
    bus: Optional[EventBus] = None, now: Optional[datetime] = None,
) -> DailyPlan:
    """Flip the completed flag; logged time is left alone."""
    def change(plan):
        _check_index(plan, index)
        session = plan.sessions[index]
        session.completed = not session.completed

    return _mutate(db_path, learner_id, plan_date, "toggle", change, bus, now)


def set_total_hours(
    db_path: str, learner_id: str, plan_date, total_hours: Optional[float],
    bus: Optional[EventBus] = None, now: Optional[datetime] = None,
) -> DailyPlan:
    _check_total_hours(total_hours)

    def change(plan):
        plan.total_hours = total_hours

    return _mutate(db_path, learner_id, plan_date, "target", change, bus, now)


def replace_sessions(
    db_path: str,
    learner_id: str,
    plan_date,
    sessions: list[StudySession],
    total_hours: Optional[float] = None,
    updated_at: Optional[str] = None,
    bus: Optional[EventBus] = None,
    now: Optional[datetime] = None,
) -> DailyPlan:
    """Replace the whole session list, as a client saving its plan does.

    When ``updated_at`` is older than the stored plan's timestamp the write
    is dropped, the stored plan is returned and ``ConflictIgnored`` is emitted.
    """
    for session in sessions:
        validate_session(session)
    _check_total_hours(total_hours)
    incoming = parse_timestamp(updated_at) if updated_at is not None else None
    key = _date_key(plan_date)
    now = now or datetime.now()
    with transaction(db_path) as conn:
        plan = _load(conn, learner_id, key)
        if incoming is not None and plan.updated_at and incoming < parse_timestamp(plan.updated_at):
            stale = True
        else:
            stale = False
            plan.sessions = [replace(s) for s in sessions]
            plan.total_hours = total_hours
            plan.updated_at = (incoming or now).isoformat()
            _write(conn, plan)
    if stale:
        logger.warning("Ignoring stale plan write for %s on %s", learner_id, key)
        emit(bus, ConflictIgnored(learner_id, f"plan/{key}", updated_at, plan.updated_at))
        return plan
    emit(bus, PlanUpdated(learner_id, key, "replace", len(plan.sessions)))
    return plan


def session_hours(session: StudySession) -> float:
    return (to_minutes(session.end_time) - to_minutes(session.start_time)) / 60


def planned_hours(plan: DailyPlan) -> float:
    return sum(session_hours(s) for s in plan.sessions)


def completed_hours(plan: DailyPlan) -> float:
    return sum(s.time_spent / 60 for s in plan.sessions if s.completed)


def completed_minutes(plan: DailyPlan) -> int:
    return sum(s.time_spent for s in plan.sessions if s.completed)
