"""Per-learner lesson progress: activity completion, status and phase gating.

A lesson's status is always derived from its completed-activity set:

    empty set            -> not_started
    proper subset        -> in_progress
    every activity title -> completed

The only status that can be set directly is ``redo``. A record in ``redo``
stays there until its set is full again, at which point it re-completes.
Optional activities count toward the full set.
"""
import json
import logging
from datetime import datetime
from typing import Optional

from curriculum_tracker.catalog import get_lesson, get_phase
from curriculum_tracker.db import get_connection, parse_timestamp, transaction
from curriculum_tracker.errors import NotFound, ValidationError
from curriculum_tracker.events import (
    ActivityToggled, ConflictIgnored, EventBus, LessonCompleted, ProgressUpdated, emit,
)
from curriculum_tracker.models import (
    COMPLETED, IN_PROGRESS, NOT_STARTED, REDO, STATUSES, Milestone, PhaseStatus,
    ProgressRecord, ProgressUpdate,
)

logger = logging.getLogger(__name__)


def _record_from_row(row) -> ProgressRecord:
    return ProgressRecord(
        learner_id=row["learner_id"],
        phase_id=row["phase_slug"],
        day=row["day"],
        hour=row["hour"],
        status=row["status"],
        completed_activities=json.loads(row["completed_activities"]),
        time_spent=row["time_spent"],
        notes=row["notes"] or "",
        quiz_score=row["quiz_score"],
        completed_at=row["completed_at"],
        updated_at=row["updated_at"],
    )


def _load(conn, learner_id: str, phase_id: str, day: int, hour: int) -> ProgressRecord:
    row = conn.execute(
        """SELECT * FROM progress_records
        WHERE learner_id = ? AND phase_slug = ? AND day = ? AND hour = ?""",
        (learner_id, phase_id, day, hour),
    ).fetchone()
    if row:
        return _record_from_row(row)
    return ProgressRecord(learner_id=learner_id, phase_id=phase_id, day=day, hour=hour)


def _save(conn, record: ProgressRecord) -> None:
    conn.execute(
        """INSERT INTO progress_records
        (learner_id, phase_slug, day, hour, status, completed_activities, time_spent,
         notes, quiz_score, completed_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(learner_id, phase_slug, day, hour) DO UPDATE SET
            status=excluded.status,
            completed_activities=excluded.completed_activities,
            time_spent=excluded.time_spent,
            notes=excluded.notes,
            quiz_score=excluded.quiz_score,
            completed_at=excluded.completed_at,
            updated_at=excluded.updated_at""",
        (record.learner_id, record.phase_id, record.day, record.hour, record.status,
         json.dumps(record.completed_activities), record.time_spent, record.notes,
         record.quiz_score, record.completed_at, record.updated_at),
    )


def _log_time(conn, record: ProgressRecord, minutes: int, now: datetime) -> None:
    conn.execute(
        "INSERT INTO time_log (learner_id, phase_slug, day, hour, minutes, logged_on) VALUES (?, ?, ?, ?, ?, ?)",
        (record.learner_id, record.phase_id, record.day, record.hour, minutes, now.date().isoformat()),
    )


def _recompute(record: ProgressRecord, titles: list[str], now: datetime) -> None:
    """Derive status from the completed set, dropping titles the lesson no longer declares."""
    done = set(record.completed_activities)
    record.completed_activities = [t for t in record.completed_activities if t in titles]
    full = bool(titles) and done.issuperset(titles)
    if full:
        if record.status != COMPLETED:
            record.completed_at = now.isoformat()
        record.status = COMPLETED
    elif record.status == REDO:
        return
    elif not record.completed_activities:
        record.status = NOT_STARTED
        record.completed_at = None
    else:
        record.status = IN_PROGRESS
        record.completed_at = None


def _check_minutes(minutes) -> None:
    if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes < 0:
        raise ValidationError(f"Minutes must be a non-negative whole number, got {minutes!r}")


def _check_quiz_score(score) -> None:
    if isinstance(score, bool) or not isinstance(score, (int, float)) or not 0 <= score <= 100:
        raise ValidationError(f"Quiz score must be between 0 and 100, got {score!r}")


def get_progress(db_path: str, learner_id: str) -> list[ProgressRecord]:
    conn = get_connection(db_path)
    rows = conn.execute("SELECT * FROM progress_records WHERE learner_id = ?", (learner_id,)).fetchall()
    conn.close()
    return [_record_from_row(r) for r in rows]


def get_record(db_path: str, learner_id: str, phase_id: str, day: int, hour: int) -> ProgressRecord:
    """Stored record for the lesson, or an unsaved not_started record."""
    get_lesson(db_path, phase_id, day, hour)
    conn = get_connection(db_path)
    record = _load(conn, learner_id, phase_id, day, hour)
    conn.close()
    return record


def record_activity_toggle(
    db_path: str,
    learner_id: str,
    phase_id: str,
    day: int,
    hour: int,
    activity_title: str,
    bus: Optional[EventBus] = None,
    now: Optional[datetime] = None,
) -> ProgressRecord:
    """Flip one activity in or out of the completed set and recompute status."""
    lesson = get_lesson(db_path, phase_id, day, hour)
    if activity_title not in lesson.activity_titles:
        raise ValidationError(f"'{activity_title}' is not an activity of lesson '{lesson.title}'")
    now = now or datetime.now()
    with transaction(db_path) as conn:
        record = _load(conn, learner_id, phase_id, day, hour)
        previous = record.status
        if activity_title in record.completed_activities:
            record.completed_activities.remove(activity_title)
            done = False
        else:
            record.completed_activities.append(activity_title)
            done = True
        _recompute(record, lesson.activity_titles, now)
        record.updated_at = now.isoformat()
        _save(conn, record)
    if previous != record.status:
        logger.info("%s %s/%d/%d: %s -> %s", learner_id, phase_id, day, hour, previous, record.status)
    emit(bus, ActivityToggled(learner_id, phase_id, day, hour, activity_title, done, record.status))
    if record.status == COMPLETED and previous != COMPLETED:
        emit(bus, LessonCompleted(learner_id, phase_id, day, hour, record.completed_at))
    return record


def set_notes(
    db_path: str, learner_id: str, phase_id: str, day: int, hour: int, text: str,
    now: Optional[datetime] = None,
) -> ProgressRecord:
    if not isinstance(text, str):
        raise ValidationError("Notes must be text")
    get_lesson(db_path, phase_id, day, hour)
    now = now or datetime.now()
    with transaction(db_path) as conn:
        record = _load(conn, learner_id, phase_id, day, hour)
        record.notes = text
        record.updated_at = now.isoformat()
        _save(conn, record)
    return record


def add_time_spent(
    db_path: str, learner_id: str, phase_id: str, day: int, hour: int, minutes: int,
    now: Optional[datetime] = None,
) -> ProgressRecord:
    """Add minutes to the lesson's running total and log them against today's date."""
    _check_minutes(minutes)
    get_lesson(db_path, phase_id, day, hour)
    now = now or datetime.now()
    with transaction(db_path) as conn:
        record = _load(conn, learner_id, phase_id, day, hour)
        record.time_spent += minutes
        record.updated_at = now.isoformat()
        _save(conn, record)
        if minutes:
            _log_time(conn, record, minutes, now)
    return record


def set_quiz_score(
    db_path: str, learner_id: str, phase_id: str, day: int, hour: int, score: float,
    now: Optional[datetime] = None,
) -> ProgressRecord:
    _check_quiz_score(score)
    lesson = get_lesson(db_path, phase_id, day, hour)
    if lesson.quiz is None:
        raise ValidationError(f"Lesson '{lesson.title}' has no quiz")
    now = now or datetime.now()
    with transaction(db_path) as conn:
        record = _load(conn, learner_id, phase_id, day, hour)
        record.quiz_score = score
        record.updated_at = now.isoformat()
        _save(conn, record)
    return record


def mark_for_redo(
    db_path: str, learner_id: str, phase_id: str, day: int, hour: int,
    bus: Optional[EventBus] = None, now: Optional[datetime] = None,
) -> ProgressRecord:
    """Force ``redo`` while keeping the completed set."""
    get_lesson(db_path, phase_id, day, hour)
    now = now or datetime.now()
    with transaction(db_path) as conn:
        record = _load(conn, learner_id, phase_id, day, hour)
        record.status = REDO
        record.updated_at = now.isoformat()
        _save(conn, record)
    logger.info("%s %s/%d/%d marked for redo", learner_id, phase_id, day, hour)
    emit(bus, ProgressUpdated(learner_id, phase_id, day, hour, record.status))
    return record


def reevaluate(
    db_path: str, learner_id: str, phase_id: str, day: int, hour: int,
    bus: Optional[EventBus] = None, now: Optional[datetime] = None,
) -> ProgressRecord:
    """Re-run the status rule against the stored completed set."""
    lesson = get_lesson(db_path, phase_id, day, hour)
    now = now or datetime.now()
    with transaction(db_path) as conn:
        record = _load(conn, learner_id, phase_id, day, hour)
        previous = record.status
        _recompute(record, lesson.activity_titles, now)
        if record.status != previous or record.updated_at is None:
            record.updated_at = now.isoformat()
            _save(conn, record)
    if record.status == COMPLETED and previous != COMPLETED:
        emit(bus, LessonCompleted(learner_id, phase_id, day, hour, record.completed_at))
    return record


def _is_stale(incoming: Optional[datetime], stored: Optional[str]) -> bool:
    if incoming is None or not stored:
        return False
    return incoming < parse_timestamp(stored)


def apply_progress_update(
    db_path: str,
    learner_id: str,
    phase_id: str,
    day: int,
    hour: int,
    update: ProgressUpdate,
    bus: Optional[EventBus] = None,
    now: Optional[datetime] = None,
) -> ProgressRecord:
    """Apply a partial update from a client.

    Every field is validated before anything is written. A requested status
    other than ``redo`` is not trusted; status is recomputed whenever the
    completed set changes. An update stamped earlier than the stored record
    is dropped and a ``ConflictIgnored`` event is emitted instead.
    """
    lesson = get_lesson(db_path, phase_id, day, hour)
    titles = lesson.activity_titles
    unknown = [t for t in update.toggle_activities + (update.completed_activities or []) if t not in titles]
    if unknown:
        raise ValidationError(f"Unknown activities for '{lesson.title}': {', '.join(unknown)}")
    _check_minutes(update.time_delta)
    if update.quiz_score is not None:
        _check_quiz_score(update.quiz_score)
    if update.status is not None and update.status not in STATUSES:
        raise ValidationError(f"Unknown status {update.status!r}")
    if update.notes is not None and not isinstance(update.notes, str):
        raise ValidationError("Notes must be text")
    incoming = parse_timestamp(update.updated_at) if update.updated_at is not None else None
    if update.status not in (None, REDO):
        logger.debug("Requested status %r ignored; status is derived from activities", update.status)

    now = now or datetime.now()
    with transaction(db_path) as conn:
        record = _load(conn, learner_id, phase_id, day, hour)
        if _is_stale(incoming, record.updated_at):
            stored = record
        else:
            stored = None
            previous = record.status
            previous_completed_at = record.completed_at
            activities_changed = update.completed_activities is not None or bool(update.toggle_activities)
            if update.completed_activities is not None:
                record.completed_activities = list(dict.fromkeys(update.completed_activities))
            for title in update.toggle_activities:
                if title in record.completed_activities:
                    record.completed_activities.remove(title)
                else:
                    record.completed_activities.append(title)
            if activities_changed:
                _recompute(record, titles, now)
            if update.status == REDO:
                record.status = REDO
                record.completed_at = previous_completed_at
            if update.notes is not None:
                record.notes = update.notes
            if update.quiz_score is not None:
                record.quiz_score = update.quiz_score
            record.time_spent += update.time_delta
            record.updated_at = (incoming or now).isoformat()
            _save(conn, record)
            if update.time_delta:
                _log_time(conn, record, update.time_delta, now)

    key = f"{phase_id}/{day}/{hour}"
    if stored is not None:
        logger.warning("Ignoring stale update to %s for %s (%s < %s)", key, learner_id, update.updated_at, stored.updated_at)
        emit(bus, ConflictIgnored(learner_id, key, update.updated_at, stored.updated_at))
        return stored
    emit(bus, ProgressUpdated(learner_id, phase_id, day, hour, record.status))
    if record.status == COMPLETED and previous != COMPLETED:
        emit(bus, LessonCompleted(learner_id, phase_id, day, hour, record.completed_at))
    return record


def _phase_rows(conn, learner_id: str) -> list:
    return conn.execute(
        """SELECT p.slug, p.title, p.phase_order,
            (SELECT COUNT(*) FROM lessons l WHERE l.phase_id = p.id) AS total,
            (SELECT COUNT(*) FROM progress_records pr
                JOIN lessons l ON l.phase_id = p.id AND l.day = pr.day AND l.hour = pr.hour
                WHERE pr.learner_id = ? AND pr.phase_slug = p.slug AND pr.status = 'completed') AS completed
        FROM phases p ORDER BY p.phase_order, p.id""",
        (learner_id,),
    ).fetchall()


def phase_fraction(completed: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return min(max(completed / total, 0.0), 1.0)


def phase_progress(db_path: str, learner_id: str, phase_id: str) -> dict:
    """Completed and total lesson counts for one phase."""
    conn = get_connection(db_path)
    rows = {r["slug"]: r for r in _phase_rows(conn, learner_id)}
    conn.close()
    if phase_id not in rows:
        raise NotFound(f"Unknown phase: {phase_id}")
    return {"completed": rows[phase_id]["completed"], "total": rows[phase_id]["total"]}


def phase_statuses(db_path: str, learner_id: str) -> list[PhaseStatus]:
    """Progress and unlock state of every phase, in phase order.

    A phase is unlocked when it is first, or every phase before it has all
    of its lessons completed (and at least one lesson).
    """
    conn = get_connection(db_path)
    rows = _phase_rows(conn, learner_id)
    conn.close()
    statuses = []
    unlocked = True
    for row in rows:
        complete = row["total"] > 0 and row["completed"] == row["total"]
        statuses.append(PhaseStatus(
            phase_id=row["slug"],
            title=row["title"],
            phase_order=row["phase_order"],
            completed=row["completed"],
            total=row["total"],
            fraction=phase_fraction(row["completed"], row["total"]),
            is_complete=complete,
            is_unlocked=unlocked,
        ))
        unlocked = unlocked and complete
    return statuses


def is_phase_unlocked(db_path: str, learner_id: str, phase_id: str) -> bool:
    for status in phase_statuses(db_path, learner_id):
        if status.phase_id == phase_id:
            return status.is_unlocked
    raise NotFound(f"Unknown phase: {phase_id}")


def earned_milestones(db_path: str, learner_id: str, phase_id: str) -> list[Milestone]:
    """Milestones of the phase whose required lesson days are fully completed."""
    phase = get_phase(db_path, phase_id)
    conn = get_connection(db_path)
    rows = conn.execute(
        "SELECT day, hour FROM progress_records WHERE learner_id = ? AND phase_slug = ? AND status = 'completed'",
        (learner_id, phase_id),
    ).fetchall()
    conn.close()
    done = {(r["day"], r["hour"]) for r in rows}
    earned = []
    for milestone in phase.milestones:
        required = [(lesson.day, lesson.hour) for lesson in phase.lessons if lesson.day in milestone.required_lessons]
        if required and all(key in done for key in required):
            earned.append(milestone)
    return earned
