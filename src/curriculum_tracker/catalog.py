"""Read-only access to the Phase -> Lesson -> Activity hierarchy."""
import json

from curriculum_tracker.db import get_connection
from curriculum_tracker.errors import NotFound
from curriculum_tracker.models import (
    Activity, Lesson, Milestone, Phase, Quiz, QuizQuestion, Resource,
)


def _activity_from_row(row) -> Activity:
    return Activity(
        activity_type=row["activity_type"],
        title=row["title"],
        description=row["description"] or "",
        duration=row["duration"],
        is_optional=bool(row["is_optional"]),
        resource_url=row["resource_url"],
    )


def _lesson_from_row(conn, row, slug: str) -> Lesson:
    activities = conn.execute(
        "SELECT * FROM activities WHERE lesson_id = ? ORDER BY position", (row["id"],)
    ).fetchall()
    quiz = None
    if row["quiz"]:
        quiz = Quiz(questions=[QuizQuestion(**q) for q in json.loads(row["quiz"])["questions"]])
    return Lesson(
        phase_id=slug,
        day=row["day"],
        hour=row["hour"],
        title=row["title"],
        description=row["description"] or "",
        time_allocation=row["time_allocation"],
        activities=[_activity_from_row(a) for a in activities],
        learning_objectives=json.loads(row["learning_objectives"]),
        prerequisites=json.loads(row["prerequisites"]),
        quiz=quiz,
        resources=[Resource(**r) for r in json.loads(row["resources"])],
    )


def _phase_from_row(conn, row) -> Phase:
    lessons = conn.execute(
        "SELECT * FROM lessons WHERE phase_id = ? ORDER BY day, hour", (row["id"],)
    ).fetchall()
    milestones = conn.execute(
        "SELECT * FROM milestones WHERE phase_id = ? ORDER BY id", (row["id"],)
    ).fetchall()
    return Phase(
        phase_id=row["slug"],
        title=row["title"],
        phase_order=row["phase_order"],
        description=row["description"] or "",
        estimated_days=row["estimated_days"],
        lessons=[_lesson_from_row(conn, lr, row["slug"]) for lr in lessons],
        milestones=[
            Milestone(
                title=m["title"],
                description=m["description"] or "",
                required_lessons=json.loads(m["required_lessons"]),
                badge=m["badge"] or "",
            )
            for m in milestones
        ],
    )


def list_phases(db_path: str) -> list[Phase]:
    """All phases by phase_order, ties kept in insertion order."""
    conn = get_connection(db_path)
    rows = conn.execute("SELECT * FROM phases ORDER BY phase_order, id").fetchall()
    phases = [_phase_from_row(conn, r) for r in rows]
    conn.close()
    return phases


def get_phase(db_path: str, phase_id: str) -> Phase:
    conn = get_connection(db_path)
    row = conn.execute("SELECT * FROM phases WHERE slug = ?", (phase_id,)).fetchone()
    if not row:
        conn.close()
        raise NotFound(f"Unknown phase: {phase_id}")
    phase = _phase_from_row(conn, row)
    conn.close()
    return phase


def get_lesson(db_path: str, phase_id: str, day: int, hour: int) -> Lesson:
    conn = get_connection(db_path)
    row = conn.execute(
        """SELECT l.* FROM lessons l JOIN phases p ON l.phase_id = p.id
        WHERE p.slug = ? AND l.day = ? AND l.hour = ?""",
        (phase_id, day, hour),
    ).fetchone()
    if not row:
        conn.close()
        raise NotFound(f"Unknown lesson: {phase_id} day {day} hour {hour}")
    lesson = _lesson_from_row(conn, row, phase_id)
    conn.close()
    return lesson


def count_lessons(db_path: str, phase_id: str) -> int:
    conn = get_connection(db_path)
    row = conn.execute("SELECT id FROM phases WHERE slug = ?", (phase_id,)).fetchone()
    if not row:
        conn.close()
        raise NotFound(f"Unknown phase: {phase_id}")
    count = conn.execute("SELECT COUNT(*) FROM lessons WHERE phase_id = ?", (row["id"],)).fetchone()[0]
    conn.close()
    return count


def get_milestones(db_path: str, phase_id: str) -> list[Milestone]:
    return get_phase(db_path, phase_id).milestones
