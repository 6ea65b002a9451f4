"""Curriculum import from JSON or YAML documents.

The document mirrors the curriculum read endpoint: a ``phases`` list whose
entries use the camelCase keys ``phase``, ``phaseOrder``, ``estimatedDays``,
``lessons`` (``day``, ``hour``, ``timeAllocation``, ``activities``,
``learningObjectives``, ``prerequisites``, ``resources``, ``quiz``) and
``milestones`` (``requiredLessons``, ``badge``). The whole document is
validated into model objects before a single row is written.
"""
import json
import logging
from pathlib import Path

import yaml

from curriculum_tracker.db import get_connection
from curriculum_tracker.errors import ValidationError
from curriculum_tracker.models import (
    ACTIVITY_TYPES, RESOURCE_TYPES, Activity, Lesson, Milestone, Phase, Quiz,
    QuizQuestion, Resource,
)

logger = logging.getLogger(__name__)


def read_curriculum_file(file_path: str) -> dict:
    path = Path(file_path)
    suffix = path.suffix.lower()
    if suffix == ".json":
        data = json.loads(path.read_text())
    elif suffix in (".yaml", ".yml"):
        data = yaml.safe_load(path.read_text())
    else:
        raise ValidationError(f"Unsupported curriculum format: {suffix or path.name}")
    if isinstance(data, list):
        data = {"phases": data}
    if not isinstance(data, dict) or not isinstance(data.get("phases"), list):
        raise ValidationError("Curriculum document must contain a list of phases")
    return data


def _positive_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{name} must be a positive integer, got {value!r}")
    return value


def _non_negative_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must not be negative, got {value!r}")
    return value


def _entry(raw, where: str) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError(f"{where}: expected a mapping, got {type(raw).__name__}")
    return raw


def _required_text(raw: dict, key: str, where: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{where}: '{key}' is required")
    return value


def _parse_activity(raw: dict, where: str) -> Activity:
    raw = _entry(raw, f"{where} activity")
    activity_type = raw.get("type")
    if activity_type not in ACTIVITY_TYPES:
        raise ValidationError(f"{where}: unknown activity type {activity_type!r}")
    return Activity(
        activity_type=activity_type,
        title=_required_text(raw, "title", where),
        description=raw.get("description", ""),
        duration=_non_negative_int(raw.get("duration", 0), f"{where} duration"),
        is_optional=bool(raw.get("isOptional", False)),
        resource_url=raw.get("resourceUrl"),
    )


def _parse_quiz(raw: dict | None, where: str) -> Quiz | None:
    if not raw:
        return None
    raw = _entry(raw, f"{where} quiz")
    questions = []
    for q in raw.get("questions", []):
        q = _entry(q, f"{where} quiz question")
        options = q.get("options", [])
        answer = q.get("correctAnswer")
        if isinstance(answer, bool) or not isinstance(answer, int) or not 0 <= answer < len(options):
            raise ValidationError(f"{where}: quiz answer index out of range")
        questions.append(QuizQuestion(
            question=_required_text(q, "question", where),
            options=list(options),
            correct_answer=answer,
            explanation=q.get("explanation", ""),
        ))
    return Quiz(questions=questions)


def _parse_resource(raw: dict, where: str) -> Resource:
    raw = _entry(raw, f"{where} resource")
    if raw.get("type") not in RESOURCE_TYPES:
        raise ValidationError(f"{where}: unknown resource type {raw.get('type')!r}")
    return Resource(
        resource_type=raw["type"],
        title=_required_text(raw, "title", where),
        url=_required_text(raw, "url", where),
        description=raw.get("description", ""),
    )


def _parse_lesson(raw: dict, slug: str) -> Lesson:
    raw = _entry(raw, f"{slug} lesson")
    day = _positive_int(raw.get("day"), f"{slug} lesson day")
    hour = _positive_int(raw.get("hour"), f"{slug} lesson hour")
    where = f"{slug} day {day} hour {hour}"
    activities = [_parse_activity(a, where) for a in raw.get("activities", [])]
    titles = [a.title for a in activities]
    if len(titles) != len(set(titles)):
        raise ValidationError(f"{where}: activity titles must be unique")
    return Lesson(
        phase_id=slug,
        day=day,
        hour=hour,
        title=_required_text(raw, "title", where),
        description=raw.get("description", ""),
        time_allocation=_non_negative_int(raw.get("timeAllocation", 60), f"{where} timeAllocation"),
        activities=activities,
        learning_objectives=list(raw.get("learningObjectives", [])),
        prerequisites=list(raw.get("prerequisites", [])),
        quiz=_parse_quiz(raw.get("quiz"), where),
        resources=[_parse_resource(r, where) for r in raw.get("resources", [])],
    )


def parse_phase(raw: dict) -> Phase:
    raw = _entry(raw, "phase")
    slug = _required_text(raw, "phase", "phase")
    order = raw.get("phaseOrder")
    if isinstance(order, bool) or not isinstance(order, int):
        raise ValidationError(f"{slug}: phaseOrder must be an integer")
    lessons = [_parse_lesson(lr, slug) for lr in raw.get("lessons", [])]
    keys = [(lesson.day, lesson.hour) for lesson in lessons]
    if len(keys) != len(set(keys)):
        raise ValidationError(f"{slug}: duplicate lesson day/hour")
    return Phase(
        phase_id=slug,
        title=_required_text(raw, "title", slug),
        phase_order=order,
        description=raw.get("description", ""),
        estimated_days=_non_negative_int(raw.get("estimatedDays", 0), f"{slug} estimatedDays"),
        lessons=sorted(lessons, key=lambda lesson: (lesson.day, lesson.hour)),
        milestones=[
            Milestone(
                title=_required_text(m, "title", f"{slug} milestone"),
                description=m.get("description", ""),
                required_lessons=[_positive_int(d, f"{slug} milestone lesson") for d in m.get("requiredLessons", [])],
                badge=m.get("badge", ""),
            )
            for m in [_entry(entry, f"{slug} milestone") for entry in raw.get("milestones", [])]
        ],
    )


def _insert_phase(conn, phase: Phase) -> None:
    cur = conn.execute(
        "INSERT INTO phases (slug, title, phase_order, description, estimated_days) VALUES (?, ?, ?, ?, ?)",
        (phase.phase_id, phase.title, phase.phase_order, phase.description, phase.estimated_days),
    )
    phase_row_id = cur.lastrowid
    for lesson in phase.lessons:
        quiz = None
        if lesson.quiz:
            quiz = json.dumps({"questions": [vars(q) for q in lesson.quiz.questions]})
        cur = conn.execute(
            """INSERT INTO lessons
            (phase_id, day, hour, title, description, time_allocation,
             learning_objectives, prerequisites, quiz, resources)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (phase_row_id, lesson.day, lesson.hour, lesson.title, lesson.description,
             lesson.time_allocation, json.dumps(lesson.learning_objectives),
             json.dumps(lesson.prerequisites), quiz,
             json.dumps([vars(r) for r in lesson.resources])),
        )
        lesson_row_id = cur.lastrowid
        for position, activity in enumerate(lesson.activities):
            conn.execute(
                """INSERT INTO activities
                (lesson_id, position, activity_type, title, description, duration, is_optional, resource_url)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (lesson_row_id, position, activity.activity_type, activity.title,
                 activity.description, activity.duration, int(activity.is_optional),
                 activity.resource_url),
            )
    for milestone in phase.milestones:
        conn.execute(
            "INSERT INTO milestones (phase_id, title, description, required_lessons, badge) VALUES (?, ?, ?, ?, ?)",
            (phase_row_id, milestone.title, milestone.description,
             json.dumps(milestone.required_lessons), milestone.badge),
        )


def load_curriculum(db_path: str, data: dict) -> list[Phase]:
    """Validate and store every phase in ``data``. Nothing is written on failure."""
    phases = [parse_phase(raw) for raw in data.get("phases", [])]
    slugs = [p.phase_id for p in phases]
    if len(slugs) != len(set(slugs)):
        raise ValidationError("Duplicate phase identifiers in curriculum")
    conn = get_connection(db_path)
    try:
        existing = {r["slug"] for r in conn.execute("SELECT slug FROM phases").fetchall()}
        clash = existing.intersection(slugs)
        if clash:
            raise ValidationError(f"Phase already exists: {', '.join(sorted(clash))}")
        with conn:
            for phase in phases:
                _insert_phase(conn, phase)
    finally:
        conn.close()
    logger.info("Loaded %d phase(s), %d lesson(s)", len(phases), sum(len(p.lessons) for p in phases))
    return phases


def import_file(db_path: str, file_path: str) -> dict:
    """Import a curriculum file and summarize what was added."""
    phases = load_curriculum(db_path, read_curriculum_file(file_path))
    return {
        "filename": Path(file_path).name,
        "phases": len(phases),
        "lessons": sum(len(p.lessons) for p in phases),
    }
