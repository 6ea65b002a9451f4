from datetime import datetime, timedelta

import pytest

from curriculum_tracker.db import get_connection
from curriculum_tracker.errors import NotFound, ValidationError
from curriculum_tracker.events import (
    ActivityToggled, ConflictIgnored, EventBus, LessonCompleted, ProgressUpdated,
)
from curriculum_tracker.importer import load_curriculum
from curriculum_tracker.models import ProgressUpdate
from curriculum_tracker.progress import (
    add_time_spent, apply_progress_update, earned_milestones, get_progress, get_record,
    is_phase_unlocked, mark_for_redo, phase_fraction, phase_progress, phase_statuses,
    record_activity_toggle, reevaluate, set_notes, set_quiz_score,
)

ME = "ada"
LESSON = ("assembly", 1, 1)
ACTIVITIES = ["Read chapter", "Watch video", "Solve exercise"]


def toggle(db, title, **kwargs):
    return record_activity_toggle(db, ME, *LESSON, title, **kwargs)


def complete_lesson(db, phase_id, day, hour, titles):
    for title in titles:
        record_activity_toggle(db, ME, phase_id, day, hour, title)


def test_toggle_through_full_lesson(seeded_db):
    """not_started -> in_progress -> in_progress -> completed, timestamp only at the end."""
    assert get_record(seeded_db, ME, *LESSON).status == "not_started"
    statuses, stamps = [], []
    for title in ACTIVITIES:
        record = toggle(seeded_db, title)
        statuses.append(record.status)
        stamps.append(record.completed_at)
    assert statuses == ["in_progress", "in_progress", "completed"]
    assert stamps[0] is None and stamps[1] is None
    assert stamps[2] is not None
    assert get_record(seeded_db, ME, *LESSON).completed_activities == ACTIVITIES


def test_toggle_twice_is_idempotent(seeded_db):
    before = get_record(seeded_db, ME, *LESSON)
    toggle(seeded_db, "Watch video")
    after = toggle(seeded_db, "Watch video")
    assert after.status == before.status == "not_started"
    assert after.completed_activities == before.completed_activities == []


def test_toggle_twice_from_in_progress(seeded_db):
    toggle(seeded_db, "Read chapter")
    toggle(seeded_db, "Watch video")
    after = toggle(seeded_db, "Watch video")
    assert after.status == "in_progress"
    assert after.completed_activities == ["Read chapter"]


def test_untoggle_only_activity_returns_to_not_started(seeded_db):
    toggle(seeded_db, "Read chapter")
    assert toggle(seeded_db, "Read chapter").status == "not_started"


def test_untoggle_completed_lesson(seeded_db):
    complete_lesson(seeded_db, *LESSON, ACTIVITIES)
    record = toggle(seeded_db, "Solve exercise")
    assert record.status == "in_progress"
    assert record.completed_at is None


def test_unknown_activity_rejected(seeded_db):
    with pytest.raises(ValidationError):
        toggle(seeded_db, "Watch a different video")
    assert get_progress(seeded_db, ME) == []


def test_unknown_lesson_not_found(seeded_db):
    with pytest.raises(NotFound):
        record_activity_toggle(seeded_db, ME, "assembly", 9, 1, "Read chapter")


def test_optional_activities_count_toward_completion(seeded_db):
    record = record_activity_toggle(seeded_db, ME, "assembly", 1, 2, "Stack frames")
    assert record.status == "in_progress"
    record = record_activity_toggle(seeded_db, ME, "assembly", 1, 2, "Bonus crackme")
    assert record.status == "completed"


def test_completed_is_monotonic_on_reevaluation(seeded_db):
    complete_lesson(seeded_db, *LESSON, ACTIVITIES)
    first = get_record(seeded_db, ME, *LESSON)
    again = reevaluate(seeded_db, ME, *LESSON)
    assert again.status == "completed"
    assert again.completed_at == first.completed_at


def test_resupplying_full_set_keeps_completed(seeded_db):
    complete_lesson(seeded_db, *LESSON, ACTIVITIES)
    stamp = get_record(seeded_db, ME, *LESSON).completed_at
    record = apply_progress_update(seeded_db, ME, *LESSON, ProgressUpdate(completed_activities=ACTIVITIES))
    assert record.status == "completed"
    assert record.completed_at == stamp


def test_mark_for_redo_keeps_completed_set(seeded_db):
    complete_lesson(seeded_db, *LESSON, ACTIVITIES)
    record = mark_for_redo(seeded_db, ME, *LESSON)
    assert record.status == "redo"
    assert record.completed_activities == ACTIVITIES


def test_redo_recompletes_on_reevaluation(seeded_db):
    complete_lesson(seeded_db, *LESSON, ACTIVITIES)
    mark_for_redo(seeded_db, ME, *LESSON)
    later = datetime.now() + timedelta(days=1)
    record = reevaluate(seeded_db, ME, *LESSON, now=later)
    assert record.status == "completed"
    assert record.completed_at == later.isoformat()


def test_redo_stays_until_set_is_full_again(seeded_db):
    complete_lesson(seeded_db, *LESSON, ACTIVITIES)
    mark_for_redo(seeded_db, ME, *LESSON)
    assert toggle(seeded_db, "Watch video").status == "redo"
    assert toggle(seeded_db, "Watch video").status == "completed"


def test_notes_and_time_have_no_status_side_effects(seeded_db):
    record = set_notes(seeded_db, ME, *LESSON, "rax holds the return value")
    assert record.status == "not_started"
    record = add_time_spent(seeded_db, ME, *LESSON, 30)
    record = add_time_spent(seeded_db, ME, *LESSON, 15)
    assert record.time_spent == 45
    assert record.status == "not_started"
    assert record.notes == "rax holds the return value"


def test_notes_do_not_recomplete_a_redo(seeded_db):
    complete_lesson(seeded_db, *LESSON, ACTIVITIES)
    mark_for_redo(seeded_db, ME, *LESSON)
    record = apply_progress_update(seeded_db, ME, *LESSON, ProgressUpdate(notes="again"))
    assert record.status == "redo"


@pytest.mark.parametrize("minutes", [-1, 1.5, "10", True])
def test_add_time_spent_rejects_bad_minutes(seeded_db, minutes):
    with pytest.raises(ValidationError):
        add_time_spent(seeded_db, ME, *LESSON, minutes)
    assert get_progress(seeded_db, ME) == []


def test_add_time_spent_logs_by_date(seeded_db):
    add_time_spent(seeded_db, ME, *LESSON, 20, now=datetime(2026, 10, 18, 21, 0))
    add_time_spent(seeded_db, ME, *LESSON, 10, now=datetime(2026, 10, 19, 8, 0))
    conn = get_connection(seeded_db)
    rows = conn.execute("SELECT logged_on, minutes FROM time_log ORDER BY id").fetchall()
    conn.close()
    assert [(r["logged_on"], r["minutes"]) for r in rows] == [("2026-10-18", 20), ("2026-10-19", 10)]


def test_quiz_score(seeded_db):
    assert set_quiz_score(seeded_db, ME, *LESSON, 80).quiz_score == 80
    with pytest.raises(ValidationError):
        set_quiz_score(seeded_db, ME, *LESSON, 120)
    with pytest.raises(ValidationError):
        set_quiz_score(seeded_db, ME, "assembly", 1, 2, 50)  # lesson without quiz


def test_records_are_per_learner(seeded_db):
    toggle(seeded_db, "Read chapter")
    record_activity_toggle(seeded_db, "grace", *LESSON, "Watch video")
    assert [r.completed_activities for r in get_progress(seeded_db, ME)] == [["Read chapter"]]
    assert [r.completed_activities for r in get_progress(seeded_db, "grace")] == [["Watch video"]]


def test_update_requested_completed_status_is_not_trusted(seeded_db):
    record = apply_progress_update(
        seeded_db, ME, *LESSON, ProgressUpdate(toggle_activities=["Read chapter"], status="completed")
    )
    assert record.status == "in_progress"


def test_update_validates_everything_before_writing(seeded_db):
    bad = ProgressUpdate(toggle_activities=["Read chapter"], notes="x", time_delta=-10)
    with pytest.raises(ValidationError):
        apply_progress_update(seeded_db, ME, *LESSON, bad)
    assert get_progress(seeded_db, ME) == []
    with pytest.raises(ValidationError):
        apply_progress_update(seeded_db, ME, *LESSON, ProgressUpdate(completed_activities=["Nope"]))
    with pytest.raises(ValidationError):
        apply_progress_update(seeded_db, ME, *LESSON, ProgressUpdate(status="finished"))


def test_update_applies_all_fields(seeded_db):
    update = ProgressUpdate(
        toggle_activities=["Read chapter", "Watch video"], notes="halfway", time_delta=25, quiz_score=90,
    )
    record = apply_progress_update(seeded_db, ME, *LESSON, update)
    assert record.status == "in_progress"
    assert record.completed_activities == ["Read chapter", "Watch video"]
    assert (record.notes, record.time_spent, record.quiz_score) == ("halfway", 25, 90)


def test_update_redo_request(seeded_db):
    complete_lesson(seeded_db, *LESSON, ACTIVITIES)
    record = apply_progress_update(seeded_db, ME, *LESSON, ProgressUpdate(status="redo"))
    assert record.status == "redo"
    assert record.completed_activities == ACTIVITIES


def test_last_write_wins(seeded_db):
    bus = EventBus()
    conflicts = []
    bus.subscribe(ConflictIgnored, conflicts.append)
    apply_progress_update(seeded_db, ME, *LESSON, ProgressUpdate(notes="newer", updated_at="2026-10-19T10:00:00"))
    stale = apply_progress_update(
        seeded_db, ME, *LESSON, ProgressUpdate(notes="older", updated_at="2026-10-19T09:00:00"), bus=bus,
    )
    assert stale.notes == "newer"
    assert get_record(seeded_db, ME, *LESSON).notes == "newer"
    assert len(conflicts) == 1
    assert conflicts[0].key == "assembly/1/1"
    later = apply_progress_update(
        seeded_db, ME, *LESSON, ProgressUpdate(notes="latest", updated_at="2026-10-19T11:00:00"), bus=bus,
    )
    assert later.notes == "latest"
    assert len(conflicts) == 1


def test_last_write_wins_with_offset_timestamps(seeded_db):
    set_notes(seeded_db, ME, *LESSON, "local", now=datetime(2026, 10, 19, 12, 0))
    bus = EventBus()
    conflicts = []
    bus.subscribe(ConflictIgnored, conflicts.append)
    stale = apply_progress_update(
        seeded_db, ME, *LESSON, ProgressUpdate(notes="tab2", updated_at="2000-01-01T00:00:00+00:00"), bus=bus,
    )
    assert stale.notes == "local"
    assert len(conflicts) == 1
    newer = apply_progress_update(
        seeded_db, ME, *LESSON, ProgressUpdate(notes="tab3", updated_at="2030-01-01T00:00:00Z"), bus=bus,
    )
    assert newer.notes == "tab3"
    assert "+" not in newer.updated_at
    assert len(conflicts) == 1


def test_update_rejects_malformed_timestamp(seeded_db):
    with pytest.raises(ValidationError):
        apply_progress_update(seeded_db, ME, *LESSON, ProgressUpdate(notes="x", updated_at="yesterday"))


def test_redo_request_with_full_set_does_not_stamp_completion(seeded_db):
    bus = EventBus()
    completed = []
    bus.subscribe(LessonCompleted, completed.append)
    record = apply_progress_update(
        seeded_db, ME, *LESSON, ProgressUpdate(completed_activities=ACTIVITIES, status="redo"), bus=bus,
    )
    assert record.status == "redo"
    assert record.completed_at is None
    assert completed == []


def test_redo_request_keeps_earlier_completion_time(seeded_db):
    first = datetime(2026, 10, 18, 9, 0)
    for title in ACTIVITIES:
        toggle(seeded_db, title, now=first)
    record = apply_progress_update(
        seeded_db, ME, *LESSON, ProgressUpdate(toggle_activities=["Read chapter"], status="redo"),
        now=first + timedelta(days=1),
    )
    assert record.status == "redo"
    assert record.completed_at == first.isoformat()

def test_events_published(seeded_db):
    bus = EventBus()
    seen = []
    for event_type in (ActivityToggled, LessonCompleted, ProgressUpdated):
        bus.subscribe(event_type, seen.append)
    for title in ACTIVITIES:
        toggle(seeded_db, title, bus=bus)
    mark_for_redo(seeded_db, ME, *LESSON, bus=bus)
    kinds = [type(e).__name__ for e in seen]
    assert kinds == ["ActivityToggled"] * 3 + ["LessonCompleted", "ProgressUpdated"]
    assert seen[2].done is True and seen[2].status == "completed"


def test_phase_progress_counts(seeded_db):
    assert phase_progress(seeded_db, ME, "assembly") == {"completed": 0, "total": 3}
    complete_lesson(seeded_db, *LESSON, ACTIVITIES)
    toggle_partial = record_activity_toggle(seeded_db, ME, "assembly", 2, 1, "System V ABI")
    assert toggle_partial.status == "in_progress"
    assert phase_progress(seeded_db, ME, "assembly") == {"completed": 1, "total": 3}


def test_phase_progress_ignores_redo(seeded_db):
    complete_lesson(seeded_db, *LESSON, ACTIVITIES)
    mark_for_redo(seeded_db, ME, *LESSON)
    assert phase_progress(seeded_db, ME, "assembly")["completed"] == 0


def test_phase_progress_unknown_phase(seeded_db):
    with pytest.raises(NotFound):
        phase_progress(seeded_db, ME, "heap")


def test_empty_phase_fraction_is_zero(seeded_db):
    load_curriculum(seeded_db, {"phases": [{"phase": "empty", "phaseOrder": 9, "title": "Empty"}]})
    assert phase_progress(seeded_db, ME, "empty") == {"completed": 0, "total": 0}
    assert phase_fraction(0, 0) == 0.0
    status = [s for s in phase_statuses(seeded_db, ME) if s.phase_id == "empty"][0]
    assert status.fraction == 0.0
    assert status.is_complete is False


def test_phase_gating(seeded_db):
    assert is_phase_unlocked(seeded_db, ME, "assembly") is True
    assert is_phase_unlocked(seeded_db, ME, "buffer_overflow") is False
    complete_lesson(seeded_db, "assembly", 1, 1, ACTIVITIES)
    complete_lesson(seeded_db, "assembly", 1, 2, ["Stack frames", "Bonus crackme"])
    complete_lesson(seeded_db, "assembly", 2, 1, ["System V ABI", "ABI quiz"])
    statuses = {s.phase_id: s for s in phase_statuses(seeded_db, ME)}
    assert statuses["assembly"].is_complete and statuses["assembly"].fraction == 1.0
    assert statuses["buffer_overflow"].is_unlocked is True
    assert statuses["shellcode"].is_unlocked is False


def test_gating_blocked_by_empty_phase(seeded_db):
    load_curriculum(seeded_db, {"phases": [{"phase": "intro", "phaseOrder": 0, "title": "Intro"}]})
    assert is_phase_unlocked(seeded_db, ME, "intro") is True
    assert is_phase_unlocked(seeded_db, ME, "assembly") is False


def test_earned_milestones(seeded_db):
    assert earned_milestones(seeded_db, ME, "assembly") == []
    complete_lesson(seeded_db, "assembly", 1, 1, ACTIVITIES)
    assert earned_milestones(seeded_db, ME, "assembly") == []
    complete_lesson(seeded_db, "assembly", 1, 2, ["Stack frames", "Bonus crackme"])
    assert [m.badge for m in earned_milestones(seeded_db, ME, "assembly")] == ["stack-reader"]
