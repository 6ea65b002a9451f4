"""Database initialization and connection management."""
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from curriculum_tracker.errors import ValidationError

DEFAULT_DB_PATH = os.environ.get(
    "CURRICULUM_TRACKER_DB", str(Path.home() / ".curriculum_tracker" / "tracker.db")
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS phases (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    slug TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    phase_order INTEGER NOT NULL,
    description TEXT,
    estimated_days INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS lessons (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    phase_id INTEGER NOT NULL REFERENCES phases(id),
    day INTEGER NOT NULL,
    hour INTEGER NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    time_allocation INTEGER DEFAULT 60,
    learning_objectives TEXT DEFAULT '[]',  -- JSON
    prerequisites TEXT DEFAULT '[]',  -- JSON
    quiz TEXT,  -- JSON
    resources TEXT DEFAULT '[]',  -- JSON
    UNIQUE(phase_id, day, hour)
);

CREATE TABLE IF NOT EXISTS activities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    lesson_id INTEGER NOT NULL REFERENCES lessons(id),
    position INTEGER NOT NULL,
    activity_type TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    duration INTEGER DEFAULT 0,
    is_optional INTEGER DEFAULT 0,
    resource_url TEXT,
    UNIQUE(lesson_id, title)
);

CREATE TABLE IF NOT EXISTS milestones (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    phase_id INTEGER NOT NULL REFERENCES phases(id),
    title TEXT NOT NULL,
    description TEXT,
    required_lessons TEXT DEFAULT '[]',  -- JSON list of lesson days
    badge TEXT
);

CREATE TABLE IF NOT EXISTS progress_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    learner_id TEXT NOT NULL,
    phase_slug TEXT NOT NULL,
    day INTEGER NOT NULL,
    hour INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'not_started',
    completed_activities TEXT DEFAULT '[]',  -- JSON
    time_spent INTEGER DEFAULT 0,
    notes TEXT DEFAULT '',
    quiz_score REAL,
    completed_at TEXT,
    updated_at TEXT,
    UNIQUE(learner_id, phase_slug, day, hour)
);

CREATE TABLE IF NOT EXISTS time_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    learner_id TEXT NOT NULL,
    phase_slug TEXT NOT NULL,
    day INTEGER NOT NULL,
    hour INTEGER NOT NULL,
    minutes INTEGER NOT NULL,
    logged_on TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS daily_plans (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    learner_id TEXT NOT NULL,
    plan_date TEXT NOT NULL,
    total_hours REAL,
    updated_at TEXT,
    UNIQUE(learner_id, plan_date)
);

CREATE TABLE IF NOT EXISTS study_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    plan_id INTEGER NOT NULL REFERENCES daily_plans(id),
    position INTEGER NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    activity TEXT NOT NULL,
    description TEXT NOT NULL,
    resource_url TEXT,
    completed INTEGER DEFAULT 0,
    time_spent INTEGER DEFAULT 0,
    notes TEXT
);

CREATE TABLE IF NOT EXISTS learner_settings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    learner_id TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT,
    UNIQUE(learner_id, key)
);
"""


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Return a SQLite connection with row factory and foreign keys enabled."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def transaction(db_path: str = DEFAULT_DB_PATH) -> Iterator[sqlite3.Connection]:
    """Yield a connection holding a write lock; commit on success, roll back on error."""
    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize the database, creating all tables if they don't exist."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(db_path)
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO timestamp into the naive local time that rows are stamped with.

    Values carrying an offset (or a trailing ``Z``) are converted to local time.
    """
    if not isinstance(value, str):
        raise ValidationError(f"Malformed timestamp {value!r}")
    text = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"Malformed timestamp {value!r}") from None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed
