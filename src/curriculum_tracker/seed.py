"""Seed the database with the bundled curriculum."""
import json
from pathlib import Path

from curriculum_tracker.db import get_connection
from curriculum_tracker.importer import load_curriculum

CONTENT_DIR = Path(__file__).parent / "content"


def is_seeded(db_path: str) -> bool:
    """Check whether the database already holds curriculum phases."""
    conn = get_connection(db_path)
    count = conn.execute("SELECT COUNT(*) FROM phases").fetchone()[0]
    conn.close()
    return count > 0


def seed_curriculum(db_path: str) -> None:
    data = json.loads((CONTENT_DIR / "curriculum.json").read_text())
    load_curriculum(db_path, data)


def seed_all(db_path: str) -> None:
    if is_seeded(db_path):
        return
    seed_curriculum(db_path)
