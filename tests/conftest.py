import pytest

from curriculum_tracker.db import init_db
from curriculum_tracker.seed import seed_all


@pytest.fixture
def tmp_db(tmp_path):
    """Provide a temporary SQLite database path for tests."""
    db_path = str(tmp_path / "test_tracker.db")
    return db_path


@pytest.fixture
def seeded_db(tmp_db):
    """Temporary database holding the bundled curriculum."""
    init_db(tmp_db)
    seed_all(tmp_db)
    return tmp_db
