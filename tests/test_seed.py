from curriculum_tracker.catalog import list_phases
from curriculum_tracker.db import get_connection, init_db
from curriculum_tracker.seed import is_seeded, seed_all


def test_is_seeded_false_on_empty_db(tmp_db):
    init_db(tmp_db)
    assert is_seeded(tmp_db) is False


def test_seed_all_loads_bundled_curriculum(tmp_db):
    init_db(tmp_db)
    seed_all(tmp_db)
    assert is_seeded(tmp_db) is True
    phases = list_phases(tmp_db)
    assert len(phases) == 3
    assert sum(len(p.lessons) for p in phases) == 6


def test_seed_all_is_idempotent(tmp_db):
    init_db(tmp_db)
    seed_all(tmp_db)
    seed_all(tmp_db)
    conn = get_connection(tmp_db)
    assert conn.execute("SELECT COUNT(*) FROM phases").fetchone()[0] == 3
    assert conn.execute("SELECT COUNT(*) FROM lessons").fetchone()[0] == 6
    conn.close()
