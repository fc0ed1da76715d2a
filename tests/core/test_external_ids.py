"""Tests for per-project external identifier allocation (KEY-NNN)."""

from __future__ import annotations

import re
import threading
from pathlib import Path

import pytest

from tests._db_factory import Seeded, make_db, seed
from trellis.core import TrellisDB
from trellis.errors import NotFound

_EXTERNAL_ID = re.compile(r"^PROJ-\d{3,}$")


class TestFormat:
    def test_first_item_is_001(self, seeded: Seeded) -> None:
        item = seeded.db.create_work_item(seeded.project.id, "STORY", "First", reporter_id=seeded.user.user_id)
        assert item.external_id == "PROJ-001"
        assert _EXTERNAL_ID.match(item.external_id)

    def test_monotonic_sequence(self, seeded: Seeded) -> None:
        ids = [
            seeded.db.create_work_item(seeded.project.id, "TASK", f"Item {n}", reporter_id=None).external_id
            for n in range(12)
        ]
        assert ids == [f"PROJ-{n:03d}" for n in range(1, 13)]

    def test_sequence_grows_past_three_digits(self, seeded: Seeded) -> None:
        seeded.db.conn.execute("UPDATE projects SET item_seq = 999 WHERE id = ?", (seeded.project.id,))
        item = seeded.db.create_work_item(seeded.project.id, "BUG", "Big", reporter_id=None)
        assert item.external_id == "PROJ-1000"

    def test_sequences_are_per_project(self, seeded: Seeded) -> None:
        db = seeded.db
        other = db.create_project("OPS", "Operations", created_by=seeded.admin.user_id, team_id=seeded.team_id)
        db.create_work_item(seeded.project.id, "TASK", "a", reporter_id=None)
        db.create_work_item(seeded.project.id, "TASK", "b", reporter_id=None)
        first_ops = db.create_work_item(other.id, "TASK", "c", reporter_id=None)
        assert first_ops.external_id == "OPS-001"

    def test_lookup_by_external_id_is_case_insensitive(self, seeded: Seeded) -> None:
        created = seeded.db.create_work_item(seeded.project.id, "STORY", "Find me", reporter_id=None)
        assert seeded.db.get_work_item_by_external_id(" proj-001 ").id == created.id


class TestNoReuse:
    def test_deleted_ids_are_never_reissued(self, seeded: Seeded) -> None:
        db = seeded.db
        first = db.create_work_item(seeded.project.id, "TASK", "one", reporter_id=None)
        second = db.create_work_item(seeded.project.id, "TASK", "two", reporter_id=None)
        db.delete_work_item(second.id, actor_id=None)
        db.delete_work_item(first.id, actor_id=None)
        third = db.create_work_item(seeded.project.id, "TASK", "three", reporter_id=None)
        assert third.external_id == "PROJ-003"

    def test_failed_insert_does_not_consume_a_number(self, seeded: Seeded) -> None:
        db = seeded.db
        with pytest.raises(NotFound):
            db.create_work_item(seeded.project.id, "TASK", "orphan", reporter_id=None, parent_id=9999)
        item = db.create_work_item(seeded.project.id, "TASK", "ok", reporter_id=None)
        assert item.external_id == "PROJ-001"


class TestMissingProject:
    def test_create_in_missing_project(self, db: TrellisDB) -> None:
        with pytest.raises(NotFound):
            db.create_work_item(4242, "TASK", "nowhere", reporter_id=None)


class TestConcurrentAllocation:
    def test_parallel_creators_get_distinct_ids(self, tmp_path: Path) -> None:
        setup = make_db(tmp_path)
        seeded = seed(setup)
        project_id = seeded.project.id
        setup.close()

        workers = 6
        per_worker = 5
        barrier = threading.Barrier(workers)
        results: list[str] = []
        errors: list[Exception] = []
        lock = threading.Lock()

        # One connection per thread, all on the same database file.
        connections = [TrellisDB(tmp_path / "trellis.db", check_same_thread=False) for _ in range(workers)]
        for c in connections:
            c.initialize()

        def create_many(conn_db: TrellisDB) -> None:
            try:
                barrier.wait()
                for n in range(per_worker):
                    item = conn_db.create_work_item(project_id, "TASK", f"t{n}", reporter_id=None)
                    with lock:
                        results.append(item.external_id)
            except Exception as exc:
                with lock:
                    errors.append(exc)

        threads = [threading.Thread(target=create_many, args=(c,)) for c in connections]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        for c in connections:
            c.close()

        assert errors == []
        assert len(results) == workers * per_worker
        assert len(set(results)) == len(results)
        assert sorted(results) == [f"PROJ-{n:03d}" for n in range(1, workers * per_worker + 1)]
