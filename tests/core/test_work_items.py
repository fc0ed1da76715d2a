"""Tests for work-item CRUD, hierarchy rules, filters, and reporting counts."""

from __future__ import annotations

import pytest

from tests._db_factory import Seeded
from trellis.errors import NotFound, ValidationError
from trellis.models import DeleteOutcome


class TestCreate:
    def test_defaults(self, seeded: Seeded) -> None:
        item = seeded.db.create_work_item(seeded.project.id, "story", "  Login page  ", reporter_id=seeded.user.user_id)
        assert item.type == "STORY"
        assert item.title == "Login page"
        assert item.status == "TODO"
        assert item.priority == "MEDIUM"
        assert item.reporter_id == seeded.user.user_id
        assert item.updated_by == seeded.user.user_id
        assert item.completed_at is None
        assert item.children == []

    def test_missing_title(self, seeded: Seeded) -> None:
        with pytest.raises(ValidationError) as exc_info:
            seeded.db.create_work_item(seeded.project.id, "TASK", "   ", reporter_id=None)
        assert exc_info.value.field == "title"

    def test_missing_type(self, seeded: Seeded) -> None:
        with pytest.raises(ValidationError, match="type is required"):
            seeded.db.create_work_item(seeded.project.id, None, "Untyped", reporter_id=None)

    def test_invalid_type_lists_choices(self, seeded: Seeded) -> None:
        with pytest.raises(ValidationError, match="Valid values: BUG, EPIC, FEATURE, STORY, TASK"):
            seeded.db.create_work_item(seeded.project.id, "SPIKE", "Nope", reporter_id=None)

    def test_invalid_priority(self, seeded: Seeded) -> None:
        with pytest.raises(ValidationError) as exc_info:
            seeded.db.create_work_item(seeded.project.id, "TASK", "x", reporter_id=None, priority="URGENT")
        assert exc_info.value.field == "priority"

    def test_created_done_is_stamped(self, seeded: Seeded) -> None:
        item = seeded.db.create_work_item(seeded.project.id, "BUG", "Already fixed", reporter_id=None, status="DONE")
        assert item.completed_at is not None

    def test_unknown_assignee(self, seeded: Seeded) -> None:
        with pytest.raises(NotFound, match="Assignee not found"):
            seeded.db.create_work_item(seeded.project.id, "TASK", "x", reporter_id=None, assignee_id=999)

    def test_dates_are_normalized(self, seeded: Seeded) -> None:
        item = seeded.db.create_work_item(
            seeded.project.id,
            "TASK",
            "Dated",
            reporter_id=None,
            start_date="2026-03-01",
            end_date="2026-03-05",
        )
        assert item.start_date == "2026-03-01T00:00:00+00:00"
        assert item.end_date == "2026-03-05T23:59:59+00:00"

    def test_malformed_dates_become_null(self, seeded: Seeded) -> None:
        item = seeded.db.create_work_item(
            seeded.project.id, "TASK", "Bad dates", reporter_id=None, start_date="next tuesday", end_date="null"
        )
        assert item.start_date is None
        assert item.end_date is None


class TestHierarchy:
    def test_children_are_attached(self, seeded: Seeded) -> None:
        db = seeded.db
        epic = db.create_work_item(seeded.project.id, "EPIC", "Epic", reporter_id=None)
        f1 = db.create_work_item(seeded.project.id, "FEATURE", "F1", reporter_id=None, parent_id=epic.id)
        f2 = db.create_work_item(seeded.project.id, "FEATURE", "F2", reporter_id=None, parent_id=epic.id)
        assert db.get_work_item(epic.id).children == [f1.id, f2.id]
        assert {i.id for i in db.list_by_parent(epic.id)} == {f1.id, f2.id}

    def test_parent_must_be_in_same_project(self, seeded: Seeded) -> None:
        db = seeded.db
        other = db.create_project("OPS", "Ops", created_by=seeded.admin.user_id, team_id=seeded.team_id)
        foreign = db.create_work_item(other.id, "EPIC", "Elsewhere", reporter_id=None)
        with pytest.raises(ValidationError, match="same project") as exc_info:
            db.create_work_item(seeded.project.id, "FEATURE", "F", reporter_id=None, parent_id=foreign.id)
        assert exc_info.value.field == "parent_id"

    def test_missing_parent(self, seeded: Seeded) -> None:
        with pytest.raises(NotFound, match="Parent work item not found"):
            seeded.db.create_work_item(seeded.project.id, "TASK", "x", reporter_id=None, parent_id=77)

    def test_self_parent_rejected(self, seeded: Seeded) -> None:
        item = seeded.db.create_work_item(seeded.project.id, "TASK", "Me", reporter_id=None)
        with pytest.raises(ValidationError, match="own parent"):
            seeded.db.update_work_item(item.id, {"parent_id": item.id}, actor_id=None)

    def test_cycle_rejected(self, seeded: Seeded) -> None:
        db = seeded.db
        epic = db.create_work_item(seeded.project.id, "EPIC", "E", reporter_id=None)
        feature = db.create_work_item(seeded.project.id, "FEATURE", "F", reporter_id=None, parent_id=epic.id)
        story = db.create_work_item(seeded.project.id, "STORY", "S", reporter_id=None, parent_id=feature.id)
        with pytest.raises(ValidationError, match="cycle"):
            db.update_work_item(epic.id, {"parent_id": story.id}, actor_id=None)

    def test_reparent_and_clear(self, seeded: Seeded) -> None:
        db = seeded.db
        a = db.create_work_item(seeded.project.id, "EPIC", "A", reporter_id=None)
        b = db.create_work_item(seeded.project.id, "EPIC", "B", reporter_id=None)
        child = db.create_work_item(seeded.project.id, "FEATURE", "C", reporter_id=None, parent_id=a.id)
        assert db.update_work_item(child.id, {"parent_id": b.id}, actor_id=None).parent_id == b.id
        assert db.update_work_item(child.id, {"parent_id": None}, actor_id=None).parent_id is None


class TestDeleteGuard:
    def test_parent_with_children_is_blocked(self, seeded: Seeded) -> None:
        db = seeded.db
        parent = db.create_work_item(seeded.project.id, "FEATURE", "Parent", reporter_id=None)
        child = db.create_work_item(seeded.project.id, "STORY", "Child", reporter_id=None, parent_id=parent.id)
        outcome = db.delete_work_item(parent.id, actor_id=seeded.admin.user_id)
        assert outcome is DeleteOutcome.BLOCKED_BY_CHILDREN
        assert not outcome.deleted
        assert db.get_work_item(parent.id).children == [child.id]
        assert db.get_work_item(child.id).parent_id == parent.id

    def test_leaf_then_parent(self, seeded: Seeded) -> None:
        db = seeded.db
        parent = db.create_work_item(seeded.project.id, "FEATURE", "Parent", reporter_id=None)
        child = db.create_work_item(seeded.project.id, "STORY", "Child", reporter_id=None, parent_id=parent.id)
        assert db.delete_work_item(child.id, actor_id=None) is DeleteOutcome.DELETED
        assert db.delete_work_item(parent.id, actor_id=None) is DeleteOutcome.DELETED
        with pytest.raises(NotFound):
            db.get_work_item(parent.id)

    def test_missing_item(self, seeded: Seeded) -> None:
        assert seeded.db.delete_work_item(31337, actor_id=None) is DeleteOutcome.NOT_FOUND


class TestUpdate:
    def test_field_merge(self, seeded: Seeded) -> None:
        db = seeded.db
        item = db.create_work_item(seeded.project.id, "TASK", "Old", reporter_id=None, tags="a")
        updated = db.update_work_item(
            item.id,
            {"title": "New", "priority": "high", "assignee_id": seeded.user.user_id, "estimate": "3.5"},
            actor_id=seeded.scrum.user_id,
        )
        assert updated.title == "New"
        assert updated.priority == "HIGH"
        assert updated.assignee_id == seeded.user.user_id
        assert updated.estimate == 3.5
        assert updated.tags == "a"
        assert updated.updated_by == seeded.scrum.user_id

    def test_unknown_field_rejected(self, seeded: Seeded) -> None:
        item = seeded.db.create_work_item(seeded.project.id, "TASK", "x", reporter_id=None)
        with pytest.raises(ValidationError, match="Unknown work item field"):
            seeded.db.update_work_item(item.id, {"project_id": 2}, actor_id=None)

    def test_noop_update_writes_nothing(self, seeded: Seeded) -> None:
        db = seeded.db
        item = db.create_work_item(seeded.project.id, "TASK", "Same", reporter_id=None)
        again = db.update_work_item(item.id, {"title": "Same", "status": "todo"}, actor_id=seeded.admin.user_id)
        assert again.updated_at == item.updated_at
        assert [e["change_type"] for e in db.fetch_history(item.id)] == ["CREATED"]

    def test_update_missing_item(self, seeded: Seeded) -> None:
        with pytest.raises(NotFound):
            seeded.db.update_work_item(404, {"title": "x"}, actor_id=None)

    def test_malformed_date_clears_field(self, seeded: Seeded) -> None:
        db = seeded.db
        item = db.create_work_item(seeded.project.id, "TASK", "x", reporter_id=None, start_date="2026-01-01")
        updated = db.update_work_item(item.id, {"start_date": "31/31/2026"}, actor_id=None)
        assert updated.start_date is None


class TestCompletion:
    def test_done_stamps_completed_at(self, seeded: Seeded) -> None:
        db = seeded.db
        item = db.create_work_item(seeded.project.id, "TASK", "Ship", reporter_id=None)
        done = db.update_status(item.id, "DONE", actor_id=seeded.user.user_id)
        assert done.status == "DONE"
        assert done.completed_at is not None

    def test_leaving_done_keeps_completed_at(self, seeded: Seeded) -> None:
        db = seeded.db
        item = db.create_work_item(seeded.project.id, "TASK", "Ship", reporter_id=None)
        stamped = db.update_status(item.id, "DONE", actor_id=None).completed_at
        reopened = db.update_status(item.id, "TODO", actor_id=None)
        assert reopened.status == "TODO"
        assert reopened.completed_at == stamped

    def test_in_progress_does_not_stamp(self, seeded: Seeded) -> None:
        item = seeded.db.create_work_item(seeded.project.id, "TASK", "Ship", reporter_id=None)
        assert seeded.db.update_status(item.id, "IN_PROGRESS", actor_id=None).completed_at is None

    def test_invalid_status(self, seeded: Seeded) -> None:
        item = seeded.db.create_work_item(seeded.project.id, "TASK", "Ship", reporter_id=None)
        with pytest.raises(ValidationError) as exc_info:
            seeded.db.update_status(item.id, "BLOCKED", actor_id=None)
        assert exc_info.value.field == "status"


class TestListing:
    def _populate(self, seeded: Seeded) -> None:
        db = seeded.db
        pid = seeded.project.id
        db.create_work_item(pid, "EPIC", "e", reporter_id=None, priority="HIGH")
        db.create_work_item(pid, "STORY", "s1", reporter_id=None, assignee_id=seeded.user.user_id)
        db.create_work_item(pid, "STORY", "s2", reporter_id=None, status="IN_PROGRESS")
        db.create_work_item(pid, "BUG", "b", reporter_id=None, priority="CRITICAL", status="DONE")

    def test_newest_change_first(self, seeded: Seeded) -> None:
        self._populate(seeded)
        db = seeded.db
        titles = [i.title for i in db.list_by_project(seeded.project.id)]
        assert titles == ["b", "s2", "s1", "e"]
        epic = next(i for i in db.list_by_project(seeded.project.id) if i.title == "e")
        db.update_work_item(epic.id, {"description": "touched"}, actor_id=None)
        assert db.list_by_project(seeded.project.id)[0].title == "e"

    def test_filters(self, seeded: Seeded) -> None:
        self._populate(seeded)
        db = seeded.db
        pid = seeded.project.id
        assert {i.title for i in db.list_work_items(pid, types=["story"])} == {"s1", "s2"}
        assert {i.title for i in db.list_work_items(pid, statuses=["TODO"])} == {"e", "s1"}
        assert {i.title for i in db.list_work_items(pid, priorities=["HIGH", "CRITICAL"])} == {"e", "b"}
        assert {i.title for i in db.list_work_items(pid, types=["STORY"], statuses=["IN_PROGRESS"])} == {"s2"}

    def test_assignee_filters(self, seeded: Seeded) -> None:
        self._populate(seeded)
        pid = seeded.project.id
        assigned = seeded.db.list_work_items(pid, assignee_id=seeded.user.user_id)
        unassigned = seeded.db.list_work_items(pid, assignee_id=None)
        assert [i.title for i in assigned] == ["s1"]
        assert {i.title for i in unassigned} == {"e", "s2", "b"}

    def test_limit_offset(self, seeded: Seeded) -> None:
        self._populate(seeded)
        page = seeded.db.list_work_items(seeded.project.id, limit=2, offset=1)
        assert [i.title for i in page] == ["s2", "s1"]

    def test_invalid_filter_value(self, seeded: Seeded) -> None:
        with pytest.raises(ValidationError):
            seeded.db.list_work_items(seeded.project.id, statuses=["WAITING"])

    def test_counts(self, seeded: Seeded) -> None:
        self._populate(seeded)
        db = seeded.db
        pid = seeded.project.id
        assert db.count_by_project(pid) == 4
        assert db.count_by_status(pid) == {"DONE": 1, "IN_PROGRESS": 1, "TODO": 2}
        assert db.count_by_type(pid) == {"BUG": 1, "EPIC": 1, "FEATURE": 0, "STORY": 2, "TASK": 0}
        assert db.count_by_priority(pid) == {"CRITICAL": 1, "HIGH": 1, "LOW": 0, "MEDIUM": 2}

    def test_counts_of_empty_project(self, seeded: Seeded) -> None:
        assert seeded.db.count_by_project(seeded.project.id) == 0
        assert set(seeded.db.count_by_status(seeded.project.id).values()) == {0}
