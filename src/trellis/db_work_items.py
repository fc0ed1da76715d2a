"""WorkItemsMixin: the work-item hierarchy, identifiers, and delete guard.

Extracted from core.py. All methods access ``self.conn``,
``self.get_project()``, ``self.record()`` etc. via Python's MRO when composed
into ``TrellisDB``.

Every write runs inside one ``BEGIN IMMEDIATE`` transaction together with the
history entries it produces, so a change and its audit trail commit or roll
back as a unit.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Collection, Mapping
from typing import TYPE_CHECKING, Any, Final

from trellis.db_base import DBMixinProtocol, _now_iso, _placeholders
from trellis.errors import Conflict, NotFound, ValidationError
from trellis.models import DONE_STATUS, VALID_PRIORITIES, VALID_STATUSES, DeleteOutcome, WorkItem
from trellis.permissions import VALID_ITEM_TYPES
from trellis.validation import (
    normalize_timestamp,
    optional_int,
    optional_number,
    require_choice,
    require_title,
)

logger = logging.getLogger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Final = _Unset()
"""Sentinel for "no filter" where ``None`` already means "unassigned"."""

EDITABLE_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "tags",
    "type",
    "status",
    "priority",
    "parent_id",
    "assignee_id",
    "estimate",
    "start_date",
    "end_date",
)


class WorkItemsMixin(DBMixinProtocol):
    """Work-item CRUD, listing, reporting counts, and identifier allocation."""

    if TYPE_CHECKING:

        def record(
            self,
            work_item_id: int | None,
            user_id: int | None,
            field_name: str | None,
            old_value: Any,
            new_value: Any,
            change_type: str | None,
        ) -> int: ...

    # -- Identifier allocation -----------------------------------------------

    def _next_external_id(self, conn: sqlite3.Connection, project_id: int) -> str:
        """Bump the project's sequence and format the next ``KEY-NNN``.

        Must run inside the transaction that inserts the item: the increment
        takes the write lock, so no two writers can read the same value.
        """
        cursor = conn.execute("UPDATE projects SET item_seq = item_seq + 1 WHERE id = ?", (project_id,))
        if cursor.rowcount == 0:
            msg = f"Project not found: {project_id}"
            raise NotFound(msg)
        row = conn.execute("SELECT key, item_seq FROM projects WHERE id = ?", (project_id,)).fetchone()
        return f"{row['key']}-{row['item_seq']:03d}"

    # -- Validation helpers --------------------------------------------------

    def _check_assignee(self, assignee_id: int | None) -> None:
        if assignee_id is not None and self._fetchone("SELECT 1 FROM users WHERE id = ?", (assignee_id,)) is None:
            msg = f"Assignee not found: {assignee_id}"
            raise NotFound(msg)

    def _check_parent(self, parent_id: int | None, project_id: int, item_id: int | None = None) -> None:
        """Parent must exist in the same project and must not close a cycle."""
        if parent_id is None:
            return
        if item_id is not None and parent_id == item_id:
            raise ValidationError("A work item cannot be its own parent", field="parent_id")
        row = self._fetchone("SELECT project_id FROM work_items WHERE id = ?", (parent_id,))
        if row is None:
            msg = f"Parent work item not found: {parent_id}"
            raise NotFound(msg)
        if row["project_id"] != project_id:
            raise ValidationError("Parent work item must belong to the same project", field="parent_id")
        if item_id is None:
            return
        ancestors = self._fetchall(
            "WITH RECURSIVE ancestors(id, parent_id) AS ("
            "  SELECT id, parent_id FROM work_items WHERE id = ?"
            "  UNION SELECT w.id, w.parent_id FROM work_items w JOIN ancestors a ON w.id = a.parent_id"
            ") SELECT id FROM ancestors",
            (parent_id,),
        )
        if any(r["id"] == item_id for r in ancestors):
            raise ValidationError("Parent change would create a cycle", field="parent_id")

    # -- Create --------------------------------------------------------------

    def create_work_item(
        self,
        project_id: int,
        type: str | None,
        title: str,
        *,
        reporter_id: int | None,
        description: str = "",
        tags: str = "",
        status: str = "TODO",
        priority: str = "MEDIUM",
        parent_id: int | None = None,
        assignee_id: int | None = None,
        estimate: float | None = None,
        start_date: Any = None,
        end_date: Any = None,
    ) -> WorkItem:
        item_type = require_choice(type, VALID_ITEM_TYPES, "type")
        title = require_title(title)
        status = require_choice(status, VALID_STATUSES, "status")
        priority = require_choice(priority, VALID_PRIORITIES, "priority")
        parent_id = optional_int(parent_id, "parent_id")
        assignee_id = optional_int(assignee_id, "assignee_id")
        estimate = optional_number(estimate, "estimate")
        self.get_project(project_id)
        self._check_parent(parent_id, project_id)
        self._check_assignee(assignee_id)

        now = _now_iso()
        try:
            with self.transaction() as conn:
                external_id = self._next_external_id(conn, project_id)
                cursor = conn.execute(
                    "INSERT INTO work_items (external_id, title, description, tags, type, status, priority, "
                    "project_id, parent_id, assignee_id, reporter_id, updated_by, estimate, "
                    "start_date, end_date, completed_at, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        external_id,
                        title,
                        (description or "").strip(),
                        (tags or "").strip(),
                        item_type,
                        status,
                        priority,
                        project_id,
                        parent_id,
                        assignee_id,
                        reporter_id,
                        reporter_id,
                        estimate,
                        normalize_timestamp(start_date),
                        normalize_timestamp(end_date, end_of_day=True),
                        now if status == DONE_STATUS else None,
                        now,
                        now,
                    ),
                )
                item_id = cursor.lastrowid
                assert item_id is not None
                self.record(item_id, reporter_id, "item", None, external_id, "CREATED")
        except sqlite3.IntegrityError as exc:
            msg = f"Could not create work item: {exc}"
            raise Conflict(msg) from exc
        logger.info("Created %s %s in project %d", item_type, external_id, project_id)
        return self.get_work_item(item_id)

    # -- Read ----------------------------------------------------------------

    def get_work_item(self, item_id: int) -> WorkItem:
        row = self._fetchone("SELECT * FROM work_items WHERE id = ?", (item_id,))
        if row is None:
            msg = f"Work item not found: {item_id}"
            raise NotFound(msg)
        return self._build_items([row])[0]

    def get_work_item_by_external_id(self, external_id: str) -> WorkItem:
        row = self._fetchone("SELECT * FROM work_items WHERE external_id = ?", ((external_id or "").strip().upper(),))
        if row is None:
            msg = f"Work item not found: {external_id}"
            raise NotFound(msg)
        return self._build_items([row])[0]

    def _build_items(self, rows: list[sqlite3.Row]) -> list[WorkItem]:
        """Attach child ids to each row with one batched query."""
        if not rows:
            return []
        ids = [r["id"] for r in rows]
        children: dict[int, list[int]] = {i: [] for i in ids}
        for child in self._fetchall(
            f"SELECT id, parent_id FROM work_items WHERE parent_id IN ({_placeholders(ids)}) ORDER BY id",
            ids,
        ):
            children[child["parent_id"]].append(child["id"])
        return [WorkItem.from_row(r, children[r["id"]]) for r in rows]

    def list_work_items(
        self,
        project_id: int,
        *,
        types: Collection[str] | None = None,
        statuses: Collection[str] | None = None,
        priorities: Collection[str] | None = None,
        assignee_id: int | None | _Unset = UNSET,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[WorkItem]:
        """Items in a project, most recently updated first.

        ``assignee_id=None`` selects unassigned items; leave it unset for no
        assignee filter.
        """
        clauses = ["project_id = ?"]
        params: list[Any] = [project_id]
        for column, values, valid in (
            ("type", types, VALID_ITEM_TYPES),
            ("status", statuses, VALID_STATUSES),
            ("priority", priorities, VALID_PRIORITIES),
        ):
            if values:
                normalized = [require_choice(v, valid, column) for v in values]
                clauses.append(f"{column} IN ({_placeholders(normalized)})")
                params.extend(normalized)
        if assignee_id is None:
            clauses.append("assignee_id IS NULL")
        elif not isinstance(assignee_id, _Unset):
            clauses.append("assignee_id = ?")
            params.append(assignee_id)
        sql = f"SELECT * FROM work_items WHERE {' AND '.join(clauses)} ORDER BY updated_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        return self._build_items(self._fetchall(sql, params))

    def list_by_project(self, project_id: int) -> list[WorkItem]:
        return self.list_work_items(project_id)

    def list_by_parent(self, parent_id: int) -> list[WorkItem]:
        rows = self._fetchall(
            "SELECT * FROM work_items WHERE parent_id = ? ORDER BY updated_at DESC, id DESC",
            (parent_id,),
        )
        return self._build_items(rows)

    # -- Reporting -----------------------------------------------------------

    def count_by_project(self, project_id: int) -> int:
        row = self._fetchone("SELECT COUNT(*) AS n FROM work_items WHERE project_id = ?", (project_id,))
        return int(row["n"]) if row else 0

    def _count_grouped(self, project_id: int, column: str, vocabulary: Collection[str]) -> dict[str, int]:
        counts = dict.fromkeys(sorted(vocabulary), 0)
        for row in self._fetchall(
            f"SELECT {column} AS k, COUNT(*) AS n FROM work_items WHERE project_id = ? GROUP BY {column}",
            (project_id,),
        ):
            counts[row["k"]] = row["n"]
        return counts

    def count_by_status(self, project_id: int) -> dict[str, int]:
        return self._count_grouped(project_id, "status", VALID_STATUSES)

    def count_by_type(self, project_id: int) -> dict[str, int]:
        return self._count_grouped(project_id, "type", VALID_ITEM_TYPES)

    def count_by_priority(self, project_id: int) -> dict[str, int]:
        return self._count_grouped(project_id, "priority", VALID_PRIORITIES)

    # -- Update --------------------------------------------------------------

    def _normalize_changes(self, changes: Mapping[str, Any]) -> dict[str, Any]:
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            msg = f"Unknown work item field(s): {', '.join(sorted(unknown))}"
            raise ValidationError(msg, field=sorted(unknown)[0])
        values: dict[str, Any] = {}
        for name, raw in changes.items():
            match name:
                case "title":
                    values[name] = require_title(raw)
                case "description" | "tags":
                    values[name] = "" if raw is None else str(raw).strip()
                case "type":
                    values[name] = require_choice(raw, VALID_ITEM_TYPES, "type")
                case "status":
                    values[name] = require_choice(raw, VALID_STATUSES, "status")
                case "priority":
                    values[name] = require_choice(raw, VALID_PRIORITIES, "priority")
                case "parent_id" | "assignee_id":
                    values[name] = optional_int(raw, name)
                case "estimate":
                    values[name] = optional_number(raw, name)
                case "start_date":
                    values[name] = normalize_timestamp(raw)
                case "end_date":
                    values[name] = normalize_timestamp(raw, end_of_day=True)
        return values

    def update_work_item(self, item_id: int, changes: Mapping[str, Any], *, actor_id: int | None) -> WorkItem:
        """Field-level merge; one UPDATED history entry per changed field.

        Date fields are normalized and malformed dates become null. Reaching
        DONE stamps ``completed_at``; leaving DONE never clears it. A merge
        that changes nothing writes nothing.
        """
        values = self._normalize_changes(changes)
        current = self.get_work_item(item_id)
        if "parent_id" in values:
            self._check_parent(values["parent_id"], current.project_id, item_id)
        if "assignee_id" in values:
            self._check_assignee(values["assignee_id"])

        with self.transaction() as conn:
            # Re-read under the write lock so concurrent updates diff against
            # the committed state.
            row = conn.execute("SELECT * FROM work_items WHERE id = ?", (item_id,)).fetchone()
            if row is None:
                msg = f"Work item not found: {item_id}"
                raise NotFound(msg)
            delta = {k: (row[k], v) for k, v in values.items() if row[k] != v}
            if not delta:
                return current
            now = _now_iso()
            new_status = delta.get("status", (None, None))[1]
            if new_status == DONE_STATUS:
                delta["completed_at"] = (row["completed_at"], now)

            assignments = ", ".join(f"{col} = ?" for col in delta)
            conn.execute(
                f"UPDATE work_items SET {assignments}, updated_at = ?, updated_by = ? WHERE id = ?",
                (*(new for _, new in delta.values()), now, actor_id, item_id),
            )
            for field_name, (old, new) in delta.items():
                self.record(item_id, actor_id, field_name, old, new, "UPDATED")
        return self.get_work_item(item_id)

    def update_status(self, item_id: int, status: str, *, actor_id: int | None) -> WorkItem:
        return self.update_work_item(item_id, {"status": status}, actor_id=actor_id)

    # -- Delete --------------------------------------------------------------

    def delete_work_item(self, item_id: int, *, actor_id: int | None) -> DeleteOutcome:
        """Delete a childless item. A parent is left untouched, not an error."""
        with self.transaction() as conn:
            row = conn.execute("SELECT id, external_id FROM work_items WHERE id = ?", (item_id,)).fetchone()
            if row is None:
                return DeleteOutcome.NOT_FOUND
            if conn.execute("SELECT 1 FROM work_items WHERE parent_id = ? LIMIT 1", (item_id,)).fetchone():
                logger.info("Refused to delete %s: it has children", row["external_id"])
                return DeleteOutcome.BLOCKED_BY_CHILDREN
            self.record(item_id, actor_id, "item", row["external_id"], None, "DELETED")
            conn.execute("DELETE FROM work_items WHERE id = ?", (item_id,))
        logger.info("Deleted work item %s", row["external_id"])
        return DeleteOutcome.DELETED
