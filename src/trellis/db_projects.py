"""ProjectsMixin: projects, teams, and team memberships.

Team membership is the basis of project access, so this mixin also owns the
one operation that must be an explicit all-or-nothing transaction: deleting a
team removes its membership rows and then the team row, and any failure in
between leaves both untouched.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Collection, Mapping
from typing import Any

from trellis.db_base import DBMixinProtocol, _now_iso, _placeholders
from trellis.errors import Conflict, NotFound, ValidationError
from trellis.models import VALID_PROJECT_STATUSES, VALID_TEAM_ROLES, Project, Team, TeamMember
from trellis.validation import normalize_project_key, normalize_timestamp, optional_int, require_choice, require_text

logger = logging.getLogger(__name__)

_MAX_NAME_LENGTH = 100

PROJECT_FIELDS: frozenset[str] = frozenset(
    {"key", "name", "description", "status", "team_id", "start_date", "target_date"}
)


class ProjectsMixin(DBMixinProtocol):
    """Project and team CRUD plus membership management."""

    # -- Projects ------------------------------------------------------------

    def create_project(
        self,
        key: str,
        name: str,
        *,
        created_by: int | None = None,
        description: str = "",
        team_id: int | None = None,
        status: str = "ACTIVE",
        start_date: Any = None,
        target_date: Any = None,
    ) -> Project:
        key = normalize_project_key(key)
        name = require_text(name, "name", max_length=_MAX_NAME_LENGTH)
        status = require_choice(status, VALID_PROJECT_STATUSES, "status")
        team_id = optional_int(team_id, "team_id")
        if team_id is not None:
            self.get_team(team_id)
        if self._fetchone("SELECT 1 FROM projects WHERE key = ?", (key,)) is not None:
            msg = f"Project key '{key}' already exists"
            raise Conflict(msg, details={"field": "key"})

        now = _now_iso()
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    "INSERT INTO projects (key, name, description, status, team_id, created_by, "
                    "start_date, target_date, item_seq, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)",
                    (
                        key,
                        name,
                        (description or "").strip(),
                        status,
                        team_id,
                        created_by,
                        normalize_timestamp(start_date),
                        normalize_timestamp(target_date, end_of_day=True),
                        now,
                        now,
                    ),
                )
        except sqlite3.IntegrityError:
            # Lost a race with a concurrent create of the same key.
            msg = f"Project key '{key}' already exists"
            raise Conflict(msg, details={"field": "key"}) from None
        project_id = cursor.lastrowid
        assert project_id is not None
        logger.info("Created project %s (id=%d)", key, project_id)
        return self.get_project(project_id)

    def get_project(self, project_id: int) -> Project:
        row = self._fetchone("SELECT * FROM projects WHERE id = ?", (project_id,))
        if row is None:
            msg = f"Project not found: {project_id}"
            raise NotFound(msg)
        return Project.from_row(row)

    def get_project_by_key(self, key: str) -> Project:
        row = self._fetchone("SELECT * FROM projects WHERE key = ?", ((key or "").strip().upper(),))
        if row is None:
            msg = f"Project not found: {key}"
            raise NotFound(msg)
        return Project.from_row(row)

    def list_projects(self, *, team_ids: Collection[int] | None = None) -> list[Project]:
        """All projects, or only those assigned to one of *team_ids*."""
        if team_ids is None:
            rows = self._fetchall("SELECT * FROM projects ORDER BY key")
        else:
            ids = sorted(team_ids)
            if not ids:
                return []
            rows = self._fetchall(
                f"SELECT * FROM projects WHERE team_id IN ({_placeholders(ids)}) ORDER BY key",
                ids,
            )
        return [Project.from_row(r) for r in rows]

    def update_project(self, project_id: int, changes: Mapping[str, Any]) -> Project:
        """Merge *changes* into a project. Unknown fields are rejected."""
        unknown = set(changes) - PROJECT_FIELDS
        if unknown:
            msg = f"Unknown project field(s): {', '.join(sorted(unknown))}"
            raise ValidationError(msg, field=sorted(unknown)[0])
        current = self.get_project(project_id)

        values: dict[str, Any] = {}
        if "key" in changes:
            values["key"] = normalize_project_key(changes["key"])
        if "name" in changes:
            values["name"] = require_text(changes["name"], "name", max_length=_MAX_NAME_LENGTH)
        if "description" in changes:
            values["description"] = (changes["description"] or "").strip()
        if "status" in changes:
            values["status"] = require_choice(changes["status"], VALID_PROJECT_STATUSES, "status")
        if "team_id" in changes:
            values["team_id"] = optional_int(changes["team_id"], "team_id")
            if values["team_id"] is not None:
                self.get_team(values["team_id"])
        if "start_date" in changes:
            values["start_date"] = normalize_timestamp(changes["start_date"])
        if "target_date" in changes:
            values["target_date"] = normalize_timestamp(changes["target_date"], end_of_day=True)

        values = {k: v for k, v in values.items() if getattr(current, k) != v}
        if not values:
            return current
        if "key" in values and self._fetchone(
            "SELECT 1 FROM projects WHERE key = ? AND id != ?", (values["key"], project_id)
        ):
            msg = f"Project key '{values['key']}' already exists"
            raise Conflict(msg, details={"field": "key"})

        assignments = ", ".join(f"{col} = ?" for col in values)
        try:
            with self.transaction() as conn:
                conn.execute(
                    f"UPDATE projects SET {assignments}, updated_at = ? WHERE id = ?",
                    (*values.values(), _now_iso(), project_id),
                )
        except sqlite3.IntegrityError:
            msg = f"Project key '{values.get('key')}' already exists"
            raise Conflict(msg, details={"field": "key"}) from None
        return self.get_project(project_id)

    def delete_project(self, project_id: int) -> None:
        """Remove a project, its work items, and its identifier sequence.

        History entries for those items stay in the ledger.
        """
        project = self.get_project(project_id)
        with self.transaction() as conn:
            # One statement, so parent/child links inside the project never
            # trip the self-referencing foreign key midway.
            removed = conn.execute("DELETE FROM work_items WHERE project_id = ?", (project_id,)).rowcount
            conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        logger.info("Deleted project %s with %d work item(s)", project.key, removed)

    # -- Teams ---------------------------------------------------------------

    def create_team(self, name: str, *, created_by: int, description: str = "") -> Team:
        """Create a team; the creator joins it with team role ADMIN."""
        name = require_text(name, "name", max_length=_MAX_NAME_LENGTH)
        self.get_user(created_by)
        now = _now_iso()
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO teams (name, description, created_by, is_active, created_at, updated_at) "
                "VALUES (?, ?, ?, 1, ?, ?)",
                (name, (description or "").strip(), created_by, now, now),
            )
            team_id = cursor.lastrowid
            conn.execute(
                "INSERT INTO team_members (team_id, user_id, role, joined_at, updated_at) VALUES (?, ?, 'ADMIN', ?, ?)",
                (team_id, created_by, now, now),
            )
        assert team_id is not None
        return self.get_team(team_id)

    def get_team(self, team_id: int) -> Team:
        row = self._fetchone("SELECT * FROM teams WHERE id = ?", (team_id,))
        if row is None:
            msg = f"Team not found: {team_id}"
            raise NotFound(msg)
        return Team.from_row(row)

    def list_teams(self, *, user_id: int | None = None) -> list[Team]:
        """All teams, or only the ones *user_id* belongs to."""
        if user_id is None:
            rows = self._fetchall("SELECT * FROM teams ORDER BY name, id")
        else:
            rows = self._fetchall(
                "SELECT t.* FROM teams t JOIN team_members m ON m.team_id = t.id "
                "WHERE m.user_id = ? ORDER BY t.name, t.id",
                (user_id,),
            )
        return [Team.from_row(r) for r in rows]

    def delete_team(self, team_id: int) -> None:
        """Remove memberships then the team, all-or-nothing.

        Refused with Conflict while any project still references the team.
        """
        team = self.get_team(team_id)
        in_use = self._fetchone("SELECT COUNT(*) AS n FROM projects WHERE team_id = ?", (team_id,))
        if in_use is not None and in_use["n"]:
            msg = f"Team '{team.name}' is still assigned to {in_use['n']} project(s)"
            raise Conflict(msg, details={"projects": in_use["n"]})
        try:
            with self.transaction() as conn:
                conn.execute("DELETE FROM team_members WHERE team_id = ?", (team_id,))
                conn.execute("DELETE FROM teams WHERE id = ?", (team_id,))
        except sqlite3.IntegrityError as exc:
            logger.warning("Team %d deletion rolled back: %s", team_id, exc)
            msg = f"Team '{team.name}' could not be deleted: {exc}"
            raise Conflict(msg) from exc
        logger.info("Deleted team %s (id=%d)", team.name, team_id)

    # -- Memberships ---------------------------------------------------------

    def get_team_member(self, team_id: int, user_id: int) -> TeamMember:
        row = self._fetchone("SELECT * FROM team_members WHERE team_id = ? AND user_id = ?", (team_id, user_id))
        if row is None:
            msg = f"User {user_id} is not a member of team {team_id}"
            raise NotFound(msg)
        return TeamMember.from_row(row)

    def list_team_members(self, team_id: int) -> list[TeamMember]:
        self.get_team(team_id)
        rows = self._fetchall("SELECT * FROM team_members WHERE team_id = ? ORDER BY joined_at, id", (team_id,))
        return [TeamMember.from_row(r) for r in rows]

    def add_team_member(self, team_id: int, user_id: int, *, role: str = "MEMBER") -> TeamMember:
        role = require_choice(role, VALID_TEAM_ROLES, "role")
        self.get_team(team_id)
        self.get_user(user_id)
        now = _now_iso()
        try:
            with self.transaction() as conn:
                conn.execute(
                    "INSERT INTO team_members (team_id, user_id, role, joined_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                    (team_id, user_id, role, now, now),
                )
        except sqlite3.IntegrityError:
            msg = f"User {user_id} is already a member of team {team_id}"
            raise Conflict(msg) from None
        return self.get_team_member(team_id, user_id)

    def set_team_member_role(self, team_id: int, user_id: int, role: str) -> TeamMember:
        role = require_choice(role, VALID_TEAM_ROLES, "role")
        self.get_team_member(team_id, user_id)
        with self.transaction() as conn:
            conn.execute(
                "UPDATE team_members SET role = ?, updated_at = ? WHERE team_id = ? AND user_id = ?",
                (role, _now_iso(), team_id, user_id),
            )
        return self.get_team_member(team_id, user_id)

    def remove_team_member(self, team_id: int, user_id: int) -> None:
        self.get_team_member(team_id, user_id)
        with self.transaction() as conn:
            conn.execute("DELETE FROM team_members WHERE team_id = ? AND user_id = ?", (team_id, user_id))
