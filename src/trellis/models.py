"""Domain dataclasses returned by the store.

Entities are plain mutable dataclasses built fresh from rows on every read;
nothing here is cached across requests. ``AuthContext`` is frozen: it is the
request-scoped identity handed explicitly to every service call.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from enum import StrEnum

from trellis.types.core import ISOTimestamp, ProjectDict, TeamDict, TeamMemberDict, UserDict, WorkItemDict

VALID_STATUSES: frozenset[str] = frozenset({"TODO", "IN_PROGRESS", "DONE"})
VALID_PRIORITIES: frozenset[str] = frozenset({"LOW", "MEDIUM", "HIGH", "CRITICAL"})
VALID_PROJECT_STATUSES: frozenset[str] = frozenset({"PLANNING", "ACTIVE", "ARCHIVED", "COMPLETED"})
VALID_TEAM_ROLES: frozenset[str] = frozenset({"ADMIN", "MANAGER", "LEAD", "MEMBER", "VIEWER", "SCRUM_MASTER"})
DONE_STATUS = "DONE"


class DeleteOutcome(StrEnum):
    """Result of a work-item delete. Blocked deletes are not errors."""

    DELETED = "deleted"
    BLOCKED_BY_CHILDREN = "blocked_by_children"
    NOT_FOUND = "not_found"

    @property
    def deleted(self) -> bool:
        return self is DeleteOutcome.DELETED


@dataclass(frozen=True)
class AuthContext:
    """Who is acting on this request. Resolved once, passed everywhere."""

    user_id: int
    role: str
    username: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"


@dataclass
class User:
    id: int
    username: str
    email: str
    full_name: str = ""
    role: str = "USER"
    is_active: bool = True
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> User:
        return cls(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            full_name=row["full_name"],
            role=row["role"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> UserDict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": ISOTimestamp(self.created_at),
            "updated_at": ISOTimestamp(self.updated_at),
        }


@dataclass
class Team:
    id: int
    name: str
    description: str = ""
    created_by: int | None = None
    is_active: bool = True
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Team:
        return cls(
            id=row["id"],
            name=row["name"],
            description=row["description"] or "",
            created_by=row["created_by"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> TeamDict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_by": self.created_by,
            "is_active": self.is_active,
            "created_at": ISOTimestamp(self.created_at),
            "updated_at": ISOTimestamp(self.updated_at),
        }


@dataclass
class TeamMember:
    id: int
    team_id: int
    user_id: int
    role: str = "MEMBER"
    joined_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> TeamMember:
        return cls(
            id=row["id"],
            team_id=row["team_id"],
            user_id=row["user_id"],
            role=row["role"],
            joined_at=row["joined_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> TeamMemberDict:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "user_id": self.user_id,
            "role": self.role,
            "joined_at": ISOTimestamp(self.joined_at),
            "updated_at": ISOTimestamp(self.updated_at),
        }


@dataclass
class Project:
    id: int
    key: str
    name: str
    description: str = ""
    status: str = "ACTIVE"
    team_id: int | None = None
    created_by: int | None = None
    start_date: str | None = None
    target_date: str | None = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Project:
        return cls(
            id=row["id"],
            key=row["key"],
            name=row["name"],
            description=row["description"] or "",
            status=row["status"],
            team_id=row["team_id"],
            created_by=row["created_by"],
            start_date=row["start_date"],
            target_date=row["target_date"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> ProjectDict:
        return {
            "id": self.id,
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "team_id": self.team_id,
            "created_by": self.created_by,
            "start_date": ISOTimestamp(self.start_date) if self.start_date else None,
            "target_date": ISOTimestamp(self.target_date) if self.target_date else None,
            "created_at": ISOTimestamp(self.created_at),
            "updated_at": ISOTimestamp(self.updated_at),
        }


@dataclass
class WorkItem:
    id: int
    external_id: str
    title: str
    type: str
    project_id: int
    description: str = ""
    tags: str = ""
    status: str = "TODO"
    priority: str = "MEDIUM"
    parent_id: int | None = None
    assignee_id: int | None = None
    reporter_id: int | None = None
    updated_by: int | None = None
    estimate: float | None = None
    start_date: str | None = None
    end_date: str | None = None
    completed_at: str | None = None
    created_at: str = ""
    updated_at: str = ""
    # Computed (not stored directly)
    children: list[int] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: sqlite3.Row, children: list[int] | None = None) -> WorkItem:
        return cls(
            id=row["id"],
            external_id=row["external_id"],
            title=row["title"],
            type=row["type"],
            project_id=row["project_id"],
            description=row["description"] or "",
            tags=row["tags"] or "",
            status=row["status"],
            priority=row["priority"],
            parent_id=row["parent_id"],
            assignee_id=row["assignee_id"],
            reporter_id=row["reporter_id"],
            updated_by=row["updated_by"],
            estimate=row["estimate"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            completed_at=row["completed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            children=children or [],
        )

    def to_dict(self) -> WorkItemDict:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "title": self.title,
            "description": self.description,
            "tags": self.tags,
            "type": self.type,
            "status": self.status,
            "priority": self.priority,
            "project_id": self.project_id,
            "parent_id": self.parent_id,
            "assignee_id": self.assignee_id,
            "reporter_id": self.reporter_id,
            "updated_by": self.updated_by,
            "estimate": self.estimate,
            "start_date": ISOTimestamp(self.start_date) if self.start_date else None,
            "end_date": ISOTimestamp(self.end_date) if self.end_date else None,
            "completed_at": ISOTimestamp(self.completed_at) if self.completed_at else None,
            "created_at": ISOTimestamp(self.created_at),
            "updated_at": ISOTimestamp(self.updated_at),
            "children": self.children,
        }
