"""Foundational TypedDicts for dataclass to_dict() returns."""

from __future__ import annotations

from typing import NewType, TypedDict

ISOTimestamp = NewType("ISOTimestamp", str)


class TrellisConfig(TypedDict, total=False):
    """Shape of .trellis/config.json."""

    version: int
    session_cookie: str
    session_ttl_hours: int
    log_level: str


class UserDict(TypedDict):
    id: int
    username: str
    email: str
    full_name: str
    role: str
    is_active: bool
    created_at: ISOTimestamp
    updated_at: ISOTimestamp


class TeamDict(TypedDict):
    id: int
    name: str
    description: str
    created_by: int | None
    is_active: bool
    created_at: ISOTimestamp
    updated_at: ISOTimestamp


class TeamMemberDict(TypedDict):
    id: int
    team_id: int
    user_id: int
    role: str
    joined_at: ISOTimestamp
    updated_at: ISOTimestamp


class ProjectDict(TypedDict):
    id: int
    key: str
    name: str
    description: str
    status: str
    team_id: int | None
    created_by: int | None
    start_date: ISOTimestamp | None
    target_date: ISOTimestamp | None
    created_at: ISOTimestamp
    updated_at: ISOTimestamp


class WorkItemDict(TypedDict):
    id: int
    external_id: str
    title: str
    description: str
    tags: str
    type: str
    status: str
    priority: str
    project_id: int
    parent_id: int | None
    assignee_id: int | None
    reporter_id: int | None
    updated_by: int | None
    estimate: float | None
    start_date: ISOTimestamp | None
    end_date: ISOTimestamp | None
    completed_at: ISOTimestamp | None
    created_at: ISOTimestamp
    updated_at: ISOTimestamp
    children: list[int]
