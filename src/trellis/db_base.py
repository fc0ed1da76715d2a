"""Shared utilities, types, and Protocol for DB mixins."""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from contextlib import AbstractContextManager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from trellis.core import Project, Team, User, WorkItem


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _placeholders(values: Sequence[object]) -> str:
    return ",".join("?" * len(values))


class DBMixinProtocol(Protocol):
    """Shared attributes and methods that DB mixins access via self.

    Mixins inherit this Protocol so mypy can type-check self.conn,
    self.get_work_item(), etc. without ``type: ignore`` on every call.
    Actual implementations are provided by TrellisDB at composition time.
    """

    db_path: Path
    session_ttl_hours: int
    _conn: sqlite3.Connection | None

    @property
    def conn(self) -> sqlite3.Connection: ...

    def transaction(self) -> AbstractContextManager[sqlite3.Connection]: ...

    def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]: ...

    def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None: ...

    def get_user(self, user_id: int) -> User: ...

    def get_project(self, project_id: int) -> Project: ...

    def get_team(self, team_id: int) -> Team: ...

    def get_work_item(self, item_id: int) -> WorkItem: ...
