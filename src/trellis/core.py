"""Core database operations for the project tracker.

Single source of truth for all SQLite operations. The CLI, the HTTP API and
the service layer all import from this module. No daemon and no cache, just
direct SQLite with WAL mode; every read goes to the database.

Covers users and sessions, teams and memberships, projects, work items with
their per-project identifier sequence, work-item comments, and the
work-item history ledger.

Convention-based discovery: each workspace has a `.trellis/` directory
containing `trellis.db` (SQLite) and `config.json`.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import sqlite3
from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import Any

from trellis.db_comments import CommentsMixin
from trellis.db_history import HistoryMixin
from trellis.db_identity import IdentityMixin
from trellis.db_projects import ProjectsMixin
from trellis.db_schema import CURRENT_SCHEMA_VERSION, SCHEMA_SQL
from trellis.db_work_items import WorkItemsMixin
from trellis.errors import StoreUnavailable
from trellis.models import (
    AuthContext,
    DeleteOutcome,
    Project,
    Team,
    TeamMember,
    User,
    WorkItem,
)
from trellis.types.core import TrellisConfig

logger = logging.getLogger(__name__)

__all__ = [
    "CONFIG_FILENAME",
    "DB_FILENAME",
    "TRELLIS_DIR_NAME",
    "AuthContext",
    "DeleteOutcome",
    "Project",
    "Team",
    "TeamMember",
    "TrellisDB",
    "User",
    "WorkItem",
    "find_trellis_root",
    "read_config",
    "write_config",
]

# ---------------------------------------------------------------------------
# Convention-based discovery
# ---------------------------------------------------------------------------

TRELLIS_DIR_NAME = ".trellis"
DB_FILENAME = "trellis.db"
CONFIG_FILENAME = "config.json"
SESSION_FILENAME = "session"

DEFAULT_SESSION_COOKIE = "trellis_session"
DEFAULT_SESSION_TTL_HOURS = 72


def find_trellis_root(start: Path | None = None) -> Path:
    """Walk up from start (default cwd) looking for .trellis/ directory.

    Returns the .trellis/ directory path (not the workspace root).
    """
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        candidate = parent / TRELLIS_DIR_NAME
        if candidate.is_dir():
            return candidate
    msg = f"No {TRELLIS_DIR_NAME}/ directory found in {current} or any parent"
    raise FileNotFoundError(msg)


def read_config(trellis_dir: Path) -> TrellisConfig:
    """Read .trellis/config.json. Returns defaults if missing or corrupt.

    ``TRELLIS_SESSION_COOKIE`` overrides the configured cookie name.
    """
    config = TrellisConfig(
        version=1,
        session_cookie=DEFAULT_SESSION_COOKIE,
        session_ttl_hours=DEFAULT_SESSION_TTL_HOURS,
        log_level="INFO",
    )
    config_path = trellis_dir / CONFIG_FILENAME
    if config_path.exists():
        try:
            loaded = json.loads(config_path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to read %s, using defaults: %s", config_path, exc)
        else:
            if isinstance(loaded, dict):
                config.update(loaded)  # type: ignore[typeddict-item]
            else:
                logger.warning("Ignoring %s: expected a JSON object", config_path)
    cookie = os.environ.get("TRELLIS_SESSION_COOKIE", "").strip()
    if cookie:
        config["session_cookie"] = cookie
    return config


def write_config(trellis_dir: Path, config: dict[str, Any] | TrellisConfig) -> None:
    """Write .trellis/config.json."""
    config_path = trellis_dir / CONFIG_FILENAME
    config_path.write_text(json.dumps(config, indent=2) + "\n")


# ---------------------------------------------------------------------------
# TrellisDB: the core
# ---------------------------------------------------------------------------


class TrellisDB(IdentityMixin, ProjectsMixin, WorkItemsMixin, CommentsMixin, HistoryMixin):
    """Direct SQLite operations. No daemon, no cache. Importable by CLI and API."""

    def __init__(
        self,
        db_path: str | Path,
        *,
        session_ttl_hours: int = DEFAULT_SESSION_TTL_HOURS,
        check_same_thread: bool = True,
    ) -> None:
        self.db_path = Path(db_path)
        self.session_ttl_hours = session_ttl_hours
        self._conn: sqlite3.Connection | None = None
        self._check_same_thread = check_same_thread

    @classmethod
    def from_project(cls, project_path: Path | None = None, *, check_same_thread: bool = True) -> TrellisDB:
        """Create a TrellisDB by discovering .trellis/ from project_path (or cwd)."""
        trellis_dir = find_trellis_root(project_path)
        config = read_config(trellis_dir)
        db = cls(
            trellis_dir / DB_FILENAME,
            session_ttl_hours=int(config.get("session_ttl_hours", DEFAULT_SESSION_TTL_HOURS)),
            check_same_thread=check_same_thread,
        )
        db.initialize()
        return db

    def __enter__(self) -> TrellisDB:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        # isolation_level=None: no implicit BEGIN. Writes open their own
        # BEGIN IMMEDIATE via transaction(); reads never hold a lock.
        if self._conn is None:
            try:
                conn = sqlite3.connect(
                    str(self.db_path),
                    isolation_level=None,
                    check_same_thread=self._check_same_thread,
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA busy_timeout=5000")
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA foreign_keys=ON")
            except sqlite3.Error as exc:
                logger.error("Cannot open database %s", self.db_path, exc_info=True)
                raise StoreUnavailable(f"Cannot open database: {exc}") from exc
            self._conn = conn
        return self._conn

    def initialize(self) -> None:
        """Create tables on a fresh database and stamp the schema version.

        Every statement in the schema is idempotent, so an older database is
        brought forward by replaying it.
        """
        current_version = self.get_schema_version()
        if current_version == 0:
            self.conn.executescript(SCHEMA_SQL)
            self.conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION}")
            logger.info("Initialized schema v%d at %s", CURRENT_SCHEMA_VERSION, self.db_path)
        elif current_version < CURRENT_SCHEMA_VERSION:
            self.conn.executescript(SCHEMA_SQL)
            self.conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION}")
            logger.info("Upgraded schema v%d -> v%d at %s", current_version, CURRENT_SCHEMA_VERSION, self.db_path)
        elif current_version > CURRENT_SCHEMA_VERSION:
            logger.warning(
                "Database %s has schema v%d, newer than this release (v%d)",
                self.db_path,
                current_version,
                CURRENT_SCHEMA_VERSION,
            )

    def get_schema_version(self) -> int:
        """Return the current schema version from PRAGMA user_version."""
        result: int = self.conn.execute("PRAGMA user_version").fetchone()[0]
        return result

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def reconnect(self, *, check_same_thread: bool | None = None) -> None:
        """Close and reopen the connection, optionally changing thread affinity."""
        self.close()
        if check_same_thread is not None:
            self._check_same_thread = check_same_thread

    # -- Transactions / guarded reads ----------------------------------------

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed writes as one ``BEGIN IMMEDIATE`` transaction.

        The write lock is taken up front, so a read-then-write inside the
        block cannot interleave with another writer. Nested use joins the
        outer transaction. Integrity errors propagate unchanged (callers map
        them to domain errors); any other SQLite failure rolls back and
        surfaces as :class:`StoreUnavailable`.
        """
        conn = self.conn
        if conn.in_transaction:
            yield conn
            return
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            logger.error("Cannot begin write transaction on %s", self.db_path, exc_info=True)
            raise StoreUnavailable(f"Store is not writable: {exc}") from exc
        try:
            yield conn
        except sqlite3.IntegrityError:
            conn.rollback()
            raise
        except sqlite3.Error as exc:
            conn.rollback()
            logger.error("Write failed on %s, rolled back", self.db_path, exc_info=True)
            raise StoreUnavailable(f"Store write failed: {exc}") from exc
        except BaseException:
            conn.rollback()
            raise
        try:
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            logger.error("Commit failed on %s, rolled back", self.db_path, exc_info=True)
            raise StoreUnavailable(f"Store commit failed: {exc}") from exc

    def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        try:
            return self.conn.execute(sql, params).fetchall()
        except sqlite3.OperationalError as exc:
            raise StoreUnavailable(f"Store read failed: {exc}") from exc

    def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        try:
            row: sqlite3.Row | None = self.conn.execute(sql, params).fetchone()
        except sqlite3.OperationalError as exc:
            raise StoreUnavailable(f"Store read failed: {exc}") from exc
        return row
