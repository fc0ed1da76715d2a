"""Database schema definitions for the trellis project tracker.

Contains the canonical SQL schema and the current schema version constant.
"""

from __future__ import annotations

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS users (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    username    TEXT NOT NULL UNIQUE,
    email       TEXT NOT NULL UNIQUE,
    full_name   TEXT NOT NULL DEFAULT '',
    role        TEXT NOT NULL DEFAULT 'USER',
    is_active   INTEGER NOT NULL DEFAULT 1,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    CHECK (role IN ('ADMIN', 'SCRUM_MASTER', 'USER'))
);

CREATE TABLE IF NOT EXISTS sessions (
    token       TEXT PRIMARY KEY,
    user_id     INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    created_at  TEXT NOT NULL,
    expires_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id);

CREATE TABLE IF NOT EXISTS teams (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT NOT NULL,
    description TEXT DEFAULT '',
    created_by  INTEGER REFERENCES users(id) ON DELETE SET NULL,
    is_active   INTEGER NOT NULL DEFAULT 1,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_teams_name ON teams(name);

-- No cascade from teams: team deletion removes memberships explicitly,
-- inside the same transaction as the team row.
CREATE TABLE IF NOT EXISTS team_members (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    team_id     INTEGER NOT NULL REFERENCES teams(id),
    user_id     INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    role        TEXT NOT NULL DEFAULT 'MEMBER',
    joined_at   TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    UNIQUE (team_id, user_id),
    CHECK (role IN ('ADMIN', 'MANAGER', 'LEAD', 'MEMBER', 'VIEWER', 'SCRUM_MASTER'))
);

CREATE INDEX IF NOT EXISTS idx_team_members_user ON team_members(user_id);

CREATE TABLE IF NOT EXISTS projects (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    key         TEXT NOT NULL UNIQUE,
    name        TEXT NOT NULL,
    description TEXT DEFAULT '',
    status      TEXT NOT NULL DEFAULT 'ACTIVE',
    team_id     INTEGER REFERENCES teams(id),
    created_by  INTEGER REFERENCES users(id) ON DELETE SET NULL,
    start_date  TEXT,
    target_date TEXT,
    item_seq    INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    CHECK (status IN ('PLANNING', 'ACTIVE', 'ARCHIVED', 'COMPLETED')),
    CHECK (item_seq >= 0)
);

CREATE INDEX IF NOT EXISTS idx_projects_team ON projects(team_id);

CREATE TABLE IF NOT EXISTS work_items (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    external_id  TEXT NOT NULL,
    title        TEXT NOT NULL,
    description  TEXT DEFAULT '',
    tags         TEXT DEFAULT '',
    type         TEXT NOT NULL,
    status       TEXT NOT NULL DEFAULT 'TODO',
    priority     TEXT NOT NULL DEFAULT 'MEDIUM',
    project_id   INTEGER NOT NULL REFERENCES projects(id),
    parent_id    INTEGER REFERENCES work_items(id),
    assignee_id  INTEGER REFERENCES users(id) ON DELETE SET NULL,
    reporter_id  INTEGER REFERENCES users(id) ON DELETE SET NULL,
    updated_by   INTEGER REFERENCES users(id) ON DELETE SET NULL,
    estimate     REAL,
    start_date   TEXT,
    end_date     TEXT,
    completed_at TEXT,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL,
    UNIQUE (project_id, external_id),
    CHECK (type IN ('EPIC', 'FEATURE', 'STORY', 'TASK', 'BUG')),
    CHECK (status IN ('TODO', 'IN_PROGRESS', 'DONE')),
    CHECK (priority IN ('LOW', 'MEDIUM', 'HIGH', 'CRITICAL'))
);

CREATE INDEX IF NOT EXISTS idx_work_items_project ON work_items(project_id, updated_at DESC);
CREATE INDEX IF NOT EXISTS idx_work_items_parent ON work_items(parent_id);
CREATE INDEX IF NOT EXISTS idx_work_items_type_status ON work_items(type, status);
CREATE INDEX IF NOT EXISTS idx_work_items_assignee ON work_items(assignee_id);

-- Discussion thread of a work item; removed together with the item.
CREATE TABLE IF NOT EXISTS work_item_comments (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    work_item_id INTEGER NOT NULL REFERENCES work_items(id) ON DELETE CASCADE,
    user_id      INTEGER REFERENCES users(id) ON DELETE SET NULL,
    content      TEXT NOT NULL,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_comments_item ON work_item_comments(work_item_id, created_at);

-- Append-only audit ledger. No foreign keys: entries outlive deleted
-- work items and are recorded verbatim.
CREATE TABLE IF NOT EXISTS work_item_history (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    work_item_id INTEGER NOT NULL,
    user_id      INTEGER,
    field_name   TEXT NOT NULL,
    old_value    TEXT,
    new_value    TEXT,
    change_type  TEXT NOT NULL,
    created_at   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_history_item_time ON work_item_history(work_item_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_history_user ON work_item_history(user_id);

CREATE TRIGGER IF NOT EXISTS work_item_history_no_update
BEFORE UPDATE ON work_item_history BEGIN
    SELECT RAISE(ABORT, 'work_item_history is append-only');
END;

CREATE TRIGGER IF NOT EXISTS work_item_history_no_delete
BEFORE DELETE ON work_item_history BEGIN
    SELECT RAISE(ABORT, 'work_item_history is append-only');
END;
"""

CURRENT_SCHEMA_VERSION = 2
