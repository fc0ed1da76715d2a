"""Shared CLI helpers used by ``cli.py`` and the ``cli_commands/*.py`` modules.

Provides store discovery, the on-disk session token (``.trellis/session``),
and uniform error output so command modules don't import each other.
"""

from __future__ import annotations

import json as json_mod
import sys
from pathlib import Path
from typing import Any, NoReturn

import click

from trellis import service
from trellis.core import (
    DB_FILENAME,
    DEFAULT_SESSION_TTL_HOURS,
    SESSION_FILENAME,
    TRELLIS_DIR_NAME,
    TrellisDB,
    find_trellis_root,
    read_config,
)
from trellis.errors import Unauthenticated
from trellis.logging import setup_logging
from trellis.models import AuthContext


def trellis_dir() -> Path:
    """Discover .trellis/ or exit with a hint."""
    try:
        return find_trellis_root()
    except FileNotFoundError:
        click.echo(f"No {TRELLIS_DIR_NAME}/ found. Run 'trellis init' first.", err=True)
        sys.exit(1)


def get_db() -> TrellisDB:
    """Discover .trellis/ and return an initialized TrellisDB."""
    found = trellis_dir()
    config = read_config(found)
    setup_logging(found, level=config.get("log_level", "INFO"))
    ttl = int(config.get("session_ttl_hours", DEFAULT_SESSION_TTL_HOURS))
    db = TrellisDB(found / DB_FILENAME, session_ttl_hours=ttl)
    db.initialize()
    return db


# ---------------------------------------------------------------------------
# Session token file
# ---------------------------------------------------------------------------


def _session_file() -> Path:
    return trellis_dir() / SESSION_FILENAME


def save_session(token: str) -> None:
    path = _session_file()
    path.write_text(token + "\n")
    path.chmod(0o600)


def load_session() -> str | None:
    path = _session_file()
    if not path.exists():
        return None
    return path.read_text().strip() or None


def clear_session() -> None:
    _session_file().unlink(missing_ok=True)


def require_auth(db: TrellisDB, *, as_json: bool = False) -> AuthContext:
    """Resolve the stored session, or exit telling the user to log in."""
    try:
        return service.resolve(db, load_session())
    except Unauthenticated:
        fail("Not logged in (or session expired). Run 'trellis login <username>'.", as_json)


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def fail(message: str, as_json: bool = False) -> NoReturn:
    if as_json:
        click.echo(json_mod.dumps({"error": message}))
    else:
        click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def echo_json(data: Any) -> None:
    click.echo(json_mod.dumps(data, indent=2, default=str))


def resolve_item_ref(db: TrellisDB, ref: str) -> int:
    """Accept a numeric id or an external id such as ``PROJ-007``."""
    if ref.isdigit():
        return int(ref)
    return db.get_work_item_by_external_id(ref).id


def resolve_project_ref(db: TrellisDB, ref: str) -> int:
    """Accept a numeric id or a project key."""
    if ref.isdigit():
        return int(ref)
    return db.get_project_by_key(ref).id


def resolve_user_ref(db: TrellisDB, ref: str) -> int:
    """Accept a numeric id or a username."""
    if ref.isdigit():
        return int(ref)
    return db.get_user_by_username(ref).id
