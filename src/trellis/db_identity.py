"""IdentityMixin: user accounts, sessions, and identity resolution.

Resolving a session is a pure lookup: the token must exist and be unexpired,
and its user must exist and be active. Every failure reads the same to the
caller, so a deactivated account is indistinguishable from an unknown one.
"""

from __future__ import annotations

import logging
import secrets
import sqlite3
from datetime import UTC, datetime, timedelta

from trellis.db_base import DBMixinProtocol, _now_iso
from trellis.errors import Conflict, NotFound, Unauthenticated, ValidationError
from trellis.models import AuthContext, User
from trellis.permissions import VALID_ROLES
from trellis.validation import require_choice, require_text, sanitize_username

logger = logging.getLogger(__name__)


class IdentityMixin(DBMixinProtocol):
    """Users, sessions, and team-membership lookups used by the access gate."""

    # -- Users ---------------------------------------------------------------

    def create_user(self, username: str, email: str, *, full_name: str = "", role: str = "USER") -> User:
        cleaned, err = sanitize_username(username)
        if err:
            raise ValidationError(err, field="username")
        email = require_text(email, "email", max_length=254)
        if "@" not in email:
            raise ValidationError("email must be a valid address", field="email")
        role = require_choice(role, VALID_ROLES, "role")
        now = _now_iso()
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    "INSERT INTO users (username, email, full_name, role, is_active, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, 1, ?, ?)",
                    (cleaned, email, (full_name or "").strip(), role, now, now),
                )
        except sqlite3.IntegrityError:
            msg = f"A user with username '{cleaned}' or email '{email}' already exists"
            raise Conflict(msg) from None
        user_id = cursor.lastrowid
        assert user_id is not None
        logger.info("Created user %s (%s)", cleaned, role)
        return self.get_user(user_id)

    def get_user(self, user_id: int) -> User:
        row = self._fetchone("SELECT * FROM users WHERE id = ?", (user_id,))
        if row is None:
            msg = f"User not found: {user_id}"
            raise NotFound(msg)
        return User.from_row(row)

    def get_user_by_username(self, username: str) -> User:
        row = self._fetchone("SELECT * FROM users WHERE username = ?", ((username or "").strip(),))
        if row is None:
            msg = f"User not found: {username}"
            raise NotFound(msg)
        return User.from_row(row)

    def list_users(self, *, include_inactive: bool = True) -> list[User]:
        sql = "SELECT * FROM users"
        if not include_inactive:
            sql += " WHERE is_active = 1"
        rows = self._fetchall(sql + " ORDER BY username")
        return [User.from_row(r) for r in rows]

    def set_user_role(self, user_id: int, role: str) -> User:
        role = require_choice(role, VALID_ROLES, "role")
        self.get_user(user_id)
        with self.transaction() as conn:
            conn.execute("UPDATE users SET role = ?, updated_at = ? WHERE id = ?", (role, _now_iso(), user_id))
        return self.get_user(user_id)

    def deactivate_user(self, user_id: int) -> User:
        """Mark a user inactive and revoke every session they hold."""
        self.get_user(user_id)
        with self.transaction() as conn:
            conn.execute("UPDATE users SET is_active = 0, updated_at = ? WHERE id = ?", (_now_iso(), user_id))
            conn.execute("DELETE FROM sessions WHERE user_id = ?", (user_id,))
        return self.get_user(user_id)

    # -- Sessions ------------------------------------------------------------

    def open_session(self, user_id: int) -> str:
        """Issue a new opaque session token for an active user."""
        row = self._fetchone("SELECT is_active FROM users WHERE id = ?", (user_id,))
        if row is None or not row["is_active"]:
            raise Unauthenticated
        now = datetime.now(UTC)
        token = secrets.token_urlsafe(32)
        expires = now + timedelta(hours=self.session_ttl_hours)
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO sessions (token, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
                (token, user_id, now.isoformat(), expires.isoformat()),
            )
        return token

    def close_session(self, token: str) -> bool:
        """Revoke *token*. Returns False when it was not an open session."""
        if not token:
            return False
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE token = ?", (token,))
        return cursor.rowcount > 0

    def purge_expired_sessions(self) -> int:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE expires_at <= ?", (_now_iso(),))
        return cursor.rowcount

    def resolve_session(self, token: str | None) -> AuthContext:
        """Map an opaque token to the acting identity, or raise Unauthenticated."""
        if not token:
            raise Unauthenticated
        row = self._fetchone(
            "SELECT u.id, u.username, u.role FROM sessions s JOIN users u ON u.id = s.user_id "
            "WHERE s.token = ? AND s.expires_at > ? AND u.is_active = 1",
            (token, _now_iso()),
        )
        if row is None:
            raise Unauthenticated
        return AuthContext(user_id=row["id"], role=row["role"], username=row["username"])

    # -- Membership facts ----------------------------------------------------

    def member_team_ids(self, user_id: int) -> set[int]:
        """IDs of every team *user_id* is a recorded member of."""
        rows = self._fetchall("SELECT team_id FROM team_members WHERE user_id = ?", (user_id,))
        return {r["team_id"] for r in rows}
