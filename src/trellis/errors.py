"""Error taxonomy shared by the store, the service layer, and both outer surfaces.

Every error carries a stable machine ``code`` and the HTTP status the
dashboard API maps it to. ``NotFound`` and ``ValidationError`` also subclass
``KeyError``/``ValueError`` so store callers can keep catching the builtin
types.
"""

from __future__ import annotations

from typing import Any


class TrellisError(Exception):
    """Base class for all domain errors."""

    code = "ERROR"
    status_code = 500

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class Unauthenticated(TrellisError):
    """No session, an unknown/expired token, or an inactive user."""

    code = "UNAUTHENTICATED"
    status_code = 401

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class Forbidden(TrellisError):
    """Role, ownership, or project-access policy denied the operation."""

    code = "FORBIDDEN"
    status_code = 403


class NotFound(TrellisError, KeyError):
    """Referenced project, team, member, user, or work item does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class ValidationError(TrellisError, ValueError):
    """A required field is missing or a value is malformed.

    ``field`` names the offending input so callers can point at it.
    """

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message, details={"field": field} if field else None)
        self.field = field


class Conflict(TrellisError):
    """Uniqueness or referential rule would be violated (duplicate key, team still in use)."""

    code = "CONFLICT"
    status_code = 409


class StoreUnavailable(TrellisError):
    """The underlying SQLite store could not be reached or written."""

    code = "STORE_UNAVAILABLE"
    status_code = 503
