"""Shared validation and normalization functions for all entry points.

Pure functions with no SQLite, FastAPI, or Click dependencies.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from collections.abc import Collection
from datetime import UTC, date, datetime, time
from typing import Any

from trellis.errors import ValidationError

logger = logging.getLogger(__name__)

_MAX_USERNAME_LENGTH = 50
_MAX_TITLE_LENGTH = 200
_PROJECT_KEY_PATTERN = re.compile(r"^[A-Z0-9]{2,10}$")
_DATE_ONLY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_NULL_STRINGS = frozenset({"", "null", "none"})


def sanitize_username(value: Any) -> tuple[str, str | None]:
    """Validate and clean a username.

    Returns (cleaned, None) on success or ("", error_message) on failure.
    Strips whitespace, then checks: non-empty, max length, no control/format chars.
    """
    if not isinstance(value, str):
        return ("", "username must be a string")
    # Check for control/format chars before stripping; reject "\nbad" rather
    # than silently absorbing the newline via strip().
    for ch in value:
        if unicodedata.category(ch).startswith("C"):
            return ("", f"username must not contain control characters (found U+{ord(ch):04X})")
    cleaned = value.strip()
    if not cleaned:
        return ("", "username must not be empty")
    if len(cleaned) > _MAX_USERNAME_LENGTH:
        return ("", f"username must be at most {_MAX_USERNAME_LENGTH} characters")
    return (cleaned, None)


def require_text(value: Any, field: str, *, max_length: int | None = None) -> str:
    """Return *value* stripped, raising ValidationError when missing or blank."""
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field=field)
    cleaned = value.strip()
    if not cleaned:
        raise ValidationError(f"{field} cannot be empty", field=field)
    if max_length is not None and len(cleaned) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", field=field)
    return cleaned


def require_title(value: Any) -> str:
    return require_text(value, "title", max_length=_MAX_TITLE_LENGTH)


def require_choice(value: Any, valid: Collection[str], field: str) -> str:
    """Upper-case *value* and check it against *valid*.

    Missing values raise with "is required"; unknown ones list the choices.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", field=field)
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field=field)
    normalized = value.strip().upper()
    if normalized not in valid:
        choices = ", ".join(sorted(valid))
        raise ValidationError(f"Invalid {field} '{value}'. Valid values: {choices}", field=field)
    return normalized


def normalize_project_key(value: Any) -> str:
    """Trim and upper-case a project key; it must be 2-10 letters/digits."""
    key = require_text(value, "key").upper()
    if not _PROJECT_KEY_PATTERN.match(key):
        raise ValidationError("Project key must be 2-10 uppercase letters and numbers only", field="key")
    return key


def optional_int(value: Any, field: str) -> int | None:
    """Coerce an optional positive integer reference; 0/None/"" mean unset."""
    if value is None or value == "" or value == 0:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", field=field) from None
    if result < 0:
        raise ValidationError(f"{field} must be positive", field=field)
    return result or None


def optional_number(value: Any, field: str) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", field=field) from None


def normalize_timestamp(value: Any, *, end_of_day: bool = False) -> str | None:
    """Normalize a date-like input to a canonical UTC ISO-8601 timestamp.

    ``YYYY-MM-DD`` becomes midnight, or 23:59:59 when *end_of_day* is set.
    Naive datetimes are taken as UTC. Empty or unparseable input yields
    ``None`` instead of an error so one bad date never sinks a whole update.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time(23, 59, 59) if end_of_day else time.min)
    elif isinstance(value, str):
        text = value.strip()
        if text.lower() in _NULL_STRINGS:
            return None
        try:
            if _DATE_ONLY_PATTERN.match(text):
                day = date.fromisoformat(text)
                parsed = datetime.combine(day, time(23, 59, 59) if end_of_day else time.min)
            else:
                parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.warning("Discarding unparseable date value %r", value)
            return None
    else:
        logger.warning("Discarding non-date value %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).isoformat()
