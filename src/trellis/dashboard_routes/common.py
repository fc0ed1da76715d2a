"""Shared helpers and constants for dashboard route modules."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from fastapi.responses import JSONResponse
    from starlette.requests import Request

from trellis import service
from trellis.core import TrellisDB
from trellis.errors import TrellisError, ValidationError
from trellis.models import AuthContext, DeleteOutcome
from trellis.validation import optional_int

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_BEARER_PREFIX = "bearer "

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error_response(
    message: str,
    code: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Return a structured error response and log the error."""
    from fastapi.responses import JSONResponse

    logger.warning("API error [%s] %s: %s", status_code, code, message)
    return JSONResponse(
        {"error": {"message": message, "code": code, "details": details or {}}},
        status_code=status_code,
    )


def _domain_error(exc: TrellisError) -> JSONResponse:
    """Render a domain exception with its own code and HTTP status."""
    return _error_response(exc.message, exc.code, exc.status_code, exc.details)


def _delete_outcome_response(outcome: DeleteOutcome, item_id: int) -> JSONResponse:
    """A blocked delete is a 409 the client can explain, not a generic failure."""
    from fastapi.responses import JSONResponse

    if outcome is DeleteOutcome.NOT_FOUND:
        return _error_response(f"Work item not found: {item_id}", "NOT_FOUND", 404)
    if outcome is DeleteOutcome.BLOCKED_BY_CHILDREN:
        return _error_response(
            "Cannot delete a work item that has child items. Delete or re-parent the children first.",
            "HAS_CHILDREN",
            409,
            {"outcome": outcome.value},
        )
    return JSONResponse({"deleted": True, "outcome": outcome.value})


async def _parse_json_body(request: Request) -> dict[str, Any] | JSONResponse:
    """Parse and validate a JSON object body, returning 400 on failure."""
    import json

    try:
        body = await request.json()
    except (json.JSONDecodeError, ValueError, UnicodeDecodeError):
        return _error_response("Invalid JSON body", "VALIDATION_ERROR", 400)
    if not isinstance(body, dict):
        return _error_response("Request body must be a JSON object", "VALIDATION_ERROR", 400)
    return body


async def _authenticated_body(
    request: Request, db: TrellisDB
) -> tuple[AuthContext, dict[str, Any]] | JSONResponse:
    """Resolve the caller, then parse the body.

    An anonymous request is answered 401 whatever its body holds.
    """
    try:
        auth = _authenticate(request, db)
    except TrellisError as exc:
        return _domain_error(exc)
    body = await _parse_json_body(request)
    if isinstance(body, dict):
        return auth, body
    return body


def _required_int(body: Mapping[str, Any], name: str) -> int:
    value = optional_int(body.get(name), name)
    if value is None:
        raise ValidationError(f"{name} is required", field=name)
    return value


def _safe_int(value: str, name: str, *, min_value: int | None = None) -> int | JSONResponse:
    """Parse a query-param string to int, returning a 400 error response on failure.

    When *min_value* is set, values below that floor are rejected with 400.
    """
    try:
        result = int(value)
    except (ValueError, TypeError):
        return _error_response(
            f'Invalid value for {name}: "{value}". Must be an integer.',
            "VALIDATION_ERROR",
            400,
        )
    if min_value is not None and result < min_value:
        return _error_response(
            f"Invalid value for {name}: {result}. Must be >= {min_value}.",
            "VALIDATION_ERROR",
            400,
        )
    return result


def _parse_csv_param(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def _session_token(request: Request) -> str | None:
    """Session token from the session cookie, else an ``Authorization: Bearer`` header."""
    from trellis.dashboard import _session_cookie_name

    token = request.cookies.get(_session_cookie_name())
    if token:
        return token
    header = request.headers.get("authorization", "")
    if header.lower().startswith(_BEARER_PREFIX):
        return header[len(_BEARER_PREFIX) :].strip() or None
    return None


def _authenticate(request: Request, db: TrellisDB) -> AuthContext:
    """Resolve the caller; raises Unauthenticated."""
    return service.resolve(db, _session_token(request))
