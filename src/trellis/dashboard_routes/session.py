"""Session route handlers: development login, logout, whoami."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.requests import Request

if TYPE_CHECKING:
    from fastapi import APIRouter

from trellis import service
from trellis.core import TrellisDB
from trellis.dashboard_routes.common import (
    _authenticate,
    _domain_error,
    _parse_json_body,
    _session_token,
)
from trellis.errors import TrellisError

# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------


def create_router() -> APIRouter:
    """Build the APIRouter for session endpoints.

    The token is handed back both in the body (for ``Authorization: Bearer``
    clients) and as an HTTP-only cookie.
    """
    from fastapi import APIRouter, Depends
    from fastapi.responses import JSONResponse

    from trellis.dashboard import _get_db, _session_cookie_name, _session_max_age

    router = APIRouter()

    @router.post("/session")
    async def api_login(request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            token, auth = service.login(db, username=str(body.get("username", "")))
            user = db.get_user(auth.user_id)
        except TrellisError as exc:
            return _domain_error(exc)
        response = JSONResponse({"token": token, "user": user.to_dict()}, status_code=201)
        response.set_cookie(
            _session_cookie_name(),
            token,
            max_age=_session_max_age(),
            httponly=True,
            samesite="lax",
        )
        return response

    @router.get("/session")
    async def api_whoami(request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        try:
            auth = _authenticate(request, db)
            user = db.get_user(auth.user_id)
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse(user.to_dict())

    @router.delete("/session")
    async def api_logout(request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        token = _session_token(request)
        try:
            closed = service.logout(db, token=token or "")
        except TrellisError as exc:
            return _domain_error(exc)
        response = JSONResponse({"logged_out": closed})
        response.delete_cookie(_session_cookie_name())
        return response

    return router
