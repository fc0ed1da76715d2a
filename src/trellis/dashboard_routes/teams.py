"""Team and membership route handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.requests import Request

if TYPE_CHECKING:
    from fastapi import APIRouter

from trellis import service
from trellis.core import TrellisDB
from trellis.dashboard_routes.common import (
    _authenticate,
    _authenticated_body,
    _domain_error,
    _required_int,
)
from trellis.errors import TrellisError


def create_router() -> APIRouter:
    """Build the APIRouter for team endpoints."""
    from fastapi import APIRouter, Depends
    from fastapi.responses import JSONResponse

    from trellis.dashboard import _get_db

    router = APIRouter()

    @router.get("/teams")
    async def api_list_teams(request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        try:
            auth = _authenticate(request, db)
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse([t.to_dict() for t in service.list_teams(db, auth)])

    @router.post("/teams")
    async def api_create_team(request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        parsed = await _authenticated_body(request, db)
        if isinstance(parsed, JSONResponse):
            return parsed
        auth, body = parsed
        try:
            team = service.create_team(
                db, auth, name=body.get("name"), description=body.get("description") or ""
            )
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse(team.to_dict(), status_code=201)

    @router.delete("/teams/{team_id}")
    async def api_delete_team(team_id: int, request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        try:
            auth = _authenticate(request, db)
            service.delete_team(db, auth, team_id)
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse({"deleted": True, "id": team_id})

    @router.get("/teams/{team_id}/members")
    async def api_team_members(team_id: int, request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        try:
            auth = _authenticate(request, db)
            members = service.list_team_members(db, auth, team_id)
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse([m.to_dict() for m in members])

    @router.post("/teams/{team_id}/members")
    async def api_add_member(team_id: int, request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        parsed = await _authenticated_body(request, db)
        if isinstance(parsed, JSONResponse):
            return parsed
        auth, body = parsed
        try:
            member = service.add_team_member(
                db,
                auth,
                team_id,
                user_id=_required_int(body, "user_id"),
                role=body.get("role") or "MEMBER",
            )
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse(member.to_dict(), status_code=201)

    @router.patch("/teams/{team_id}/members/{user_id}")
    async def api_set_member_role(
        team_id: int, user_id: int, request: Request, db: TrellisDB = Depends(_get_db)
    ) -> JSONResponse:
        parsed = await _authenticated_body(request, db)
        if isinstance(parsed, JSONResponse):
            return parsed
        auth, body = parsed
        try:
            member = service.set_team_member_role(db, auth, team_id, user_id=user_id, role=body.get("role"))
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse(member.to_dict())

    @router.delete("/teams/{team_id}/members/{user_id}")
    async def api_remove_member(
        team_id: int, user_id: int, request: Request, db: TrellisDB = Depends(_get_db)
    ) -> JSONResponse:
        try:
            auth = _authenticate(request, db)
            service.remove_team_member(db, auth, team_id, user_id=user_id)
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse({"removed": True, "team_id": team_id, "user_id": user_id})

    return router
