"""Project route handlers, including per-project work-item listing and stats."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from starlette.requests import Request

if TYPE_CHECKING:
    from fastapi import APIRouter

from trellis import service
from trellis.core import TrellisDB
from trellis.dashboard_routes.common import (
    _authenticate,
    _authenticated_body,
    _domain_error,
    _parse_csv_param,
    _safe_int,
)
from trellis.db_work_items import UNSET
from trellis.errors import TrellisError

_PROJECT_CREATE_FIELDS = ("description", "team_id", "status", "start_date", "target_date")


def create_router() -> APIRouter:
    """Build the APIRouter for project endpoints."""
    from fastapi import APIRouter, Depends
    from fastapi.responses import JSONResponse

    from trellis.dashboard import _get_db

    router = APIRouter()

    @router.get("/projects")
    async def api_list_projects(request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        try:
            auth = _authenticate(request, db)
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse([p.to_dict() for p in service.list_projects(db, auth)])

    @router.post("/projects")
    async def api_create_project(request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        parsed = await _authenticated_body(request, db)
        if isinstance(parsed, JSONResponse):
            return parsed
        auth, body = parsed
        extra = {k: body[k] for k in _PROJECT_CREATE_FIELDS if k in body}
        try:
            project = service.create_project(db, auth, key=body.get("key"), name=body.get("name"), **extra)
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse(project.to_dict(), status_code=201)

    @router.get("/projects/{project_id}")
    async def api_get_project(project_id: int, request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        try:
            auth = _authenticate(request, db)
            project = service.get_project(db, auth, project_id)
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse(project.to_dict())

    @router.patch("/projects/{project_id}")
    async def api_update_project(project_id: int, request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        parsed = await _authenticated_body(request, db)
        if isinstance(parsed, JSONResponse):
            return parsed
        auth, body = parsed
        try:
            project = service.update_project(db, auth, project_id, changes=body)
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse(project.to_dict())

    @router.delete("/projects/{project_id}")
    async def api_delete_project(project_id: int, request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        try:
            auth = _authenticate(request, db)
            service.delete_project(db, auth, project_id)
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse({"deleted": True, "id": project_id})

    @router.get("/projects/{project_id}/work-items")
    async def api_project_work_items(
        project_id: int, request: Request, db: TrellisDB = Depends(_get_db)
    ) -> JSONResponse:
        """Work items of a project, newest change first.

        Filters: ``type``, ``status``, ``priority`` (comma-separated),
        ``assignee_id`` (``none`` for unassigned), ``limit``/``offset``.
        """
        params = request.query_params
        filters: dict[str, Any] = {
            "types": _parse_csv_param(params.get("type")),
            "statuses": _parse_csv_param(params.get("status")),
            "priorities": _parse_csv_param(params.get("priority")),
            "assignee_id": UNSET,
        }
        raw_assignee = params.get("assignee_id")
        if raw_assignee is not None:
            if raw_assignee.strip().lower() in ("", "none", "null"):
                filters["assignee_id"] = None
            else:
                assignee = _safe_int(raw_assignee, "assignee_id", min_value=1)
                if isinstance(assignee, JSONResponse):
                    return assignee
                filters["assignee_id"] = assignee
        if "limit" in params:
            limit = _safe_int(params["limit"], "limit", min_value=1)
            if isinstance(limit, JSONResponse):
                return limit
            offset = _safe_int(params.get("offset", "0"), "offset", min_value=0)
            if isinstance(offset, JSONResponse):
                return offset
            filters["limit"] = limit
            filters["offset"] = offset
        try:
            auth = _authenticate(request, db)
            items = service.list_work_items(db, auth, project_id, **filters)
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse([i.to_dict() for i in items])

    @router.get("/projects/{project_id}/stats")
    async def api_project_stats(project_id: int, request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        try:
            auth = _authenticate(request, db)
            stats = service.project_stats(db, auth, project_id)
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse(stats)

    return router
