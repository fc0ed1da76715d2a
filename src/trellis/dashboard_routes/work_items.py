"""Work-item route handlers: CRUD, status, children, history, and comments."""

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
    _delete_outcome_response,
    _domain_error,
    _required_int,
)
from trellis.errors import TrellisError

_CREATE_OPTIONAL_FIELDS = (
    "description",
    "tags",
    "status",
    "priority",
    "parent_id",
    "assignee_id",
    "estimate",
    "start_date",
    "end_date",
)


def create_router() -> APIRouter:
    """Build the APIRouter for work-item endpoints.

    NOTE: Handlers are async despite doing synchronous SQLite I/O, which
    keeps all DB access on the event loop thread.
    """
    from fastapi import APIRouter, Depends
    from fastapi.responses import JSONResponse

    from trellis.dashboard import _get_db

    router = APIRouter()

    @router.post("/work-items")
    async def api_create_work_item(request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        parsed = await _authenticated_body(request, db)
        if isinstance(parsed, JSONResponse):
            return parsed
        auth, body = parsed
        fields = {k: body[k] for k in _CREATE_OPTIONAL_FIELDS if k in body and body[k] is not None}
        try:
            item = service.create_work_item(
                db,
                auth,
                project_id=_required_int(body, "project_id"),
                type=body.get("type"),
                title=body.get("title"),
                **fields,
            )
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse(item.to_dict(), status_code=201)

    @router.get("/work-items/{item_id}")
    async def api_get_work_item(item_id: int, request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        try:
            auth = _authenticate(request, db)
            item = service.get_work_item(db, auth, item_id)
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse(item.to_dict())

    @router.patch("/work-items/{item_id}")
    async def api_update_work_item(item_id: int, request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        """Partial update; only the keys present in the body are touched."""
        parsed = await _authenticated_body(request, db)
        if isinstance(parsed, JSONResponse):
            return parsed
        auth, body = parsed
        try:
            item = service.update_work_item(db, auth, item_id, changes=body)
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse(item.to_dict())

    @router.patch("/work-items/{item_id}/status")
    async def api_update_status(item_id: int, request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        parsed = await _authenticated_body(request, db)
        if isinstance(parsed, JSONResponse):
            return parsed
        auth, body = parsed
        try:
            item = service.update_status(db, auth, item_id, status=body.get("status"))
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse(item.to_dict())

    @router.delete("/work-items/{item_id}")
    async def api_delete_work_item(item_id: int, request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        try:
            auth = _authenticate(request, db)
            outcome = service.delete_work_item(db, auth, item_id)
        except TrellisError as exc:
            return _domain_error(exc)
        return _delete_outcome_response(outcome, item_id)

    @router.get("/work-items/{item_id}/children")
    async def api_children(item_id: int, request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        try:
            auth = _authenticate(request, db)
            children = service.list_children(db, auth, item_id)
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse([c.to_dict() for c in children])

    @router.get("/work-items/{item_id}/history")
    async def api_history(item_id: int, request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        try:
            auth = _authenticate(request, db)
            entries = service.fetch_history(db, auth, item_id)
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse(entries)

    @router.get("/work-items/{item_id}/comments")
    async def api_comments(item_id: int, request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        try:
            auth = _authenticate(request, db)
            comments = service.list_comments(db, auth, item_id)
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse(comments)

    @router.post("/work-items/{item_id}/comments")
    async def api_add_comment(item_id: int, request: Request, db: TrellisDB = Depends(_get_db)) -> JSONResponse:
        parsed = await _authenticated_body(request, db)
        if isinstance(parsed, JSONResponse):
            return parsed
        auth, body = parsed
        try:
            comment = service.add_comment(db, auth, item_id, content=body.get("content"))
        except TrellisError as exc:
            return _domain_error(exc)
        return JSONResponse(comment, status_code=201)

    return router
