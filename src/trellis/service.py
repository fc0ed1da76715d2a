"""Service layer -- one function per operation, identity passed explicitly.

Every call takes the store and a resolved :class:`AuthContext` and runs the
same pipeline: project access gate, then the policy table, then the store
(which writes history alongside each change). Nothing is read from ambient
request state.

Roles with no grant at all for an action are rejected before anything is
looked up, so they cannot tell which ids exist. Checks that depend on the
target (its project's team, its work-item type, who owns it) necessarily
look it up first; a non-admin who cannot see an item gets the same denial
whether or not it exists. No write is attempted until every check has passed.

List-style reads degrade to an empty result when the store is unavailable;
single reads and all writes raise.
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any, ParamSpec, TypeVar

from trellis.core import TrellisDB
from trellis.errors import Forbidden, NotFound, StoreUnavailable, TrellisError, Unauthenticated
from trellis.models import AuthContext, DeleteOutcome, Project, Team, TeamMember, User, WorkItem
from trellis.permissions import ITEM_TYPES, VALID_ITEM_TYPES, has_any_grant, project_access, require
from trellis.types.comments import CommentRecord
from trellis.types.history import HistoryEntryWithUser
from trellis.validation import normalize_project_key, require_choice

logger = logging.getLogger(__name__)

ITEM_ACCESS_DENIED = "Work item access denied"

# Logged by field name or not at all; their values may be free text.
_FREE_TEXT_KWARGS = frozenset({"changes", "content"})

P = ParamSpec("P")
R = TypeVar("R")


def _logged(op: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Log each call with its actor, arguments, and duration."""

    def decorator(fn: Callable[P, R]) -> Callable[P, R]:
        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            auth = next((a for a in args if isinstance(a, AuthContext)), None)
            actor = (auth.username or auth.user_id) if auth else None
            call_args: dict[str, Any] = {k: v for k, v in kwargs.items() if k not in _FREE_TEXT_KWARGS}
            targets = [a for a in args[1:] if not isinstance(a, AuthContext)]
            if targets:
                call_args["target"] = targets[0] if len(targets) == 1 else targets
            changes = kwargs.get("changes")
            if isinstance(changes, Mapping):
                # Field names only; values may be free text.
                call_args["fields"] = sorted(changes)
            t0 = time.monotonic()
            try:
                result = fn(*args, **kwargs)
            except TrellisError as exc:
                logger.warning(
                    "op_rejected",
                    extra={"op": op, "actor": actor, "args_data": call_args, "error": exc.code},
                )
                raise
            except Exception:
                logger.error("op_error", extra={"op": op, "actor": actor, "args_data": call_args}, exc_info=True)
                raise
            duration_ms = round((time.monotonic() - t0) * 1000, 1)
            logger.info("op", extra={"op": op, "actor": actor, "args_data": call_args, "duration_ms": duration_ms})
            return result

        return wrapper

    return decorator


# ---------------------------------------------------------------------------
# Gate helpers
# ---------------------------------------------------------------------------


def check_project_access(db: TrellisDB, auth: AuthContext, project: Project) -> None:
    """Raise Forbidden unless *auth* may touch anything inside *project*."""
    member_of = () if auth.is_admin else db.member_team_ids(auth.user_id)
    decision = project_access(auth.role, project.team_id, member_of)
    if not decision:
        logger.warning("Project gate denied user %s on %s: %s", auth.user_id, project.key, decision.reason)
        raise Forbidden(decision.reason, details={"project_id": project.id})


def _reject_without_grant(auth: AuthContext, action: str) -> None:
    """Raise before any lookup when the role may not *action* any work-item type."""
    if not has_any_grant(auth.role, action):
        require(auth.role, action, ITEM_TYPES[0])


def _accessible_item(db: TrellisDB, auth: AuthContext, item_id: int) -> WorkItem:
    """Load an item the caller may see.

    Non-admins get one and the same Forbidden for a missing item and for an
    item in a project they cannot enter, so ids cannot be enumerated.
    """
    try:
        item = db.get_work_item(item_id)
        check_project_access(db, auth, db.get_project(item.project_id))
    except (NotFound, Forbidden):
        if auth.is_admin:
            raise
        raise Forbidden(ITEM_ACCESS_DENIED, details={"work_item_id": item_id}) from None
    return item


def _owns(auth: AuthContext, item: WorkItem) -> bool:
    return auth.user_id in (item.assignee_id, item.reporter_id)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


def resolve(db: TrellisDB, token: str | None) -> AuthContext:
    return db.resolve_session(token)


@_logged("login")
def login(db: TrellisDB, *, username: str) -> tuple[str, AuthContext]:
    """Development login: open a session for an active user by name."""
    try:
        user = db.get_user_by_username(username)
    except NotFound:
        raise Unauthenticated from None
    token = db.open_session(user.id)
    return token, AuthContext(user_id=user.id, role=user.role, username=user.username)


@_logged("logout")
def logout(db: TrellisDB, *, token: str) -> bool:
    return db.close_session(token)


@_logged("user.create")
def create_user(
    db: TrellisDB, auth: AuthContext, *, username: str, email: str, full_name: str = "", role: str = "USER"
) -> User:
    require(auth.role, "create", "USER_ACCOUNT")
    return db.create_user(username, email, full_name=full_name, role=role)


def list_users(db: TrellisDB, auth: AuthContext) -> list[User]:
    try:
        return db.list_users()
    except StoreUnavailable:
        logger.warning("Store unavailable while listing users", exc_info=True)
        return []


@_logged("user.set_role")
def set_user_role(db: TrellisDB, auth: AuthContext, *, user_id: int, role: str) -> User:
    require(auth.role, "edit", "USER_ACCOUNT")
    return db.set_user_role(user_id, role)


@_logged("user.deactivate")
def deactivate_user(db: TrellisDB, auth: AuthContext, *, user_id: int) -> User:
    require(auth.role, "delete", "USER_ACCOUNT")
    return db.deactivate_user(user_id)


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@_logged("project.create")
def create_project(
    db: TrellisDB,
    auth: AuthContext,
    *,
    key: str,
    name: str,
    description: str = "",
    team_id: int | None = None,
    status: str = "ACTIVE",
    start_date: Any = None,
    target_date: Any = None,
) -> Project:
    require(auth.role, "create", "PROJECT")
    return db.create_project(
        key,
        name,
        created_by=auth.user_id,
        description=description,
        team_id=team_id,
        status=status,
        start_date=start_date,
        target_date=target_date,
    )


def get_project(db: TrellisDB, auth: AuthContext, project_id: int) -> Project:
    project = db.get_project(project_id)
    check_project_access(db, auth, project)
    return project


def list_projects(db: TrellisDB, auth: AuthContext) -> list[Project]:
    """ADMIN sees every project; others see their teams' projects."""
    try:
        if auth.is_admin:
            return db.list_projects()
        return db.list_projects(team_ids=db.member_team_ids(auth.user_id))
    except StoreUnavailable:
        logger.warning("Store unavailable while listing projects", exc_info=True)
        return []


@_logged("project.update")
def update_project(db: TrellisDB, auth: AuthContext, project_id: int, *, changes: Mapping[str, Any]) -> Project:
    require(auth.role, "edit", "PROJECT")
    project = db.get_project(project_id)
    check_project_access(db, auth, project)
    if "key" in changes and normalize_project_key(changes["key"]) != project.key:
        require(auth.role, "edit", "PROJECT_KEY")
    return db.update_project(project_id, changes)


@_logged("project.delete")
def delete_project(db: TrellisDB, auth: AuthContext, project_id: int) -> None:
    require(auth.role, "delete", "PROJECT")
    project = db.get_project(project_id)
    check_project_access(db, auth, project)
    db.delete_project(project_id)


def project_stats(db: TrellisDB, auth: AuthContext, project_id: int) -> dict[str, Any]:
    project = get_project(db, auth, project_id)
    return {
        "project_id": project.id,
        "key": project.key,
        "total": db.count_by_project(project.id),
        "by_status": db.count_by_status(project.id),
        "by_type": db.count_by_type(project.id),
        "by_priority": db.count_by_priority(project.id),
    }


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


@_logged("team.create")
def create_team(db: TrellisDB, auth: AuthContext, *, name: str, description: str = "") -> Team:
    require(auth.role, "create", "TEAM")
    return db.create_team(name, created_by=auth.user_id, description=description)


def list_teams(db: TrellisDB, auth: AuthContext) -> list[Team]:
    try:
        return db.list_teams(user_id=None if auth.is_admin else auth.user_id)
    except StoreUnavailable:
        logger.warning("Store unavailable while listing teams", exc_info=True)
        return []


@_logged("team.delete")
def delete_team(db: TrellisDB, auth: AuthContext, team_id: int) -> None:
    require(auth.role, "delete", "TEAM")
    db.delete_team(team_id)


def list_team_members(db: TrellisDB, auth: AuthContext, team_id: int) -> list[TeamMember]:
    try:
        return db.list_team_members(team_id)
    except StoreUnavailable:
        logger.warning("Store unavailable while listing members of team %d", team_id, exc_info=True)
        return []


@_logged("team.add_member")
def add_team_member(
    db: TrellisDB, auth: AuthContext, team_id: int, *, user_id: int, role: str = "MEMBER"
) -> TeamMember:
    require(auth.role, "create", "TEAM_MEMBER")
    return db.add_team_member(team_id, user_id, role=role)


@_logged("team.set_member_role")
def set_team_member_role(db: TrellisDB, auth: AuthContext, team_id: int, *, user_id: int, role: str) -> TeamMember:
    require(auth.role, "edit", "TEAM_MEMBER")
    return db.set_team_member_role(team_id, user_id, role)


@_logged("team.remove_member")
def remove_team_member(db: TrellisDB, auth: AuthContext, team_id: int, *, user_id: int) -> None:
    require(auth.role, "delete", "TEAM_MEMBER")
    db.remove_team_member(team_id, user_id)


# ---------------------------------------------------------------------------
# Work items
# ---------------------------------------------------------------------------


@_logged("work_item.create")
def create_work_item(
    db: TrellisDB,
    auth: AuthContext,
    *,
    project_id: int,
    type: str | None,
    title: str,
    **fields: Any,
) -> WorkItem:
    project = db.get_project(project_id)
    check_project_access(db, auth, project)
    item_type = require_choice(type, VALID_ITEM_TYPES, "type")
    require(auth.role, "create", item_type)
    return db.create_work_item(project.id, item_type, title, reporter_id=auth.user_id, **fields)


def get_work_item(db: TrellisDB, auth: AuthContext, item_id: int) -> WorkItem:
    return _accessible_item(db, auth, item_id)


def list_work_items(db: TrellisDB, auth: AuthContext, project_id: int, **filters: Any) -> list[WorkItem]:
    project = db.get_project(project_id)
    check_project_access(db, auth, project)
    try:
        return db.list_work_items(project.id, **filters)
    except StoreUnavailable:
        logger.warning("Store unavailable while listing work items of %s", project.key, exc_info=True)
        return []


def list_children(db: TrellisDB, auth: AuthContext, item_id: int) -> list[WorkItem]:
    parent = _accessible_item(db, auth, item_id)
    try:
        return db.list_by_parent(parent.id)
    except StoreUnavailable:
        logger.warning("Store unavailable while listing children of %s", parent.external_id, exc_info=True)
        return []


@_logged("work_item.update")
def update_work_item(db: TrellisDB, auth: AuthContext, item_id: int, *, changes: Mapping[str, Any]) -> WorkItem:
    """Edit an item; the role must be allowed to edit both its old and new type."""
    item = _accessible_item(db, auth, item_id)
    owned = _owns(auth, item)
    require(auth.role, "edit", item.type, owned=owned)
    if changes.get("type") is not None:
        new_type = require_choice(changes["type"], VALID_ITEM_TYPES, "type")
        if new_type != item.type:
            require(auth.role, "edit", new_type, owned=owned)
    return db.update_work_item(item.id, changes, actor_id=auth.user_id)


@_logged("work_item.status")
def update_status(db: TrellisDB, auth: AuthContext, item_id: int, *, status: str) -> WorkItem:
    item = _accessible_item(db, auth, item_id)
    require(auth.role, "edit", item.type, owned=_owns(auth, item))
    return db.update_status(item.id, status, actor_id=auth.user_id)


@_logged("work_item.delete")
def delete_work_item(db: TrellisDB, auth: AuthContext, item_id: int) -> DeleteOutcome:
    """Delete a childless item. Blocked and missing items are outcomes, not errors."""
    _reject_without_grant(auth, "delete")
    try:
        item = _accessible_item(db, auth, item_id)
    except NotFound:
        return DeleteOutcome.NOT_FOUND
    require(auth.role, "delete", item.type)
    return db.delete_work_item(item.id, actor_id=auth.user_id)


def fetch_history(db: TrellisDB, auth: AuthContext, item_id: int) -> list[HistoryEntryWithUser]:
    """History of one item, newest first.

    Entries of a deleted item have no project left to gate on; only ADMIN
    may read them.
    """
    try:
        _accessible_item(db, auth, item_id)
    except NotFound:
        logger.info("Reading history of deleted work item %d", item_id)
    try:
        return db.fetch_history(item_id)
    except StoreUnavailable:
        logger.warning("Store unavailable while fetching history of %d", item_id, exc_info=True)
        return []


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


@_logged("work_item.comment")
def add_comment(db: TrellisDB, auth: AuthContext, item_id: int, *, content: str) -> CommentRecord:
    """Anyone who can see an item may comment on it."""
    item = _accessible_item(db, auth, item_id)
    return db.add_comment(item.id, content, user_id=auth.user_id)


def list_comments(db: TrellisDB, auth: AuthContext, item_id: int) -> list[CommentRecord]:
    item = _accessible_item(db, auth, item_id)
    try:
        return db.list_comments(item.id)
    except StoreUnavailable:
        logger.warning("Store unavailable while listing comments of %s", item.external_id, exc_info=True)
        return []
