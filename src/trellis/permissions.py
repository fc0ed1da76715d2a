"""Role-permission policy -- one declarative table, one evaluator.

Every authorization question trellis asks is a lookup of
``(role, action, resource_type)`` in ``POLICY``. Work-item types, projects,
project keys, teams, team memberships, and user accounts are all resource
types in the same table, so the per-type create/edit/delete matrix and the
admin-only entity rules cannot drift apart.

Some grants are scoped to items the caller owns (assignee or reporter);
the caller states ownership when it asks, the table never looks it up.

Project access is the other rule that depends on data rather than on the
role alone; ``project_access()`` evaluates it from facts the caller looked
up (the project's team and the user's memberships).

Pure functions -- no SQLite, FastAPI, or Click dependencies.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Literal

from trellis.errors import Forbidden

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

Role = Literal["ADMIN", "SCRUM_MASTER", "USER"]
Action = Literal["create", "edit", "delete"]
ItemType = Literal["EPIC", "FEATURE", "STORY", "TASK", "BUG"]
EntityType = Literal["PROJECT", "PROJECT_KEY", "TEAM", "TEAM_MEMBER", "USER_ACCOUNT"]
Scope = Literal["any", "own"]
Effect = Literal["allow", "allow_own", "deny"]

VALID_ROLES: frozenset[str] = frozenset({"ADMIN", "SCRUM_MASTER", "USER"})
VALID_ACTIONS: frozenset[str] = frozenset({"create", "edit", "delete"})
ITEM_TYPES: tuple[str, ...] = ("EPIC", "FEATURE", "STORY", "TASK", "BUG")
VALID_ITEM_TYPES: frozenset[str] = frozenset(ITEM_TYPES)
ENTITY_TYPES: tuple[str, ...] = ("PROJECT", "PROJECT_KEY", "TEAM", "TEAM_MEMBER", "USER_ACCOUNT")

_PLANNING_TYPES = ("EPIC", "FEATURE")
_DELIVERY_TYPES = ("STORY", "TASK", "BUG")


@dataclass(frozen=True)
class Grant:
    """Allow *role* to perform each of *actions* on each of *resources*.

    ``scope="own"`` limits the grant to resources the caller owns.
    """

    role: Role
    actions: tuple[Action, ...]
    resources: tuple[str, ...]
    scope: Scope = "any"


@dataclass(frozen=True)
class Decision:
    """Outcome of one policy lookup. Falsy when denied."""

    effect: Effect
    role: str | None
    action: str
    resource: str
    reason: str = ""

    @property
    def allowed(self) -> bool:
        return self.effect == "allow"

    def __bool__(self) -> bool:
        return self.allowed


# ---------------------------------------------------------------------------
# The policy table
# ---------------------------------------------------------------------------

GRANTS: tuple[Grant, ...] = (
    # Work items: USER edits only what it owns
    Grant("ADMIN", ("create", "edit", "delete"), ITEM_TYPES),
    Grant("SCRUM_MASTER", ("create", "edit"), _PLANNING_TYPES),
    Grant("SCRUM_MASTER", ("delete",), _DELIVERY_TYPES),
    Grant("USER", ("create",), _DELIVERY_TYPES),
    Grant("USER", ("edit",), _DELIVERY_TYPES, scope="own"),
    # Projects: only ADMIN resets keys or deletes
    Grant("ADMIN", ("create", "edit", "delete"), ("PROJECT",)),
    Grant("SCRUM_MASTER", ("create", "edit"), ("PROJECT",)),
    Grant("ADMIN", ("edit",), ("PROJECT_KEY",)),
    # Teams: anyone may found one, only ADMIN deletes
    Grant("ADMIN", ("create", "edit", "delete"), ("TEAM",)),
    Grant("SCRUM_MASTER", ("create",), ("TEAM",)),
    Grant("USER", ("create",), ("TEAM",)),
    Grant("ADMIN", ("create", "edit", "delete"), ("TEAM_MEMBER",)),
    Grant("SCRUM_MASTER", ("create", "edit", "delete"), ("TEAM_MEMBER",)),
    # Account administration
    Grant("ADMIN", ("create", "edit", "delete"), ("USER_ACCOUNT",)),
)


def _compile(grants: Iterable[Grant]) -> Mapping[tuple[str, str, str], Effect]:
    table: dict[tuple[str, str, str], Effect] = {}
    for role in sorted(VALID_ROLES):
        for action in sorted(VALID_ACTIONS):
            for resource in (*ITEM_TYPES, *ENTITY_TYPES):
                table[(role, action, resource)] = "deny"
    for grant in grants:
        for action in grant.actions:
            for resource in grant.resources:
                key = (grant.role, action, resource)
                if grant.scope == "any":
                    table[key] = "allow"
                elif table[key] == "deny":
                    table[key] = "allow_own"
    return MappingProxyType(table)


POLICY: Mapping[tuple[str, str, str], Effect] = _compile(GRANTS)
"""``(role, action, resource_type) -> effect`` for every known triple."""


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


def can(role: str | None, action: str, resource: str, *, owned: bool | None = None) -> Decision:
    """Evaluate the policy table. Unknown roles, actions and resources deny.

    *owned* answers ownership-scoped grants: ``False`` denies them, while
    ``None`` asks about the resource type alone and lets them pass.
    """
    if role not in VALID_ROLES:
        return Decision("deny", role, action, resource, "Access denied: invalid user role")
    effect = POLICY.get((role, action, resource), "deny")
    if effect == "allow" or (effect == "allow_own" and owned is not False):
        return Decision("allow", role, action, resource)
    if effect == "allow_own":
        reason = f"{role} may only {action} work items assigned to or reported by them"
        return Decision("deny", role, action, resource, reason)
    return Decision("deny", role, action, resource, _denial_reason(role, action, resource))


def _denial_reason(role: str, action: str, resource: str) -> str:
    if resource in VALID_ITEM_TYPES:
        allowed = [t for t in ITEM_TYPES if POLICY[(role, action, t)] != "deny"]
        if not allowed:
            return f"{role} may not {action} work items"
        verb = "create/edit" if action in ("create", "edit") else action
        return f"{role} may only {verb} {', '.join(allowed)} work items"
    if resource == "PROJECT_KEY":
        return "Only ADMIN may change a project key"
    if action == "delete" and resource in ("PROJECT", "TEAM"):
        return "Only ADMIN may delete projects and teams"
    return f"{role} may not {action} {resource.lower().replace('_', ' ')}"


def require(role: str | None, action: str, resource: str, *, owned: bool | None = None) -> Decision:
    """Like :func:`can`, but raise :class:`Forbidden` on deny."""
    decision = can(role, action, resource, owned=owned)
    if not decision.allowed:
        logger.warning("Policy denied %s %s %s: %s", role, action, resource, decision.reason)
        raise Forbidden(decision.reason, details={"action": action, "resource": resource})
    return decision


def has_any_grant(role: str | None, action: str, resources: Iterable[str] = ITEM_TYPES) -> bool:
    """True when *role* is allowed *action* on at least one of *resources*.

    Lets callers reject a request before looking anything up, so roles with
    no rights at all never learn whether the target exists.
    """
    return any(can(role, action, r).allowed for r in resources)


def project_access(role: str | None, project_team_id: int | None, member_team_ids: Iterable[int]) -> Decision:
    """Decide whether a user may touch anything inside a project.

    ADMIN always passes. Anyone else needs the project to have a team and
    to be a recorded member of that team.
    """
    if role not in VALID_ROLES:
        return Decision("deny", role, "access", "PROJECT", "Access denied: invalid user role")
    if role == "ADMIN":
        return Decision("allow", role, "access", "PROJECT")
    if project_team_id is None:
        return Decision("deny", role, "access", "PROJECT", "Project access denied: no team assigned")
    if project_team_id not in set(member_team_ids):
        return Decision(
            "deny",
            role,
            "access",
            "PROJECT",
            "Project access denied: you must be a member of the assigned team",
        )
    return Decision("allow", role, "access", "PROJECT")
