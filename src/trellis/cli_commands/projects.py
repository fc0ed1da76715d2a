"""CLI commands for projects and teams."""

from __future__ import annotations

from typing import Any

import click

from trellis import service
from trellis.cli_common import (
    echo_json,
    fail,
    get_db,
    require_auth,
    resolve_project_ref,
    resolve_user_ref,
)
from trellis.errors import TrellisError

# ---------------------------------------------------------------------------
# project
# ---------------------------------------------------------------------------


@click.group()
def project() -> None:
    """Create, list, and delete projects."""


@project.command("create")
@click.argument("key")
@click.argument("name")
@click.option("--team", "team_id", type=int, default=None, help="Owning team id")
@click.option("--description", "-d", default="", help="Description")
@click.option("--status", default="ACTIVE", help="PLANNING, ACTIVE, ARCHIVED or COMPLETED")
@click.option("--start", "start_date", default=None, help="Start date (YYYY-MM-DD)")
@click.option("--target", "target_date", default=None, help="Target date (YYYY-MM-DD)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def project_create(
    key: str,
    name: str,
    team_id: int | None,
    description: str,
    status: str,
    start_date: str | None,
    target_date: str | None,
    as_json: bool,
) -> None:
    """Create project KEY (2-10 letters/digits) called NAME."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        try:
            created = service.create_project(
                db,
                auth,
                key=key,
                name=name,
                description=description,
                team_id=team_id,
                status=status,
                start_date=start_date,
                target_date=target_date,
            )
        except TrellisError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json(created.to_dict())
        else:
            click.echo(f"Created project {created.key}: {created.name} (id {created.id})")


@project.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def project_list(as_json: bool) -> None:
    """List the projects you can access."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        found = service.list_projects(db, auth)
        if as_json:
            echo_json([p.to_dict() for p in found])
            return
        if not found:
            click.echo("No projects.")
        for p in found:
            team = f"team {p.team_id}" if p.team_id is not None else "no team"
            click.echo(f"{p.id:>4}  {p.key:<10} {p.status:<10} {p.name}  ({team})")


@project.command("stats")
@click.argument("project_ref")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def project_stats(project_ref: str, as_json: bool) -> None:
    """Work-item counts by status, type, and priority."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        try:
            stats: dict[str, Any] = service.project_stats(db, auth, resolve_project_ref(db, project_ref))
        except TrellisError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json(stats)
            return
        click.echo(f"{stats['key']}: {stats['total']} work item(s)")
        for section in ("by_status", "by_type", "by_priority"):
            counts = ", ".join(f"{k}={v}" for k, v in stats[section].items())
            click.echo(f"  {section[3:]:<9} {counts}")


@project.command("delete")
@click.argument("project_ref")
@click.option("--yes", is_flag=True, help="Skip confirmation")
def project_delete(project_ref: str, yes: bool) -> None:
    """Delete a project and all of its work items (ADMIN only)."""
    with get_db() as db:
        auth = require_auth(db)
        try:
            project_id = resolve_project_ref(db, project_ref)
            if not yes:
                click.confirm(f"Delete project {project_ref} and all its work items?", abort=True)
            service.delete_project(db, auth, project_id)
        except TrellisError as e:
            fail(str(e))
        click.echo(f"Deleted project {project_ref}")


# ---------------------------------------------------------------------------
# team
# ---------------------------------------------------------------------------


@click.group()
def team() -> None:
    """Create and delete teams and manage their members."""


@team.command("create")
@click.argument("name")
@click.option("--description", "-d", default="", help="Description")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def team_create(name: str, description: str, as_json: bool) -> None:
    """Create a team; you become its team ADMIN."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        try:
            created = service.create_team(db, auth, name=name, description=description)
        except TrellisError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json(created.to_dict())
        else:
            click.echo(f"Created team {created.name} (id {created.id})")


@team.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def team_list(as_json: bool) -> None:
    """List your teams (all teams for ADMIN)."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        found = service.list_teams(db, auth)
        if as_json:
            echo_json([t.to_dict() for t in found])
            return
        for t in found:
            click.echo(f"{t.id:>4}  {t.name}")


@team.command("delete")
@click.argument("team_id", type=int)
def team_delete(team_id: int) -> None:
    """Delete a team no project references (ADMIN only)."""
    with get_db() as db:
        auth = require_auth(db)
        try:
            service.delete_team(db, auth, team_id)
        except TrellisError as e:
            fail(str(e))
        click.echo(f"Deleted team {team_id}")


@team.command("members")
@click.argument("team_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def team_members(team_id: int, as_json: bool) -> None:
    """List a team's members."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        try:
            members = service.list_team_members(db, auth, team_id)
        except TrellisError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json([m.to_dict() for m in members])
            return
        for m in members:
            click.echo(f"user {m.user_id:>4}  {m.role}")


@team.command("add-member")
@click.argument("team_id", type=int)
@click.argument("user_ref")
@click.option("--role", default="MEMBER", help="ADMIN, MANAGER, LEAD, MEMBER, VIEWER or SCRUM_MASTER")
def team_add_member(team_id: int, user_ref: str, role: str) -> None:
    """Add USER_REF (id or username) to a team."""
    with get_db() as db:
        auth = require_auth(db)
        try:
            member = service.add_team_member(db, auth, team_id, user_id=resolve_user_ref(db, user_ref), role=role)
        except TrellisError as e:
            fail(str(e))
        click.echo(f"Added user {member.user_id} to team {team_id} as {member.role}")


@team.command("remove-member")
@click.argument("team_id", type=int)
@click.argument("user_ref")
def team_remove_member(team_id: int, user_ref: str) -> None:
    """Remove USER_REF from a team."""
    with get_db() as db:
        auth = require_auth(db)
        try:
            user_id = resolve_user_ref(db, user_ref)
            service.remove_team_member(db, auth, team_id, user_id=user_id)
        except TrellisError as e:
            fail(str(e))
        click.echo(f"Removed user {user_id} from team {team_id}")
