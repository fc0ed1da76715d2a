"""CLI commands for accounts and sessions: user add/list/set-role/deactivate, login, logout, whoami."""

from __future__ import annotations

import click

from trellis import service
from trellis.cli_common import (
    clear_session,
    echo_json,
    fail,
    get_db,
    load_session,
    require_auth,
    resolve_user_ref,
    save_session,
)
from trellis.errors import TrellisError


@click.command()
@click.argument("username")
def login(username: str) -> None:
    """Open a session as USERNAME (development login, no password)."""
    with get_db() as db:
        try:
            token, auth = service.login(db, username=username)
        except TrellisError as e:
            fail(str(e))
        save_session(token)
        click.echo(f"Logged in as {auth.username} ({auth.role})")


@click.command()
def logout() -> None:
    """Close the current session."""
    with get_db() as db:
        token = load_session()
        if token:
            service.logout(db, token=token)
        clear_session()
        click.echo("Logged out")


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def whoami(as_json: bool) -> None:
    """Show the logged-in user."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        user = db.get_user(auth.user_id)
        if as_json:
            echo_json(user.to_dict())
            return
        click.echo(f"{user.username} ({user.role}) id={user.id} <{user.email}>")


@click.group()
def user() -> None:
    """Manage user accounts (ADMIN only for changes)."""


@user.command("add")
@click.argument("username")
@click.option("--email", required=True, help="Email address")
@click.option("--name", "full_name", default="", help="Display name")
@click.option("--role", default="USER", help="ADMIN, SCRUM_MASTER or USER")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def user_add(username: str, email: str, full_name: str, role: str, as_json: bool) -> None:
    """Create a user account."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        try:
            created = service.create_user(db, auth, username=username, email=email, full_name=full_name, role=role)
        except TrellisError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json(created.to_dict())
        else:
            click.echo(f"Created user {created.username} ({created.role}) id={created.id}")


@user.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def user_list(as_json: bool) -> None:
    """List user accounts."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        users = service.list_users(db, auth)
        if as_json:
            echo_json([u.to_dict() for u in users])
            return
        for u in users:
            flag = "" if u.is_active else "  [inactive]"
            click.echo(f"{u.id:>4}  {u.username:<20} {u.role:<13} {u.email}{flag}")


@user.command("set-role")
@click.argument("user_ref")
@click.argument("role")
def user_set_role(user_ref: str, role: str) -> None:
    """Change USER_REF's global role."""
    with get_db() as db:
        auth = require_auth(db)
        try:
            updated = service.set_user_role(db, auth, user_id=resolve_user_ref(db, user_ref), role=role)
        except TrellisError as e:
            fail(str(e))
        click.echo(f"{updated.username} is now {updated.role}")


@user.command("deactivate")
@click.argument("user_ref")
def user_deactivate(user_ref: str) -> None:
    """Deactivate USER_REF and revoke their sessions."""
    with get_db() as db:
        auth = require_auth(db)
        try:
            updated = service.deactivate_user(db, auth, user_id=resolve_user_ref(db, user_ref))
        except TrellisError as e:
            fail(str(e))
        click.echo(f"Deactivated {updated.username}")
