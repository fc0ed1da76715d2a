"""CLI for the trellis project tracker.

Convention-based: discovers .trellis/ by walking up from cwd. Every command
after ``login`` acts as the logged-in user; the session token lives in
``.trellis/session``.

Usage:
    trellis init --admin alice --email alice@example.com
    trellis login alice
    trellis team create "Platform"
    trellis project create PROJ "Project" --team 1
    trellis create PROJ EPIC "Checkout revamp"          # -> PROJ-001
    trellis create PROJ STORY "Pay by card" --parent PROJ-001
    trellis list PROJ --status TODO,IN_PROGRESS
    trellis status PROJ-002 DONE
    trellis history PROJ-002
    trellis delete PROJ-002
    trellis serve --port 8377
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from trellis import __version__
from trellis.cli_commands import identity, projects, server, work_items
from trellis.core import (
    DB_FILENAME,
    DEFAULT_SESSION_COOKIE,
    DEFAULT_SESSION_TTL_HOURS,
    TRELLIS_DIR_NAME,
    TrellisDB,
    write_config,
)
from trellis.errors import TrellisError
from trellis.logging import setup_logging

# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="trellis")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Trellis: team project tracker with role-gated work items."""
    ctx.ensure_object(dict)


@cli.command()
@click.option("--admin", "admin_username", default=None, help="Create the first ADMIN user with this username")
@click.option("--email", default=None, help="Email for the first ADMIN user")
def init(admin_username: str | None, email: str | None) -> None:
    """Initialize .trellis/ in the current directory."""
    cwd = Path.cwd()
    trellis_dir = cwd / TRELLIS_DIR_NAME

    if trellis_dir.exists():
        click.echo(f"{TRELLIS_DIR_NAME}/ already exists in {cwd}")
    else:
        trellis_dir.mkdir()
        write_config(
            trellis_dir,
            {
                "version": 1,
                "session_cookie": DEFAULT_SESSION_COOKIE,
                "session_ttl_hours": DEFAULT_SESSION_TTL_HOURS,
                "log_level": "INFO",
            },
        )
        click.echo(f"Initialized {TRELLIS_DIR_NAME}/ in {cwd}")

    setup_logging(trellis_dir)
    with TrellisDB(trellis_dir / DB_FILENAME) as db:
        db.initialize()
        click.echo(f"  Database: {trellis_dir / DB_FILENAME}")
        if admin_username:
            # Bootstrap: the first account has no one to authorize it.
            if db.list_users():
                click.echo("Users already exist; use 'trellis user add' as an ADMIN instead.", err=True)
                sys.exit(1)
            try:
                user = db.create_user(admin_username, email or f"{admin_username}@localhost", role="ADMIN")
            except TrellisError as e:
                click.echo(f"Error: {e}", err=True)
                sys.exit(1)
            click.echo(f"  Admin:    {user.username} (id {user.id})")
            click.echo(f"\nNext: trellis login {user.username}")


for _command in (
    identity.user,
    identity.login,
    identity.logout,
    identity.whoami,
    projects.project,
    projects.team,
    work_items.create,
    work_items.show,
    work_items.list_items,
    work_items.update,
    work_items.status,
    work_items.delete,
    work_items.children,
    work_items.history,
    work_items.comment,
    work_items.comments,
    server.serve,
):
    cli.add_command(_command)


if __name__ == "__main__":
    cli()
