"""CLI commands for work items: create, show, list, update, status, delete, children, history, comments."""

from __future__ import annotations

import sys
from typing import Any

import click

from trellis import service
from trellis.cli_common import (
    echo_json,
    fail,
    get_db,
    require_auth,
    resolve_item_ref,
    resolve_project_ref,
    resolve_user_ref,
)
from trellis.core import TrellisDB
from trellis.db_work_items import UNSET
from trellis.errors import TrellisError
from trellis.models import DeleteOutcome, WorkItem


def _split(value: str | None) -> list[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _optional_ref(db: TrellisDB, value: str | None, resolver: Any) -> int | None:
    """Empty string clears the reference; None leaves it untouched."""
    if value is None or not value.strip():
        return None
    result: int = resolver(db, value.strip())
    return result


def _echo_item_line(item: WorkItem) -> None:
    click.echo(f"{item.external_id:<12} {item.type:<8} {item.status:<12} {item.priority:<9} {item.title}")


@click.command()
@click.argument("project_ref")
@click.argument("item_type")
@click.argument("title")
@click.option("--parent", default=None, help="Parent work item (id or external id)")
@click.option("--priority", "-p", default="MEDIUM", help="LOW, MEDIUM, HIGH or CRITICAL")
@click.option("--assignee", default=None, help="Assignee (id or username)")
@click.option("--description", "-d", default="", help="Description")
@click.option("--tags", default="", help="Comma-separated tags")
@click.option("--estimate", type=float, default=None, help="Estimate")
@click.option("--start", "start_date", default=None, help="Start date")
@click.option("--end", "end_date", default=None, help="End date")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def create(
    project_ref: str,
    item_type: str,
    title: str,
    parent: str | None,
    priority: str,
    assignee: str | None,
    description: str,
    tags: str,
    estimate: float | None,
    start_date: str | None,
    end_date: str | None,
    as_json: bool,
) -> None:
    """Create a work item of ITEM_TYPE (EPIC, FEATURE, STORY, TASK, BUG)."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        try:
            item = service.create_work_item(
                db,
                auth,
                project_id=resolve_project_ref(db, project_ref),
                type=item_type,
                title=title,
                parent_id=_optional_ref(db, parent, resolve_item_ref),
                priority=priority,
                assignee_id=_optional_ref(db, assignee, resolve_user_ref),
                description=description,
                tags=tags,
                estimate=estimate,
                start_date=start_date,
                end_date=end_date,
            )
        except TrellisError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json(item.to_dict())
        else:
            click.echo(f"Created {item.external_id}: {item.title}")


@click.command()
@click.argument("item_ref")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def show(item_ref: str, as_json: bool) -> None:
    """Show work item details."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        try:
            item = service.get_work_item(db, auth, resolve_item_ref(db, item_ref))
        except TrellisError as e:
            fail(str(e), as_json)

        if as_json:
            echo_json(item.to_dict())
            return

        click.echo(f"ID:        {item.external_id} (#{item.id})")
        click.echo(f"Title:     {item.title}")
        click.echo(f"Type:      {item.type}")
        click.echo(f"Status:    {item.status}")
        click.echo(f"Priority:  {item.priority}")
        if item.parent_id:
            click.echo(f"Parent:    #{item.parent_id}")
        if item.assignee_id:
            click.echo(f"Assignee:  user {item.assignee_id}")
        if item.estimate is not None:
            click.echo(f"Estimate:  {item.estimate:g}")
        if item.start_date or item.end_date:
            click.echo(f"Dates:     {item.start_date or '-'} .. {item.end_date or '-'}")
        if item.tags:
            click.echo(f"Tags:      {item.tags}")
        click.echo(f"Created:   {item.created_at}")
        click.echo(f"Updated:   {item.updated_at}")
        if item.completed_at:
            click.echo(f"Completed: {item.completed_at}")
        if item.children:
            click.echo(f"Children:  {', '.join(f'#{c}' for c in item.children)}")
        if item.description:
            click.echo(f"\n{item.description}")


@click.command("list")
@click.argument("project_ref")
@click.option("--type", "types", default=None, help="Comma-separated types")
@click.option("--status", "statuses", default=None, help="Comma-separated statuses")
@click.option("--priority", "priorities", default=None, help="Comma-separated priorities")
@click.option("--assignee", default=None, help="Assignee (id, username, or 'none')")
@click.option("--limit", type=int, default=None, help="Maximum rows")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_items(
    project_ref: str,
    types: str | None,
    statuses: str | None,
    priorities: str | None,
    assignee: str | None,
    limit: int | None,
    as_json: bool,
) -> None:
    """List a project's work items, most recently updated first."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        try:
            assignee_filter: int | None | object = UNSET
            if assignee is not None:
                assignee_filter = None if assignee.lower() == "none" else resolve_user_ref(db, assignee)
            items = service.list_work_items(
                db,
                auth,
                resolve_project_ref(db, project_ref),
                types=_split(types),
                statuses=_split(statuses),
                priorities=_split(priorities),
                assignee_id=assignee_filter,
                limit=limit,
            )
        except TrellisError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json([i.to_dict() for i in items])
            return
        if not items:
            click.echo("No work items.")
        for item in items:
            _echo_item_line(item)


@click.command()
@click.argument("item_ref")
@click.option("--title", default=None, help="New title")
@click.option("--type", "item_type", default=None, help="New type")
@click.option("--status", default=None, help="New status")
@click.option("--priority", "-p", default=None, help="New priority")
@click.option("--parent", default=None, help="New parent (id or external id, '' to clear)")
@click.option("--assignee", default=None, help="New assignee (id or username, '' to clear)")
@click.option("--description", "-d", default=None, help="New description")
@click.option("--tags", default=None, help="New comma-separated tags")
@click.option("--estimate", default=None, help="New estimate ('' to clear)")
@click.option("--start", "start_date", default=None, help="New start date ('' to clear)")
@click.option("--end", "end_date", default=None, help="New end date ('' to clear)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def update(
    item_ref: str,
    title: str | None,
    item_type: str | None,
    status: str | None,
    priority: str | None,
    parent: str | None,
    assignee: str | None,
    description: str | None,
    tags: str | None,
    estimate: str | None,
    start_date: str | None,
    end_date: str | None,
    as_json: bool,
) -> None:
    """Update the given fields of a work item."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        try:
            changes: dict[str, Any] = {
                k: v
                for k, v in {
                    "title": title,
                    "type": item_type,
                    "status": status,
                    "priority": priority,
                    "description": description,
                    "tags": tags,
                    "estimate": estimate,
                    "start_date": start_date,
                    "end_date": end_date,
                }.items()
                if v is not None
            }
            if parent is not None:
                changes["parent_id"] = _optional_ref(db, parent, resolve_item_ref)
            if assignee is not None:
                changes["assignee_id"] = _optional_ref(db, assignee, resolve_user_ref)
            if not changes:
                fail("Nothing to update", as_json)
            item = service.update_work_item(db, auth, resolve_item_ref(db, item_ref), changes=changes)
        except TrellisError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json(item.to_dict())
        else:
            click.echo(f"Updated {item.external_id}")


@click.command()
@click.argument("item_ref")
@click.argument("new_status")
def status(item_ref: str, new_status: str) -> None:
    """Move a work item to NEW_STATUS (TODO, IN_PROGRESS, DONE)."""
    with get_db() as db:
        auth = require_auth(db)
        try:
            item = service.update_status(db, auth, resolve_item_ref(db, item_ref), status=new_status)
        except TrellisError as e:
            fail(str(e))
        click.echo(f"{item.external_id} -> {item.status}")


@click.command()
@click.argument("item_ref")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def delete(item_ref: str, as_json: bool) -> None:
    """Delete a work item that has no children."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        try:
            outcome = service.delete_work_item(db, auth, resolve_item_ref(db, item_ref))
        except TrellisError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json({"id": item_ref, "outcome": outcome.value})
            if not outcome.deleted:
                sys.exit(1)
            return
        if outcome is DeleteOutcome.BLOCKED_BY_CHILDREN:
            click.echo(f"Not deleted: {item_ref} has child items. Delete or re-parent them first.", err=True)
            sys.exit(1)
        if outcome is DeleteOutcome.NOT_FOUND:
            click.echo(f"Not found: {item_ref}", err=True)
            sys.exit(1)
        click.echo(f"Deleted {item_ref}")


@click.command()
@click.argument("item_ref")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def children(item_ref: str, as_json: bool) -> None:
    """List the direct children of a work item."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        try:
            items = service.list_children(db, auth, resolve_item_ref(db, item_ref))
        except TrellisError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json([i.to_dict() for i in items])
            return
        for item in items:
            _echo_item_line(item)


@click.command()
@click.argument("item_ref")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def history(item_ref: str, as_json: bool) -> None:
    """Show the change history of a work item, newest first."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        try:
            entries = service.fetch_history(db, auth, resolve_item_ref(db, item_ref))
        except TrellisError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json(entries)
            return
        for entry in entries:
            who = entry["username"] or (f"user {entry['user_id']}" if entry["user_id"] is not None else "unknown")
            if entry["change_type"] == "UPDATED":
                detail = f"{entry['field_name']}: {entry['old_value']!s} -> {entry['new_value']!s}"
            else:
                detail = entry["new_value"] or entry["old_value"] or ""
            click.echo(f"{entry['created_at']}  {who:<16} {entry['change_type']:<8} {detail}")


@click.command()
@click.argument("item_ref")
@click.argument("text")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def comment(item_ref: str, text: str, as_json: bool) -> None:
    """Add a comment to a work item."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        try:
            added = service.add_comment(db, auth, resolve_item_ref(db, item_ref), content=text)
        except TrellisError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json(added)
            return
        click.echo(f"Added comment {added['id']} to {item_ref}")


@click.command()
@click.argument("item_ref")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def comments(item_ref: str, as_json: bool) -> None:
    """List the comments on a work item, oldest first."""
    with get_db() as db:
        auth = require_auth(db, as_json=as_json)
        try:
            result = service.list_comments(db, auth, resolve_item_ref(db, item_ref))
        except TrellisError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json(result)
            return
        if not result:
            click.echo("No comments.")
            return
        for c in result:
            click.echo(f"[{c['created_at']}] {c['username'] or 'unknown'}: {c['content']}")
