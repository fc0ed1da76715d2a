"""CLI tests: init, sessions, projects, teams, and work-item commands."""

from __future__ import annotations

import json
import os
from pathlib import Path

from click.testing import CliRunner

from tests.cli.conftest import _extract_id
from trellis.cli import cli
from trellis.core import DB_FILENAME, SESSION_FILENAME, TRELLIS_DIR_NAME, read_config


class TestInit:
    def test_init_creates_trellis_dir(self, tmp_path: Path, cli_runner: CliRunner) -> None:
        original = os.getcwd()
        os.chdir(str(tmp_path))
        try:
            result = cli_runner.invoke(cli, ["init"])
            assert result.exit_code == 0
            assert (tmp_path / TRELLIS_DIR_NAME).is_dir()
            assert (tmp_path / TRELLIS_DIR_NAME / DB_FILENAME).exists()
            assert read_config(tmp_path / TRELLIS_DIR_NAME)["session_cookie"] == "trellis_session"
        finally:
            os.chdir(original)

    def test_init_already_exists(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["init"])
        assert result.exit_code == 0
        assert "already exists" in result.output

    def test_second_admin_bootstrap_refused(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["init", "--admin", "eve"])
        assert result.exit_code == 1
        assert "Users already exist" in result.output

    def test_commands_outside_workspace(self, tmp_path: Path, cli_runner: CliRunner) -> None:
        original = os.getcwd()
        os.chdir(str(tmp_path))
        try:
            result = cli_runner.invoke(cli, ["whoami"])
            assert result.exit_code == 1
            assert "Run 'trellis init' first" in result.output
        finally:
            os.chdir(original)


class TestSession:
    def test_whoami(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, root = cli_in_project
        result = runner.invoke(cli, ["whoami", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["role"] == "ADMIN"
        assert (root / TRELLIS_DIR_NAME / SESSION_FILENAME).exists()

    def test_logout_then_not_logged_in(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, root = cli_in_project
        assert runner.invoke(cli, ["logout"]).exit_code == 0
        assert not (root / TRELLIS_DIR_NAME / SESSION_FILENAME).exists()
        result = runner.invoke(cli, ["project", "list"])
        assert result.exit_code == 1
        assert "Not logged in" in result.output

    def test_unknown_user_login(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["login", "ghost"])
        assert result.exit_code == 1
        assert "Not authenticated" in result.output

    def test_user_admin(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["user", "add", "uma", "--email", "uma@example.com", "--role", "user"])
        assert result.exit_code == 0, result.output
        assert "Created user uma (USER)" in result.output
        assert "uma" in runner.invoke(cli, ["user", "list"]).output
        result = runner.invoke(cli, ["user", "set-role", "uma", "SCRUM_MASTER"])
        assert "uma is now SCRUM_MASTER" in result.output
        result = runner.invoke(cli, ["user", "deactivate", "uma"])
        assert "Deactivated uma" in result.output
        assert runner.invoke(cli, ["login", "uma"]).exit_code == 1

    def test_non_admin_cannot_add_users(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        runner.invoke(cli, ["user", "add", "uma", "--email", "uma@example.com"])
        runner.invoke(cli, ["login", "uma"])
        result = runner.invoke(cli, ["user", "add", "vic", "--email", "vic@example.com", "--json"])
        assert result.exit_code == 1
        assert "error" in json.loads(result.output)


class TestProjectsAndTeams:
    def test_project_and_team_listing(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        result = runner.invoke(cli, ["project", "list", "--json"])
        assert [p["key"] for p in json.loads(result.output)] == ["PROJ"]
        assert "Core" in runner.invoke(cli, ["team", "list"]).output
        assert "ADMIN" in runner.invoke(cli, ["team", "members", "1"]).output

    def test_duplicate_project_key(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        result = runner.invoke(cli, ["project", "create", "proj", "Again"])
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_team_in_use_cannot_be_deleted(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        result = runner.invoke(cli, ["team", "delete", "1"])
        assert result.exit_code == 1
        assert "still assigned" in result.output

    def test_membership_commands(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        runner.invoke(cli, ["user", "add", "uma", "--email", "uma@example.com"])
        result = runner.invoke(cli, ["team", "add-member", "1", "uma", "--role", "lead"])
        assert "as LEAD" in result.output
        result = runner.invoke(cli, ["team", "remove-member", "1", "uma"])
        assert result.exit_code == 0
        assert "Removed user" in result.output

    def test_stats(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        runner.invoke(cli, ["create", "PROJ", "BUG", "Crash"])
        result = runner.invoke(cli, ["project", "stats", "PROJ", "--json"])
        stats = json.loads(result.output)
        assert stats["total"] == 1
        assert stats["by_type"]["BUG"] == 1

    def test_project_delete(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        runner.invoke(cli, ["create", "PROJ", "TASK", "t"])
        result = runner.invoke(cli, ["project", "delete", "PROJ", "--yes"])
        assert result.exit_code == 0
        assert "No projects." in runner.invoke(cli, ["project", "list"]).output


class TestWorkItemCommands:
    def test_create_assigns_sequential_ids(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        first = runner.invoke(cli, ["create", "PROJ", "EPIC", "Checkout"])
        assert first.exit_code == 0, first.output
        assert first.output.strip() == "Created PROJ-001: Checkout"
        second = runner.invoke(cli, ["create", "PROJ", "FEATURE", "Cart", "--parent", _extract_id(first.output)])
        assert _extract_id(second.output) == "PROJ-002"

    def test_show(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        runner.invoke(cli, ["create", "PROJ", "STORY", "Pay", "-d", "With a card", "--tags", "payments"])
        result = runner.invoke(cli, ["show", "PROJ-001"])
        assert "Title:     Pay" in result.output
        assert "With a card" in result.output
        data = json.loads(runner.invoke(cli, ["show", "PROJ-001", "--json"]).output)
        assert data["tags"] == "payments"

    def test_invalid_type(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        result = runner.invoke(cli, ["create", "PROJ", "SPIKE", "Research"])
        assert result.exit_code == 1
        assert "Invalid type" in result.output

    def test_list_with_filters(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        runner.invoke(cli, ["create", "PROJ", "BUG", "Crash", "--priority", "CRITICAL"])
        runner.invoke(cli, ["create", "PROJ", "TASK", "Chore", "--assignee", "alice"])
        result = runner.invoke(cli, ["list", "PROJ", "--type", "BUG", "--json"])
        assert [i["title"] for i in json.loads(result.output)] == ["Crash"]
        result = runner.invoke(cli, ["list", "PROJ", "--assignee", "none", "--json"])
        assert [i["title"] for i in json.loads(result.output)] == ["Crash"]
        text = runner.invoke(cli, ["list", "PROJ"]).output
        assert "PROJ-002" in text
        assert "PROJ-001" in text

    def test_update_and_status(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        runner.invoke(cli, ["create", "PROJ", "TASK", "Old"])
        result = runner.invoke(cli, ["update", "PROJ-001", "--title", "New", "--estimate", "3"])
        assert result.output.strip() == "Updated PROJ-001"
        result = runner.invoke(cli, ["status", "PROJ-001", "done"])
        assert result.output.strip() == "PROJ-001 -> DONE"
        data = json.loads(runner.invoke(cli, ["show", "PROJ-001", "--json"]).output)
        assert data["title"] == "New"
        assert data["estimate"] == 3.0
        assert data["completed_at"] is not None

    def test_update_nothing(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        runner.invoke(cli, ["create", "PROJ", "TASK", "t"])
        result = runner.invoke(cli, ["update", "PROJ-001"])
        assert result.exit_code == 1
        assert "Nothing to update" in result.output

    def test_delete_guard(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        runner.invoke(cli, ["create", "PROJ", "EPIC", "Parent"])
        runner.invoke(cli, ["create", "PROJ", "FEATURE", "Child", "--parent", "PROJ-001"])
        blocked = runner.invoke(cli, ["delete", "PROJ-001"])
        assert blocked.exit_code == 1
        assert "has child items" in blocked.output
        assert "PROJ-002" in runner.invoke(cli, ["children", "PROJ-001"]).output
        assert runner.invoke(cli, ["delete", "PROJ-002"]).output.strip() == "Deleted PROJ-002"
        assert runner.invoke(cli, ["delete", "PROJ-001"]).exit_code == 0

    def test_delete_missing(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        result = runner.invoke(cli, ["delete", "999"])
        assert result.exit_code == 1
        assert "Not found: 999" in result.output

    def test_history(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        runner.invoke(cli, ["create", "PROJ", "TASK", "t"])
        runner.invoke(cli, ["status", "PROJ-001", "IN_PROGRESS"])
        lines = runner.invoke(cli, ["history", "PROJ-001"]).output.strip().splitlines()
        assert "status: TODO -> IN_PROGRESS" in lines[0]
        assert "alice" in lines[0]
        assert "CREATED" in lines[-1]
        entries = json.loads(runner.invoke(cli, ["history", "PROJ-001", "--json"]).output)
        assert [e["change_type"] for e in entries] == ["UPDATED", "CREATED"]

    def test_role_limits_apply(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        runner.invoke(cli, ["user", "add", "uma", "--email", "uma@example.com"])
        runner.invoke(cli, ["team", "add-member", "1", "uma"])
        runner.invoke(cli, ["login", "uma"])
        denied = runner.invoke(cli, ["create", "PROJ", "EPIC", "Mine"])
        assert denied.exit_code == 1
        assert "may only create/edit" in denied.output
        allowed = runner.invoke(cli, ["create", "PROJ", "STORY", "Mine"])
        assert allowed.exit_code == 0
        refused = runner.invoke(cli, ["delete", "PROJ-001"])
        assert refused.exit_code == 1
        assert "may not delete" in refused.output

    def test_user_edits_only_owned_items(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        runner.invoke(cli, ["create", "PROJ", "TASK", "Admin's"])
        runner.invoke(cli, ["user", "add", "uma", "--email", "uma@example.com"])
        runner.invoke(cli, ["team", "add-member", "1", "uma"])
        runner.invoke(cli, ["login", "uma"])
        denied = runner.invoke(cli, ["status", "PROJ-001", "DONE"])
        assert denied.exit_code == 1
        assert "assigned to or reported by them" in denied.output
        runner.invoke(cli, ["create", "PROJ", "TASK", "Uma's"])
        assert runner.invoke(cli, ["status", "PROJ-002", "DONE"]).exit_code == 0


class TestComments:
    def test_comment_and_list(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        item_id = _extract_id(runner.invoke(cli, ["create", "PROJ", "BUG", "Crash"]).output)
        assert runner.invoke(cli, ["comments", item_id]).output.strip() == "No comments."
        result = runner.invoke(cli, ["comment", item_id, "Reproduced on main"])
        assert result.exit_code == 0, result.output
        assert result.output.strip() == f"Added comment 1 to {item_id}"
        listed = runner.invoke(cli, ["comments", item_id]).output.strip()
        assert listed.endswith("alice: Reproduced on main")
        data = json.loads(runner.invoke(cli, ["comments", item_id, "--json"]).output)
        assert [c["content"] for c in data] == ["Reproduced on main"]

    def test_blank_comment_fails(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        item_id = _extract_id(runner.invoke(cli, ["create", "PROJ", "TASK", "t"]).output)
        result = runner.invoke(cli, ["comment", item_id, "  "])
        assert result.exit_code == 1
        assert "content cannot be empty" in result.output

    def test_comment_json(self, cli_with_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_with_project
        runner.invoke(cli, ["create", "PROJ", "TASK", "t"])
        data = json.loads(runner.invoke(cli, ["comment", "PROJ-001", "hi", "--json"]).output)
        assert data["username"] == "alice"
