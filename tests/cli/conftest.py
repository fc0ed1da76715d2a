"""Fixtures for CLI interface tests."""

from __future__ import annotations

import os
from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from trellis.cli import cli


@pytest.fixture
def cli_in_project(tmp_path: Path, cli_runner: CliRunner) -> Generator[tuple[CliRunner, Path], None, None]:
    """Initialize a trellis workspace with admin ``alice`` logged in; return (runner, root)."""
    original_cwd = os.getcwd()
    os.chdir(str(tmp_path))
    result = cli_runner.invoke(cli, ["init", "--admin", "alice", "--email", "alice@example.com"])
    assert result.exit_code == 0, result.output
    result = cli_runner.invoke(cli, ["login", "alice"])
    assert result.exit_code == 0, result.output
    yield cli_runner, tmp_path
    os.chdir(original_cwd)


@pytest.fixture
def cli_with_project(cli_in_project: tuple[CliRunner, Path]) -> tuple[CliRunner, Path]:
    """Workspace with team 1 (``Core``) and project ``PROJ`` owned by it."""
    runner, root = cli_in_project
    assert runner.invoke(cli, ["team", "create", "Core"]).exit_code == 0
    result = runner.invoke(cli, ["project", "create", "PROJ", "Project", "--team", "1"])
    assert result.exit_code == 0, result.output
    return runner, root


def _extract_id(create_output: str) -> str:
    """Extract the external id from 'Created PROJ-001: Title' output."""
    return create_output.split(":")[0].replace("Created ", "").strip()
