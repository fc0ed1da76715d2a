"""Shared pytest fixtures for trellis tests."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from tests._db_factory import Seeded, make_db, seed
from trellis.core import DB_FILENAME, TRELLIS_DIR_NAME, TrellisDB, write_config


@pytest.fixture
def db(tmp_path: Path) -> Generator[TrellisDB, None, None]:
    """Fresh TrellisDB for each test."""
    d = make_db(tmp_path)
    yield d
    d.close()


@pytest.fixture
def seeded(db: TrellisDB) -> Seeded:
    """TrellisDB with four users, one team, and project ``PROJ``."""
    return seed(db)


@pytest.fixture
def trellis_project(tmp_path: Path) -> Path:
    """A tmp directory set up as a trellis workspace (.trellis/ with config + db).

    Returns the workspace root (parent of .trellis/).
    """
    trellis_dir = tmp_path / TRELLIS_DIR_NAME
    trellis_dir.mkdir()
    write_config(trellis_dir, {"version": 1})
    d = TrellisDB(trellis_dir / DB_FILENAME)
    d.initialize()
    d.close()
    return tmp_path


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()
