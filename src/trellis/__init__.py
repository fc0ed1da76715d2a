"""Trellis: project tracker with team-gated, role-gated work items."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("trellis")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from trellis.core import TrellisDB, WorkItem

__all__ = ["TrellisDB", "WorkItem", "__version__"]
