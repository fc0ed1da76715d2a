# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
# NEVER import from core.py, db_base.py, or any mixin; this prevents circular imports.
"""Typed return-value contracts for the trellis store and API layers."""

from __future__ import annotations

from trellis.types.comments import CommentRecord
from trellis.types.core import (
    ISOTimestamp,
    ProjectDict,
    TeamDict,
    TeamMemberDict,
    TrellisConfig,
    UserDict,
    WorkItemDict,
)
from trellis.types.history import HistoryEntry, HistoryEntryWithUser

__all__ = [
    "CommentRecord",
    "HistoryEntry",
    "HistoryEntryWithUser",
    "ISOTimestamp",
    "ProjectDict",
    "TeamDict",
    "TeamMemberDict",
    "TrellisConfig",
    "UserDict",
    "WorkItemDict",
]
