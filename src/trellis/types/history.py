"""TypedDicts for db_history.py return types."""

from __future__ import annotations

from typing import TypedDict

from trellis.types.core import ISOTimestamp


class HistoryEntry(TypedDict):
    """Row from the work_item_history table (SELECT * FROM work_item_history)."""

    id: int
    work_item_id: int
    user_id: int | None
    field_name: str
    old_value: str | None
    new_value: str | None
    change_type: str
    created_at: ISOTimestamp


class HistoryEntryWithUser(HistoryEntry):
    """HistoryEntry joined with the acting user's display identity.

    Returned by ``fetch_history()``. Both columns are ``None`` when the
    actor's user row no longer exists.
    """

    username: str | None
    full_name: str | None
