"""TypedDicts for db_comments.py return types."""

from __future__ import annotations

from typing import TypedDict

from trellis.types.core import ISOTimestamp


class CommentRecord(TypedDict):
    """Row from the work_item_comments table joined with the author's username.

    ``username`` is ``None`` when the author's user row no longer exists.
    """

    id: int
    work_item_id: int
    user_id: int | None
    username: str | None
    content: str
    created_at: ISOTimestamp
