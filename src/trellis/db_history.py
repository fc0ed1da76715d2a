"""HistoryMixin: append-only work-item change ledger.

Entries are inserted verbatim and never updated or deleted (the schema's
triggers reject both). They carry no foreign keys, so the ledger of a
deleted work item survives it.
"""

from __future__ import annotations

from typing import Any, cast

from trellis.db_base import DBMixinProtocol, _now_iso
from trellis.errors import ValidationError
from trellis.types.history import HistoryEntryWithUser
from trellis.validation import require_text


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class HistoryMixin(DBMixinProtocol):
    """History recording and retrieval."""

    def record(
        self,
        work_item_id: int | None,
        user_id: int | None,
        field_name: str | None,
        old_value: Any,
        new_value: Any,
        change_type: str | None,
    ) -> int:
        """Append one entry; values are stored in their string form.

        Required columns are checked up front so a bad call fails as a
        ValidationError; actor and values are kept exactly as given.

        Callers inside a write join its transaction, so the entry commits or
        rolls back together with the change it describes.
        """
        if work_item_id is None:
            raise ValidationError("work_item_id is required", field="work_item_id")
        field_name = require_text(field_name, "field_name")
        change_type = require_text(change_type, "change_type")
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO work_item_history "
                "(work_item_id, user_id, field_name, old_value, new_value, change_type, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (work_item_id, user_id, field_name, _as_text(old_value), _as_text(new_value), change_type, _now_iso()),
            )
        return cast(int, cursor.lastrowid)

    def fetch_history(self, work_item_id: int) -> list[HistoryEntryWithUser]:
        """Entries for one item, newest first, with the actor's display identity."""
        rows = self._fetchall(
            "SELECT h.*, u.username AS username, u.full_name AS full_name "
            "FROM work_item_history h LEFT JOIN users u ON u.id = h.user_id "
            "WHERE h.work_item_id = ? ORDER BY h.created_at DESC, h.id DESC",
            (work_item_id,),
        )
        return cast(list[HistoryEntryWithUser], [dict(r) for r in rows])
