"""CommentsMixin: the discussion thread attached to each work item."""

from __future__ import annotations

import logging
from typing import cast

from trellis.db_base import DBMixinProtocol, _now_iso
from trellis.types.comments import CommentRecord
from trellis.validation import require_text

logger = logging.getLogger(__name__)

_MAX_COMMENT_LENGTH = 10_000

_COMMENT_SELECT = (
    "SELECT c.id, c.work_item_id, c.user_id, u.username AS username, c.content, c.created_at "
    "FROM work_item_comments c LEFT JOIN users u ON u.id = c.user_id "
)


class CommentsMixin(DBMixinProtocol):
    """Adding and listing work-item comments."""

    def add_comment(self, work_item_id: int, content: str, *, user_id: int | None) -> CommentRecord:
        text = require_text(content, "content", max_length=_MAX_COMMENT_LENGTH)
        item = self.get_work_item(work_item_id)
        now = _now_iso()
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO work_item_comments (work_item_id, user_id, content, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (item.id, user_id, text, now, now),
            )
        comment_id = cursor.lastrowid
        logger.info("Comment %s added to %s", comment_id, item.external_id)
        row = self._fetchone(_COMMENT_SELECT + "WHERE c.id = ?", (comment_id,))
        if row is None:  # pragma: no cover
            msg = f"Comment {comment_id} not found immediately after INSERT"
            raise RuntimeError(msg)
        return cast(CommentRecord, dict(row))

    def list_comments(self, work_item_id: int) -> list[CommentRecord]:
        """Comments on one item, oldest first."""
        rows = self._fetchall(
            _COMMENT_SELECT + "WHERE c.work_item_id = ? ORDER BY c.created_at, c.id",
            (work_item_id,),
        )
        return cast(list[CommentRecord], [dict(r) for r in rows])
