from __future__ import annotations

import logging
from typing import List
from uuid import UUID

from .errors import NotFoundError
from .log import log_event
from .models import CommentEntity
from .repositories import CommentRepository, TodoRepository

logger = logging.getLogger(__name__)


class CommentService:
    """Comments on todos. A comment is visible only through its owner's todo."""

    def __init__(self, comment_repo: CommentRepository, todo_repo: TodoRepository) -> None:
        self._comments = comment_repo
        self._todos = todo_repo

    def _require_todo(self, owner_id: str, todo_id: UUID) -> None:
        if self._todos.get_todo(owner_id, todo_id) is None:
            logger.warning("todo validation failed", extra={"todo_id": str(todo_id)})
            raise NotFoundError("Todo not found")

    def add_comment(self, owner_id: str, todo_id: UUID, content: str) -> CommentEntity:
        self._require_todo(owner_id, todo_id)
        comment = self._comments.create_comment(owner_id, todo_id, content)
        log_event(
            logger,
            "comment_added",
            "Comment added successfully",
            todo_id=todo_id,
            comment_id=comment["id"],
        )
        return comment

    def list_comments(self, owner_id: str, todo_id: UUID) -> List[CommentEntity]:
        self._require_todo(owner_id, todo_id)
        return self._comments.list_comments(owner_id, todo_id)

    def update_comment(self, owner_id: str, comment_id: UUID, content: str) -> CommentEntity:
        comment = self._comments.update_comment(owner_id, comment_id, content)
        if comment is None:
            raise NotFoundError("Comment not found")
        log_event(logger, "comment_updated", "Comment updated successfully", comment_id=comment_id)
        return comment

    def delete_comment(self, owner_id: str, comment_id: UUID) -> None:
        if not self._comments.delete_comment(owner_id, comment_id):
            raise NotFoundError("Comment not found")
        log_event(logger, "comment_deleted", "Comment deleted successfully", comment_id=comment_id)
