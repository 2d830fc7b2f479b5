"""
Todo domain service.

Enforces the hierarchy and category invariants, coordinates attachment
upload/delete between the repository and the object store, and emits
business events. Holds no per-request state.
"""
from __future__ import annotations

import io
import logging
from datetime import timedelta
from typing import BinaryIO, List, Optional, Tuple
from uuid import UUID

from .categories import CategoryDirectory
from .errors import InvalidHierarchyError, NotFoundError, ReadFailureError, StorageError, UploadFailureError
from .log import log_event
from .models import AttachmentEntity, PopulatedTodo, TodoEntity, TodoStats, utcnow
from .repositories import TodoRepository
from .schemas import TodoCreate, TodoQuery, TodoUpdate
from .storage import SNIFF_LENGTH, ObjectStore, detect_content_type
from .tasks import BackgroundDispatcher

logger = logging.getLogger(__name__)

PRESIGNED_URL_TTL = timedelta(minutes=15)


def attachment_key(todo_id: UUID, file_name: str) -> str:
    """Object key for an attachment. Re-uploading the same name overwrites the object."""
    return f"todos/attachments/{todo_id}/{file_name}"


def _rewound(stream: BinaryIO, head: bytes, start: Optional[int]) -> BinaryIO:
    """Return a stream positioned at the first byte, including the sniffed head."""
    if start is not None:
        stream.seek(start)
        return stream
    return io.BytesIO(head + stream.read())


class TodoService:
    """Single entry point for todo operations consumed by the HTTP layer."""

    def __init__(
        self,
        todo_repo: TodoRepository,
        categories: CategoryDirectory,
        store: ObjectStore,
        dispatcher: BackgroundDispatcher,
        bucket: str,
    ) -> None:
        self._todos = todo_repo
        self._categories = categories
        self._store = store
        self._dispatcher = dispatcher
        self._bucket = bucket

    # --- Validation ---

    def _require_todo(self, owner_id: str, todo_id: UUID) -> TodoEntity:
        todo = self._todos.get_todo(owner_id, todo_id)
        if todo is None:
            logger.warning("todo validation failed", extra={"todo_id": str(todo_id)})
            raise NotFoundError("Todo not found")
        return todo

    def _validate_parent(self, owner_id: str, parent_id: UUID, todo_id: Optional[UUID] = None) -> None:
        if todo_id is not None and parent_id == todo_id:
            logger.warning("todo cannot be its own parent", extra={"todo_id": str(todo_id)})
            raise InvalidHierarchyError("Todo cannot be its own parent")

        parent = self._todos.get_todo(owner_id, parent_id)
        if parent is None:
            logger.warning("parent todo validation failed", extra={"parent_todo_id": str(parent_id)})
            raise InvalidHierarchyError("Parent todo not found", detail={"parent_todo_id": str(parent_id)})

        if parent["parent_todo_id"] is not None:
            logger.warning("parent todo cannot have children", extra={"parent_todo_id": str(parent_id)})
            raise InvalidHierarchyError("Parent todo cannot have children (subtasks can't have subtasks)")

        if todo_id is not None and self._todos.has_subtasks(owner_id, todo_id):
            logger.warning("todo with subtasks cannot become a subtask", extra={"todo_id": str(todo_id)})
            raise InvalidHierarchyError("Todo with subtasks cannot become a subtask")

    # --- Todos ---

    def create_todo(self, owner_id: str, payload: TodoCreate) -> TodoEntity:
        if payload.parent_todo_id is not None:
            self._validate_parent(owner_id, payload.parent_todo_id)
        if payload.category_id is not None:
            self._categories.require_owned(owner_id, payload.category_id)

        todo = self._todos.create_todo(owner_id, payload)
        log_event(
            logger,
            "todo_created",
            "Todo created successfully",
            todo_id=todo["id"],
            title=todo["title"],
            category_id=todo["category_id"],
            priority=todo["priority"],
        )
        return todo

    def get_todo(self, owner_id: str, todo_id: UUID) -> PopulatedTodo:
        todo = self._todos.get_populated_todo(owner_id, todo_id)
        if todo is None:
            raise NotFoundError("Todo not found")
        return todo

    def list_todos(self, owner_id: str, query: TodoQuery) -> Tuple[List[PopulatedTodo], int]:
        return self._todos.list_todos(owner_id, query)

    def update_todo(self, owner_id: str, todo_id: UUID, payload: TodoUpdate) -> TodoEntity:
        self._require_todo(owner_id, todo_id)

        if payload.parent_todo_id is not None:
            self._validate_parent(owner_id, payload.parent_todo_id, todo_id)
            logger.debug("parent todo validation passed")
        if payload.category_id is not None:
            self._categories.require_owned(owner_id, payload.category_id)
            logger.debug("category validation passed")

        todo = self._todos.update_todo(owner_id, todo_id, payload)
        if todo is None:
            raise NotFoundError("Todo not found")
        log_event(
            logger,
            "todo_updated",
            "Todo updated successfully",
            todo_id=todo["id"],
            title=todo["title"],
            category_id=todo["category_id"],
            priority=todo["priority"],
            status=todo["status"],
        )
        return todo

    def delete_todo(self, owner_id: str, todo_id: UUID) -> None:
        self._require_todo(owner_id, todo_id)
        keys = self._todos.collect_attachment_keys(owner_id, todo_id)

        if not self._todos.delete_todo(owner_id, todo_id):
            raise NotFoundError("Todo not found")
        log_event(logger, "todo_deleted", "Todo deleted successfully", todo_id=todo_id)

        for key in keys:
            self._dispatcher.submit("delete_attachment_object", self._store.delete, self._bucket, key)

    def get_todo_stats(self, owner_id: str) -> TodoStats:
        return self._todos.get_todo_stats(owner_id, utcnow())

    # --- Attachments ---

    def upload_attachment(
        self,
        owner_id: str,
        todo_id: UUID,
        file_name: str,
        file_size: Optional[int],
        stream: BinaryIO,
    ) -> AttachmentEntity:
        self._require_todo(owner_id, todo_id)
        if not file_name:
            raise ReadFailureError("file name is required")

        key = attachment_key(todo_id, file_name)

        try:
            start = stream.tell() if stream.seekable() else None
            head = stream.read(SNIFF_LENGTH)
            body = _rewound(stream, head, start)
        except (OSError, ValueError) as e:
            logger.error("failed to read file", extra={"todo_id": str(todo_id)}, exc_info=e)
            raise ReadFailureError("failed to read file") from e
        mime_type = detect_content_type(head)

        try:
            self._store.upload(self._bucket, key, body, mime_type)
        except (StorageError, OSError) as e:
            logger.error("failed to upload file", extra={"todo_id": str(todo_id), "s3_key": key}, exc_info=e)
            raise UploadFailureError("failed to upload file", detail={"cause": str(e)}) from e

        # Metadata is written only after the object exists; a crash in between leaves an orphaned object
        attachment = self._todos.create_attachment(owner_id, todo_id, file_name, file_size, mime_type, key)
        log_event(
            logger,
            "todo_attachment_uploaded",
            "Attachment uploaded successfully",
            todo_id=todo_id,
            attachment_id=attachment["id"],
            s3_key=attachment["download_key"],
        )
        return attachment

    def list_attachments(self, owner_id: str, todo_id: UUID) -> List[AttachmentEntity]:
        self._require_todo(owner_id, todo_id)
        return self._todos.list_attachments(owner_id, todo_id)

    def _require_attachment(self, owner_id: str, todo_id: UUID, attachment_id: UUID) -> AttachmentEntity:
        self._require_todo(owner_id, todo_id)
        attachment = self._todos.get_attachment(owner_id, todo_id, attachment_id)
        if attachment is None:
            logger.warning("attachment validation failed", extra={"attachment_id": str(attachment_id)})
            raise NotFoundError("Attachment not found")
        return attachment

    def delete_attachment(self, owner_id: str, todo_id: UUID, attachment_id: UUID) -> None:
        attachment = self._require_attachment(owner_id, todo_id, attachment_id)

        if not self._todos.delete_attachment(owner_id, todo_id, attachment_id):
            raise NotFoundError("Attachment not found")
        log_event(
            logger,
            "todo_attachment_deleted",
            "Attachment deleted successfully",
            todo_id=todo_id,
            attachment_id=attachment_id,
        )

        # The record is the source of truth; a failed object delete only leaves an orphan
        self._dispatcher.submit("delete_attachment_object", self._store.delete, self._bucket, attachment["download_key"])

    def get_attachment_download_url(self, owner_id: str, todo_id: UUID, attachment_id: UUID) -> str:
        attachment = self._require_attachment(owner_id, todo_id, attachment_id)
        return self._store.presigned_download_url(self._bucket, attachment["download_key"], PRESIGNED_URL_TTL)
