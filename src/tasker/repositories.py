from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from threading import RLock
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID, uuid4

from .errors import NotFoundError
from .models import (
    PRIORITY_RANK,
    AttachmentEntity,
    CategoryEntity,
    CommentEntity,
    PopulatedTodo,
    TodoEntity,
    TodoStats,
    TodoStatus,
    is_overdue,
    utcnow,
)
from .schemas import CategoryCreate, CategoryQuery, CategoryUpdate, TodoCreate, TodoQuery, TodoUpdate
from .settings import Settings, get_settings

# Fields of TodoUpdate copied verbatim when present in the payload
_TODO_UPDATABLE = (
    "title",
    "description",
    "status",
    "priority",
    "due_date",
    "parent_todo_id",
    "category_id",
    "metadata",
    "sort_order",
)


def _enum_value(v: Any) -> Any:
    return getattr(v, "value", v)


def apply_todo_update(current: TodoEntity, data: TodoUpdate, now: datetime) -> TodoEntity:
    """
    Return a copy of current with only the fields present in data applied.

    completed_at follows status: it is stamped when a todo enters 'completed'
    and cleared when it leaves it.
    """
    updated = current.copy()
    for name in _TODO_UPDATABLE:
        if name in data.model_fields_set:
            updated[name] = _enum_value(getattr(data, name))  # type: ignore[literal-required]

    if "status" in data.model_fields_set:
        if updated["status"] == TodoStatus.COMPLETED.value:
            if current["status"] != TodoStatus.COMPLETED.value:
                updated["completed_at"] = now
        else:
            updated["completed_at"] = None
    updated["updated_at"] = now
    return updated


def new_todo_entity(owner_id: str, data: TodoCreate, now: datetime) -> TodoEntity:
    status = _enum_value(data.status)
    return {
        "id": uuid4(),
        "user_id": owner_id,
        "title": data.title,
        "description": data.description,
        "status": status,
        "priority": _enum_value(data.priority),
        "due_date": data.due_date,
        "completed_at": now if status == TodoStatus.COMPLETED.value else None,
        "parent_todo_id": data.parent_todo_id,
        "category_id": data.category_id,
        "metadata": data.metadata,
        "sort_order": data.sort_order,
        "created_at": now,
        "updated_at": now,
    }


def empty_stats() -> TodoStats:
    return {
        "total": 0,
        "draft": 0,
        "active": 0,
        "completed": 0,
        "archived": 0,
        "low": 0,
        "medium": 0,
        "high": 0,
        "overdue": 0,
    }


# PUBLIC_INTERFACE
class TodoRepository(ABC):
    """
    Storage contract for todos and their attachments.

    owner_id is mandatory on every method. Rows of another owner are treated
    exactly like missing rows.
    """

    @abstractmethod
    def get_todo(self, owner_id: str, todo_id: UUID) -> Optional[TodoEntity]:
        """Existence/ownership check: return the owner's todo, or None."""

    @abstractmethod
    def create_todo(self, owner_id: str, data: TodoCreate) -> TodoEntity:
        """Create and return a new TodoEntity."""

    @abstractmethod
    def get_populated_todo(self, owner_id: str, todo_id: UUID) -> Optional[PopulatedTodo]:
        """Return the todo joined with category, subtasks, comments and attachments."""

    @abstractmethod
    def update_todo(self, owner_id: str, todo_id: UUID, data: TodoUpdate) -> Optional[TodoEntity]:
        """Apply the fields present in data. Return updated entity or None if not found."""

    @abstractmethod
    def delete_todo(self, owner_id: str, todo_id: UUID) -> bool:
        """
        Delete a todo, cascading to its subtasks, comments and attachment records.
        Return True if deleted, False if not found.
        """

    @abstractmethod
    def has_subtasks(self, owner_id: str, todo_id: UUID) -> bool:
        """Return True if any of the owner's todos has todo_id as parent."""

    @abstractmethod
    def list_todos(self, owner_id: str, query: TodoQuery) -> Tuple[List[PopulatedTodo], int]:
        """
        Return one page of populated todos and the total count matching filters.
        The total is always counted afresh over the filtered set.
        """

    @abstractmethod
    def get_todo_stats(self, owner_id: str, now: datetime) -> TodoStats:
        """Aggregate counts by status, priority and overdue."""

    @abstractmethod
    def create_attachment(
        self,
        owner_id: str,
        todo_id: UUID,
        name: str,
        file_size: Optional[int],
        mime_type: Optional[str],
        download_key: str,
    ) -> AttachmentEntity:
        """Persist attachment metadata for an already stored object."""

    @abstractmethod
    def get_attachment(self, owner_id: str, todo_id: UUID, attachment_id: UUID) -> Optional[AttachmentEntity]:
        """Return the attachment of the owner's todo, or None."""

    @abstractmethod
    def list_attachments(self, owner_id: str, todo_id: UUID) -> List[AttachmentEntity]:
        """Return the todo's attachments ordered by creation time."""

    @abstractmethod
    def delete_attachment(self, owner_id: str, todo_id: UUID, attachment_id: UUID) -> bool:
        """Delete the attachment record. Return True if deleted."""

    @abstractmethod
    def collect_attachment_keys(self, owner_id: str, todo_id: UUID) -> List[str]:
        """Storage keys of attachments on the todo and its subtasks."""


# PUBLIC_INTERFACE
class CategoryRepository(ABC):
    """Storage contract for categories, scoped by owner."""

    @abstractmethod
    def create_category(self, owner_id: str, data: CategoryCreate) -> CategoryEntity:
        """Create and return a new category."""

    @abstractmethod
    def get_category(self, owner_id: str, category_id: UUID) -> Optional[CategoryEntity]:
        """Return the owner's category, or None."""

    @abstractmethod
    def list_categories(self, owner_id: str, query: CategoryQuery) -> Tuple[List[CategoryEntity], int]:
        """Return one page of categories and the total count."""

    @abstractmethod
    def update_category(self, owner_id: str, category_id: UUID, data: CategoryUpdate) -> Optional[CategoryEntity]:
        """Apply the fields present in data. Return None if not found."""

    @abstractmethod
    def delete_category(self, owner_id: str, category_id: UUID) -> bool:
        """Delete the category; todos referencing it lose their category."""


# PUBLIC_INTERFACE
class CommentRepository(ABC):
    """Storage contract for todo comments, scoped by owner."""

    @abstractmethod
    def create_comment(self, owner_id: str, todo_id: UUID, content: str) -> CommentEntity:
        """Create and return a comment on the owner's todo."""

    @abstractmethod
    def get_comment(self, owner_id: str, comment_id: UUID) -> Optional[CommentEntity]:
        """Return the owner's comment, or None."""

    @abstractmethod
    def list_comments(self, owner_id: str, todo_id: UUID) -> List[CommentEntity]:
        """Return the todo's comments ordered by creation time."""

    @abstractmethod
    def update_comment(self, owner_id: str, comment_id: UUID, content: str) -> Optional[CommentEntity]:
        """Replace the comment content. Return None if not found."""

    @abstractmethod
    def delete_comment(self, owner_id: str, comment_id: UUID) -> bool:
        """Delete the comment. Return True if deleted."""


# PUBLIC_INTERFACE
class Repository(TodoRepository, CategoryRepository, CommentRepository):
    """A storage backend implementing every repository contract."""


def todo_matches(todo: TodoEntity, q: TodoQuery, now: datetime) -> bool:
    """Evaluate the list filters of q against a single todo."""
    if q.status is not None and todo["status"] != q.status.value:
        return False
    if q.priority is not None and todo["priority"] != q.priority.value:
        return False
    if q.category_id is not None and todo["category_id"] != q.category_id:
        return False
    if q.parent_todo_id is not None and todo["parent_todo_id"] != q.parent_todo_id:
        return False
    due = todo["due_date"]
    if q.due_from is not None and (due is None or due < q.due_from):
        return False
    if q.due_to is not None and (due is None or due > q.due_to):
        return False
    if q.overdue is not None and is_overdue(todo, now) != q.overdue:
        return False
    if q.completed is not None and (todo["status"] == TodoStatus.COMPLETED.value) != q.completed:
        return False
    if q.search:
        s = q.search.lower()
        title_ok = s in todo["title"].lower()
        desc_ok = s in (todo["description"] or "").lower()
        if not (title_ok or desc_ok):
            return False
    return True


def sort_todos(items: List[TodoEntity], sort: str, order: str) -> List[TodoEntity]:
    """
    Sort by the requested field with id as tiebreaker, so pages are stable.
    Todos without a due date always go last.
    """
    reverse = order == "desc"
    if sort == "priority":
        return sorted(items, key=lambda t: (PRIORITY_RANK[t["priority"]], str(t["id"])), reverse=reverse)
    if sort == "due_date":
        dated = [t for t in items if t["due_date"] is not None]
        undated = [t for t in items if t["due_date"] is None]
        return (
            sorted(dated, key=lambda t: (t["due_date"], str(t["id"])), reverse=reverse)
            + sorted(undated, key=lambda t: str(t["id"]), reverse=reverse)
        )
    return sorted(items, key=lambda t: (t[sort], str(t["id"])), reverse=reverse)  # type: ignore[literal-required]


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory repository suitable for testing and default runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._todos: Dict[UUID, TodoEntity] = {}
        self._attachments: Dict[UUID, AttachmentEntity] = {}
        self._categories: Dict[UUID, CategoryEntity] = {}
        self._comments: Dict[UUID, CommentEntity] = {}

    def _now(self) -> datetime:
        return utcnow()

    # Every todo read goes through here so owner scoping cannot be skipped
    def _owned_todos(self, owner_id: str) -> List[TodoEntity]:
        return [t for t in self._todos.values() if t["user_id"] == owner_id]

    def _owned_todo(self, owner_id: str, todo_id: UUID) -> Optional[TodoEntity]:
        todo = self._todos.get(todo_id)
        if todo is None or todo["user_id"] != owner_id:
            return None
        return todo

    def _populate(self, owner_id: str, todo: TodoEntity) -> PopulatedTodo:
        category = None
        if todo["category_id"] is not None:
            category = self._categories.get(todo["category_id"])
            if category is not None and category["user_id"] != owner_id:
                category = None
        children = sorted(
            (t for t in self._owned_todos(owner_id) if t["parent_todo_id"] == todo["id"]),
            key=lambda t: (t["sort_order"], t["created_at"]),
        )
        populated: PopulatedTodo = {
            **todo.copy(),  # type: ignore[typeddict-item]
            "category": None if category is None else category.copy(),
            "children": [c.copy() for c in children],
            "comments": self._comments_for(todo["id"]),
            "attachments": self._attachments_for(todo["id"]),
        }
        return populated

    def _comments_for(self, todo_id: UUID) -> List[CommentEntity]:
        items = [c for c in self._comments.values() if c["todo_id"] == todo_id]
        return [c.copy() for c in sorted(items, key=lambda c: c["created_at"])]

    def _attachments_for(self, todo_id: UUID) -> List[AttachmentEntity]:
        items = [a for a in self._attachments.values() if a["todo_id"] == todo_id]
        return [a.copy() for a in sorted(items, key=lambda a: a["created_at"])]

    # --- Todos ---

    def get_todo(self, owner_id: str, todo_id: UUID) -> Optional[TodoEntity]:
        with self._lock:
            todo = self._owned_todo(owner_id, todo_id)
            return None if todo is None else todo.copy()

    def create_todo(self, owner_id: str, data: TodoCreate) -> TodoEntity:
        entity = new_todo_entity(owner_id, data, self._now())
        with self._lock:
            self._todos[entity["id"]] = entity
        return entity.copy()

    def get_populated_todo(self, owner_id: str, todo_id: UUID) -> Optional[PopulatedTodo]:
        with self._lock:
            todo = self._owned_todo(owner_id, todo_id)
            return None if todo is None else self._populate(owner_id, todo)

    def update_todo(self, owner_id: str, todo_id: UUID, data: TodoUpdate) -> Optional[TodoEntity]:
        with self._lock:
            existing = self._owned_todo(owner_id, todo_id)
            if existing is None:
                return None
            updated = apply_todo_update(existing, data, self._now())
            self._todos[todo_id] = updated
            return updated.copy()

    def delete_todo(self, owner_id: str, todo_id: UUID) -> bool:
        with self._lock:
            if self._owned_todo(owner_id, todo_id) is None:
                return False
            doomed = {todo_id} | {t["id"] for t in self._owned_todos(owner_id) if t["parent_todo_id"] == todo_id}
            for tid in doomed:
                self._todos.pop(tid, None)
            self._attachments = {k: a for k, a in self._attachments.items() if a["todo_id"] not in doomed}
            self._comments = {k: c for k, c in self._comments.items() if c["todo_id"] not in doomed}
            return True

    def has_subtasks(self, owner_id: str, todo_id: UUID) -> bool:
        with self._lock:
            return any(t["parent_todo_id"] == todo_id for t in self._owned_todos(owner_id))

    def list_todos(self, owner_id: str, query: TodoQuery) -> Tuple[List[PopulatedTodo], int]:
        now = self._now()
        with self._lock:
            items = [t for t in self._owned_todos(owner_id) if todo_matches(t, query, now)]
            total = len(items)
            items_sorted = sort_todos(items, query.sort, query.order)
            page = items_sorted[query.offset:query.offset + query.limit]
            return [self._populate(owner_id, t) for t in page], total

    def get_todo_stats(self, owner_id: str, now: datetime) -> TodoStats:
        stats = empty_stats()
        with self._lock:
            for t in self._owned_todos(owner_id):
                stats["total"] += 1
                stats[t["status"]] += 1  # type: ignore[literal-required]
                stats[t["priority"]] += 1  # type: ignore[literal-required]
                if is_overdue(t, now):
                    stats["overdue"] += 1
        return stats

    # --- Attachments ---

    def create_attachment(
        self,
        owner_id: str,
        todo_id: UUID,
        name: str,
        file_size: Optional[int],
        mime_type: Optional[str],
        download_key: str,
    ) -> AttachmentEntity:
        now = self._now()
        attachment: AttachmentEntity = {
            "id": uuid4(),
            "todo_id": todo_id,
            "name": name,
            "uploaded_by": owner_id,
            "download_key": download_key,
            "file_size": file_size,
            "mime_type": mime_type,
            "created_at": now,
            "updated_at": now,
        }
        with self._lock:
            if self._owned_todo(owner_id, todo_id) is None:
                raise NotFoundError("Todo not found")
            self._attachments[attachment["id"]] = attachment
        return attachment.copy()

    def get_attachment(self, owner_id: str, todo_id: UUID, attachment_id: UUID) -> Optional[AttachmentEntity]:
        with self._lock:
            if self._owned_todo(owner_id, todo_id) is None:
                return None
            attachment = self._attachments.get(attachment_id)
            if attachment is None or attachment["todo_id"] != todo_id:
                return None
            return attachment.copy()

    def list_attachments(self, owner_id: str, todo_id: UUID) -> List[AttachmentEntity]:
        with self._lock:
            if self._owned_todo(owner_id, todo_id) is None:
                return []
            return self._attachments_for(todo_id)

    def delete_attachment(self, owner_id: str, todo_id: UUID, attachment_id: UUID) -> bool:
        with self._lock:
            if self.get_attachment(owner_id, todo_id, attachment_id) is None:
                return False
            del self._attachments[attachment_id]
            return True

    def collect_attachment_keys(self, owner_id: str, todo_id: UUID) -> List[str]:
        with self._lock:
            if self._owned_todo(owner_id, todo_id) is None:
                return []
            ids = {todo_id} | {t["id"] for t in self._owned_todos(owner_id) if t["parent_todo_id"] == todo_id}
            return [a["download_key"] for a in self._attachments.values() if a["todo_id"] in ids]

    # --- Categories ---

    def create_category(self, owner_id: str, data: CategoryCreate) -> CategoryEntity:
        now = self._now()
        category: CategoryEntity = {
            "id": uuid4(),
            "user_id": owner_id,
            "name": data.name,
            "description": data.description,
            "color": data.color,
            "created_at": now,
            "updated_at": now,
        }
        with self._lock:
            self._categories[category["id"]] = category
        return category.copy()

    def get_category(self, owner_id: str, category_id: UUID) -> Optional[CategoryEntity]:
        with self._lock:
            category = self._categories.get(category_id)
            if category is None or category["user_id"] != owner_id:
                return None
            return category.copy()

    def list_categories(self, owner_id: str, query: CategoryQuery) -> Tuple[List[CategoryEntity], int]:
        with self._lock:
            items = [c for c in self._categories.values() if c["user_id"] == owner_id]
            if query.search:
                s = query.search.lower()
                items = [c for c in items if s in c["name"].lower()]
            total = len(items)
            items_sorted = sorted(
                items,
                key=lambda c: (c[query.sort], str(c["id"])),  # type: ignore[literal-required]
                reverse=query.order == "desc",
            )
            page = items_sorted[query.offset:query.offset + query.limit]
            return [c.copy() for c in page], total

    def update_category(self, owner_id: str, category_id: UUID, data: CategoryUpdate) -> Optional[CategoryEntity]:
        with self._lock:
            if self.get_category(owner_id, category_id) is None:
                return None
            updated = self._categories[category_id].copy()
            for name in ("name", "description", "color"):
                if name in data.model_fields_set:
                    updated[name] = getattr(data, name)  # type: ignore[literal-required]
            updated["updated_at"] = self._now()
            self._categories[category_id] = updated
            return updated.copy()

    def delete_category(self, owner_id: str, category_id: UUID) -> bool:
        with self._lock:
            if self.get_category(owner_id, category_id) is None:
                return False
            del self._categories[category_id]
            for t in self._owned_todos(owner_id):
                if t["category_id"] == category_id:
                    t["category_id"] = None
            return True

    # --- Comments ---

    def create_comment(self, owner_id: str, todo_id: UUID, content: str) -> CommentEntity:
        now = self._now()
        comment: CommentEntity = {
            "id": uuid4(),
            "todo_id": todo_id,
            "user_id": owner_id,
            "content": content,
            "created_at": now,
            "updated_at": now,
        }
        with self._lock:
            if self._owned_todo(owner_id, todo_id) is None:
                raise NotFoundError("Todo not found")
            self._comments[comment["id"]] = comment
        return comment.copy()

    def get_comment(self, owner_id: str, comment_id: UUID) -> Optional[CommentEntity]:
        with self._lock:
            comment = self._comments.get(comment_id)
            if comment is None or comment["user_id"] != owner_id:
                return None
            return comment.copy()

    def list_comments(self, owner_id: str, todo_id: UUID) -> List[CommentEntity]:
        with self._lock:
            if self._owned_todo(owner_id, todo_id) is None:
                return []
            return self._comments_for(todo_id)

    def update_comment(self, owner_id: str, comment_id: UUID, content: str) -> Optional[CommentEntity]:
        with self._lock:
            if self.get_comment(owner_id, comment_id) is None:
                return None
            updated = self._comments[comment_id].copy()
            updated["content"] = content
            updated["updated_at"] = self._now()
            self._comments[comment_id] = updated
            return updated.copy()

    def delete_comment(self, owner_id: str, comment_id: UUID) -> bool:
        with self._lock:
            if self.get_comment(owner_id, comment_id) is None:
                return False
            del self._comments[comment_id]
            return True


# PUBLIC_INTERFACE
def get_repository(settings: Optional[Settings] = None) -> Repository:
    """
    Factory to return the configured repository based on settings.
    - memory: InMemoryRepository
    - sqlite: SQLiteRepository
    """
    settings = settings or get_settings()
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteRepository

        return SQLiteRepository(settings.sqlite_db_path)
    return InMemoryRepository()
