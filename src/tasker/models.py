from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, TypedDict
from uuid import UUID


class TodoStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class TodoPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Sort rank for priority ordering (low < medium < high)
PRIORITY_RANK = {TodoPriority.LOW.value: 0, TodoPriority.MEDIUM.value: 1, TodoPriority.HIGH.value: 2}


# PUBLIC_INTERFACE
class TodoEntity(TypedDict):
    """
    Storage-level representation of a Todo item.

    Fields:
    - id: Unique identifier
    - user_id: Owner of the todo; scopes every read and write
    - title: Short title (3..255 chars, trimmed on input via schemas)
    - description: Optional detailed description
    - status / priority: enum values stored as plain strings
    - due_date: Optional due datetime
    - completed_at: Set while status is 'completed'
    - parent_todo_id: Optional parent (one level only)
    - category_id: Optional category reference
    - metadata: Optional free-form JSON object
    - sort_order: Ordering hint among siblings
    - created_at / updated_at: timestamps
    """

    id: UUID
    user_id: str
    title: str
    description: Optional[str]
    status: str
    priority: str
    due_date: Optional[datetime]
    completed_at: Optional[datetime]
    parent_todo_id: Optional[UUID]
    category_id: Optional[UUID]
    metadata: Optional[Dict[str, Any]]
    sort_order: int
    created_at: datetime
    updated_at: datetime


class AttachmentEntity(TypedDict):
    id: UUID
    todo_id: UUID
    name: str
    uploaded_by: str
    download_key: str
    file_size: Optional[int]
    mime_type: Optional[str]
    created_at: datetime
    updated_at: datetime


class CategoryEntity(TypedDict):
    id: UUID
    user_id: str
    name: str
    description: Optional[str]
    color: Optional[str]
    created_at: datetime
    updated_at: datetime


class CommentEntity(TypedDict):
    id: UUID
    todo_id: UUID
    user_id: str
    content: str
    created_at: datetime
    updated_at: datetime


class PopulatedTodo(TodoEntity):
    """A todo joined with its category, subtasks, comments and attachments."""

    category: Optional[CategoryEntity]
    children: List[TodoEntity]
    comments: List[CommentEntity]
    attachments: List[AttachmentEntity]


class TodoStats(TypedDict):
    total: int
    draft: int
    active: int
    completed: int
    archived: int
    low: int
    medium: int
    high: int
    overdue: int


def is_overdue(todo: TodoEntity, now: datetime) -> bool:
    """A todo is overdue when its due date has passed and it is still open."""
    due = todo["due_date"]
    if due is None:
        return False
    if todo["status"] in (TodoStatus.COMPLETED.value, TodoStatus.ARCHIVED.value):
        return False
    return due < now


def utcnow() -> datetime:
    """Naive UTC timestamp; all stored datetimes are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
