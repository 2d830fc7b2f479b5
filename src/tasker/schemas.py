from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import TodoPriority, TodoStatus

# Shared type for incoming dates which can be a date, datetime, or ISO8601 string
DueDateInput = Union[date, datetime, str]

SortField = Literal["created_at", "updated_at", "title", "priority", "due_date"]
CategorySortField = Literal["created_at", "updated_at", "name"]
SortOrder = Literal["asc", "desc"]

_HEX_COLOR = r"^#(?:[0-9a-fA-F]{3}){1,2}$"


def _parse_due_date(value: Optional[DueDateInput]) -> Optional[datetime]:
    """
    Internal helper to normalize date input into a naive UTC datetime.
    - If value is a string, attempt to parse via datetime.fromisoformat; if time is missing, set to 00:00.
    - If value is a date (not datetime), convert to datetime at 00:00.
    - Timezone-aware datetimes are converted to UTC and made naive.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        # Promote a date to a datetime at midnight
        parsed = datetime(value.year, value.month, value.day, 0, 0, 0)
    elif isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(s)
        except ValueError:
            # If only a date is provided, convert to midnight
            try:
                d = date.fromisoformat(s)
            except ValueError as e:
                raise ValueError(
                    "Invalid date format. Use ISO8601 date or datetime string (e.g., '2025-01-31' or '2025-01-31T13:45:00')."
                ) from e
            parsed = datetime(d.year, d.month, d.day, 0, 0, 0)
    else:
        raise ValueError("Invalid type for date; expected date, datetime, or ISO8601 string.")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _strip_title(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    s = v.strip()
    if not (3 <= len(s) <= 255):
        raise ValueError("title length must be between 3 and 255 characters")
    return s


def _strip_name(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    s = v.strip()
    if not (3 <= len(s) <= 100):
        raise ValueError("name length must be between 3 and 100 characters")
    return s


# PUBLIC_INTERFACE
class TodoCreate(BaseModel):
    """
    Schema for creating a new Todo item.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Buy groceries",
                "description": "Milk, eggs, bread",
                "priority": "high",
                "due_date": "2025-02-01",
                "category_id": "6f1c2d1e-3a0b-4f5e-9d7c-1a2b3c4d5e6f",
            }
        }
    )

    title: str = Field(..., description="Short title for the todo item", min_length=3, max_length=255)
    description: Optional[str] = Field(default=None, description="Optional detailed description", max_length=1000)
    status: TodoStatus = Field(default=TodoStatus.DRAFT, description="Lifecycle status")
    priority: TodoPriority = Field(default=TodoPriority.MEDIUM, description="Priority level")
    due_date: Optional[datetime] = Field(
        default=None,
        description="Due date/time of the todo item. Accepts ISO8601 date or datetime; dates are set to 00:00",
    )
    parent_todo_id: Optional[UUID] = Field(default=None, description="Parent todo; subtasks cannot have subtasks")
    category_id: Optional[UUID] = Field(default=None, description="Category owned by the same user")
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="Free-form metadata")
    sort_order: int = Field(default=0, description="Ordering hint among siblings")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Strip whitespace and enforce 3..255 length.
        """
        if v is None:
            raise ValueError("title is required")
        return _strip_title(v)  # type: ignore[return-value]

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        """
        Normalize due_date from str/date/datetime to datetime.
        """
        return _parse_due_date(v)


# PUBLIC_INTERFACE
class TodoUpdate(BaseModel):
    """
    Schema for partially updating an existing Todo item.

    Only fields present in the request body are applied (see ``model_fields_set``).
    Nullable fields sent as ``null`` are cleared; ``title``, ``status``,
    ``priority`` and ``sort_order`` cannot be cleared.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Buy groceries and supplies",
                "status": "completed",
                "due_date": "2025-02-02T09:30:00",
                "category_id": None,
            }
        }
    )

    title: Optional[str] = Field(default=None, description="Short title for the todo item", min_length=3, max_length=255)
    description: Optional[str] = Field(default=None, description="Optional detailed description", max_length=1000)
    status: Optional[TodoStatus] = Field(default=None, description="Lifecycle status")
    priority: Optional[TodoPriority] = Field(default=None, description="Priority level")
    due_date: Optional[datetime] = Field(
        default=None,
        description="Due date/time of the todo item. Accepts ISO8601 date or datetime; dates are set to 00:00",
    )
    parent_todo_id: Optional[UUID] = Field(default=None, description="New parent todo, or null to detach")
    category_id: Optional[UUID] = Field(default=None, description="New category, or null to clear")
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="Free-form metadata")
    sort_order: Optional[int] = Field(default=None, description="Ordering hint among siblings")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        """
        If title is provided, strip whitespace and enforce 3..255 length.
        """
        return _strip_title(v)

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        return _parse_due_date(v)

    @model_validator(mode="after")
    def reject_null_required(self) -> "TodoUpdate":
        for name in ("title", "status", "priority", "sort_order"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


# PUBLIC_INTERFACE
class TodoQuery(BaseModel):
    """
    Filters, sorting and pagination for listing todos.
    Absent filters impose no constraint.
    """

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    sort: SortField = "created_at"
    order: SortOrder = "desc"
    search: Optional[str] = Field(default=None, min_length=1)
    status: Optional[TodoStatus] = None
    priority: Optional[TodoPriority] = None
    category_id: Optional[UUID] = None
    parent_todo_id: Optional[UUID] = None
    due_from: Optional[datetime] = None
    due_to: Optional[datetime] = None
    overdue: Optional[bool] = None
    completed: Optional[bool] = None

    @field_validator("due_from", "due_to", mode="before")
    @classmethod
    def parse_dates(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        return _parse_due_date(v)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


# PUBLIC_INTERFACE
class CategoryCreate(BaseModel):
    """Schema for creating a category."""

    name: str = Field(..., min_length=3, max_length=100, description="Category name")
    description: Optional[str] = Field(default=None, max_length=1000)
    color: Optional[str] = Field(default=None, pattern=_HEX_COLOR, description="Hex display color")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return _strip_name(v)  # type: ignore[return-value]


# PUBLIC_INTERFACE
class CategoryUpdate(BaseModel):
    """Partial update of a category; only provided fields are applied."""

    name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    color: Optional[str] = Field(default=None, pattern=_HEX_COLOR)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: Optional[str]) -> Optional[str]:
        return _strip_name(v)

    @model_validator(mode="after")
    def reject_null_name(self) -> "CategoryUpdate":
        if "name" in self.model_fields_set and self.name is None:
            raise ValueError("name cannot be null")
        return self


class CategoryQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    sort: CategorySortField = "created_at"
    order: SortOrder = "desc"
    search: Optional[str] = Field(default=None, min_length=1)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000)


class CommentUpdate(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000)


# PUBLIC_INTERFACE
class TodoOut(BaseModel):
    """
    Schema returned by the API for a Todo item.
    """

    id: UUID = Field(..., description="Unique identifier of the todo item")
    title: str = Field(..., description="Short title for the todo item")
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    status: TodoStatus
    priority: TodoPriority
    due_date: Optional[datetime] = Field(
        default=None, description="Due date/time of the todo item as an ISO8601 datetime"
    )
    completed_at: Optional[datetime] = None
    parent_todo_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    metadata: Optional[Dict[str, Any]] = None
    sort_order: int = 0
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")


class CategoryOut(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CommentOut(BaseModel):
    id: UUID
    todo_id: UUID
    user_id: str
    content: str
    created_at: datetime
    updated_at: datetime


class AttachmentOut(BaseModel):
    id: UUID
    todo_id: UUID
    name: str
    uploaded_by: str
    download_key: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PopulatedTodoOut(TodoOut):
    """A todo with its category, subtasks, comments and attachments."""

    category: Optional[CategoryOut] = None
    children: List[TodoOut] = Field(default_factory=list)
    comments: List[CommentOut] = Field(default_factory=list)
    attachments: List[AttachmentOut] = Field(default_factory=list)


class TodoStatsOut(BaseModel):
    total: int
    draft: int
    active: int
    completed: int
    archived: int
    low: int
    medium: int
    high: int
    overdue: int


class DownloadURLOut(BaseModel):
    url: str = Field(..., description="Presigned URL valid for 15 minutes")
