from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field, ValidationError

from ..auth import get_owner_id
from ..dependencies import get_todo_service
from ..models import TodoPriority, TodoStatus
from ..schemas import (
    AttachmentOut,
    DownloadURLOut,
    PopulatedTodoOut,
    SortField,
    SortOrder,
    TodoCreate,
    TodoOut,
    TodoQuery,
    TodoStatsOut,
    TodoUpdate,
)
from ..service import TodoService
from ..utils import pagination_envelope

router = APIRouter(
    prefix="/api/v1/todos",
    tags=["todos"],
)


class PaginationEnvelope(BaseModel):
    """
    Envelope for paginated list responses.
    """
    data: List[PopulatedTodoOut] = Field(..., description="Todo items on this page")
    page: int = Field(..., description="1-based page number")
    limit: int = Field(..., description="Page size")
    total: int = Field(..., description="Total number of items matching the query")
    total_pages: int = Field(..., description="Number of pages for this page size")


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=TodoOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Todo",
    description="Create a new Todo item and return the created resource.",
    responses={
        201: {"description": "Todo created successfully"},
        400: {"description": "Invalid parent or category reference"},
    },
)
def create_todo(
    payload: TodoCreate,
    owner_id: str = Depends(get_owner_id),
    service: TodoService = Depends(get_todo_service),
) -> TodoOut:
    """
    Create a new Todo.
    """
    created = service.create_todo(owner_id, payload)
    return TodoOut.model_validate(created)


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=PaginationEnvelope,
    summary="List Todos",
    description=(
        "List todos with optional filters and pagination.\n\n"
        "Query parameters:\n"
        "- page: 1-based page number\n"
        "- limit: page size (1..100)\n"
        "- sort: one of created_at, updated_at, title, priority, due_date\n"
        "- order: asc or desc\n"
        "- search: substring match on title/description\n"
        "- status, priority, category_id, parent_todo_id: exact filters\n"
        "- due_from, due_to: inclusive due date range\n"
        "- overdue, completed: boolean filters\n\n"
        "Returns a pagination envelope with items and total count."
    ),
    responses={
        200: {"description": "List retrieved successfully"},
        422: {"description": "Invalid query parameters"},
    },
)
def list_todos(
    page: int = Query(1, ge=1, description="1-based page number"),
    limit: int = Query(10, ge=1, le=100, description="Page size"),
    sort: SortField = Query("created_at", description="Sort field"),
    order: SortOrder = Query("desc", description="Sort direction"),
    search: Optional[str] = Query(None, description="Search text for title/description"),
    status_filter: Optional[TodoStatus] = Query(None, alias="status", description="Filter by status"),
    priority: Optional[TodoPriority] = Query(None, description="Filter by priority"),
    category_id: Optional[UUID] = Query(None, description="Filter by category"),
    parent_todo_id: Optional[UUID] = Query(None, description="Filter by parent todo"),
    due_from: Optional[str] = Query(None, description="Due on or after (ISO8601 date or datetime)"),
    due_to: Optional[str] = Query(None, description="Due on or before (ISO8601 date or datetime)"),
    overdue: Optional[bool] = Query(None, description="Only overdue (true) or not overdue (false)"),
    completed: Optional[bool] = Query(None, description="Filter by completion"),
    owner_id: str = Depends(get_owner_id),
    service: TodoService = Depends(get_todo_service),
) -> PaginationEnvelope:
    """
    List todos with pagination and filters.
    """
    try:
        query = TodoQuery(
            page=page,
            limit=limit,
            sort=sort,
            order=order,
            search=search.strip() if search and search.strip() else None,
            status=status_filter,
            priority=priority,
            category_id=category_id,
            parent_todo_id=parent_todo_id,
            due_from=due_from,
            due_to=due_to,
            overdue=overdue,
            completed=completed,
        )
    except ValidationError as e:
        raise RequestValidationError(e.errors()) from e

    items, total = service.list_todos(owner_id, query)
    envelope = pagination_envelope(
        items=[PopulatedTodoOut.model_validate(it) for it in items],
        total=total,
        page=query.page,
        limit=query.limit,
    )
    return PaginationEnvelope(**envelope)


# PUBLIC_INTERFACE
@router.get(
    "/stats",
    response_model=TodoStatsOut,
    summary="Todo Statistics",
    description="Counts of the caller's todos by status, priority and overdue.",
)
def get_todo_stats(
    owner_id: str = Depends(get_owner_id),
    service: TodoService = Depends(get_todo_service),
) -> TodoStatsOut:
    return TodoStatsOut(**service.get_todo_stats(owner_id))


# PUBLIC_INTERFACE
@router.get(
    "/{todo_id}",
    response_model=PopulatedTodoOut,
    summary="Get Todo",
    description="Get a single Todo item by ID with its category, subtasks, comments and attachments.",
    responses={
        200: {"description": "Todo found"},
        404: {"description": "Todo not found"},
    },
)
def get_todo(
    todo_id: UUID,
    owner_id: str = Depends(get_owner_id),
    service: TodoService = Depends(get_todo_service),
) -> PopulatedTodoOut:
    """
    Retrieve a single Todo item by its ID.
    """
    return PopulatedTodoOut.model_validate(service.get_todo(owner_id, todo_id))


# PUBLIC_INTERFACE
@router.patch(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Update Todo",
    description="Partially update fields of a Todo item. Fields sent as null are cleared.",
    responses={
        200: {"description": "Todo updated"},
        400: {"description": "Invalid parent or category reference"},
        404: {"description": "Todo not found"},
    },
)
def patch_todo(
    todo_id: UUID,
    payload: TodoUpdate,
    owner_id: str = Depends(get_owner_id),
    service: TodoService = Depends(get_todo_service),
) -> TodoOut:
    """
    Partial update of a Todo item.
    """
    return TodoOut.model_validate(service.update_todo(owner_id, todo_id, payload))


# PUBLIC_INTERFACE
@router.delete(
    "/{todo_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Todo",
    description="Delete a Todo item by ID together with its subtasks, comments and attachments.",
    responses={
        204: {"description": "Todo deleted"},
        404: {"description": "Todo not found"},
    },
)
def delete_todo(
    todo_id: UUID,
    owner_id: str = Depends(get_owner_id),
    service: TodoService = Depends(get_todo_service),
) -> None:
    """
    Delete a Todo. Returns 204 on success, 404 if not found.
    """
    service.delete_todo(owner_id, todo_id)
    return None


# PUBLIC_INTERFACE
@router.post(
    "/{todo_id}/attachments",
    response_model=AttachmentOut,
    status_code=status.HTTP_201_CREATED,
    summary="Upload Attachment",
    responses={
        201: {"description": "Attachment uploaded"},
        404: {"description": "Todo not found"},
        502: {"description": "Object storage write failed"},
    },
)
def upload_attachment(
    todo_id: UUID,
    file: UploadFile = File(..., description="File to attach"),
    owner_id: str = Depends(get_owner_id),
    service: TodoService = Depends(get_todo_service),
) -> AttachmentOut:
    attachment = service.upload_attachment(owner_id, todo_id, file.filename or "", file.size, file.file)
    return AttachmentOut.model_validate(attachment)


# PUBLIC_INTERFACE
@router.get(
    "/{todo_id}/attachments",
    response_model=List[AttachmentOut],
    summary="List Attachments",
)
def list_attachments(
    todo_id: UUID,
    owner_id: str = Depends(get_owner_id),
    service: TodoService = Depends(get_todo_service),
) -> List[AttachmentOut]:
    return [AttachmentOut.model_validate(a) for a in service.list_attachments(owner_id, todo_id)]


# PUBLIC_INTERFACE
@router.delete(
    "/{todo_id}/attachments/{attachment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Attachment",
    description="Delete the attachment record; the stored object is removed in the background.",
)
def delete_attachment(
    todo_id: UUID,
    attachment_id: UUID,
    owner_id: str = Depends(get_owner_id),
    service: TodoService = Depends(get_todo_service),
) -> None:
    service.delete_attachment(owner_id, todo_id, attachment_id)
    return None


# PUBLIC_INTERFACE
@router.get(
    "/{todo_id}/attachments/{attachment_id}/download",
    response_model=DownloadURLOut,
    summary="Attachment Download URL",
    description="Mint a presigned download URL valid for 15 minutes.",
)
def get_attachment_download_url(
    todo_id: UUID,
    attachment_id: UUID,
    owner_id: str = Depends(get_owner_id),
    service: TodoService = Depends(get_todo_service),
) -> DownloadURLOut:
    return DownloadURLOut(url=service.get_attachment_download_url(owner_id, todo_id, attachment_id))
