from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status

from ..auth import get_owner_id
from ..comments import CommentService
from ..dependencies import get_comment_service
from ..schemas import CommentCreate, CommentOut, CommentUpdate

router = APIRouter(
    prefix="/api/v1",
    tags=["comments"],
)


# PUBLIC_INTERFACE
@router.post(
    "/todos/{todo_id}/comments",
    response_model=CommentOut,
    status_code=status.HTTP_201_CREATED,
    summary="Add Comment",
    responses={404: {"description": "Todo not found"}},
)
def add_comment(
    todo_id: UUID,
    payload: CommentCreate,
    owner_id: str = Depends(get_owner_id),
    service: CommentService = Depends(get_comment_service),
) -> CommentOut:
    return CommentOut.model_validate(service.add_comment(owner_id, todo_id, payload.content))


# PUBLIC_INTERFACE
@router.get(
    "/todos/{todo_id}/comments",
    response_model=List[CommentOut],
    summary="List Comments",
    responses={404: {"description": "Todo not found"}},
)
def list_comments(
    todo_id: UUID,
    owner_id: str = Depends(get_owner_id),
    service: CommentService = Depends(get_comment_service),
) -> List[CommentOut]:
    return [CommentOut.model_validate(c) for c in service.list_comments(owner_id, todo_id)]


# PUBLIC_INTERFACE
@router.patch(
    "/comments/{comment_id}",
    response_model=CommentOut,
    summary="Update Comment",
    responses={404: {"description": "Comment not found"}},
)
def update_comment(
    comment_id: UUID,
    payload: CommentUpdate,
    owner_id: str = Depends(get_owner_id),
    service: CommentService = Depends(get_comment_service),
) -> CommentOut:
    return CommentOut.model_validate(service.update_comment(owner_id, comment_id, payload.content))


# PUBLIC_INTERFACE
@router.delete(
    "/comments/{comment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Comment",
    responses={404: {"description": "Comment not found"}},
)
def delete_comment(
    comment_id: UUID,
    owner_id: str = Depends(get_owner_id),
    service: CommentService = Depends(get_comment_service),
) -> None:
    service.delete_comment(owner_id, comment_id)
    return None
