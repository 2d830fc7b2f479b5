from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from ..auth import get_owner_id
from ..categories import CategoryService
from ..dependencies import get_category_service
from ..schemas import CategoryCreate, CategoryOut, CategoryQuery, CategorySortField, CategoryUpdate, SortOrder
from ..utils import pagination_envelope

router = APIRouter(
    prefix="/api/v1/categories",
    tags=["categories"],
)


class CategoryPage(BaseModel):
    data: List[CategoryOut] = Field(..., description="Categories on this page")
    page: int
    limit: int
    total: int
    total_pages: int


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=CategoryOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Category",
)
def create_category(
    payload: CategoryCreate,
    owner_id: str = Depends(get_owner_id),
    service: CategoryService = Depends(get_category_service),
) -> CategoryOut:
    return CategoryOut.model_validate(service.create_category(owner_id, payload))


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=CategoryPage,
    summary="List Categories",
)
def list_categories(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort: CategorySortField = Query("created_at"),
    order: SortOrder = Query("desc"),
    search: Optional[str] = Query(None, description="Search text for name"),
    owner_id: str = Depends(get_owner_id),
    service: CategoryService = Depends(get_category_service),
) -> CategoryPage:
    query = CategoryQuery(
        page=page,
        limit=limit,
        sort=sort,
        order=order,
        search=search.strip() if search and search.strip() else None,
    )
    items, total = service.list_categories(owner_id, query)
    envelope = pagination_envelope(
        items=[CategoryOut.model_validate(c) for c in items],
        total=total,
        page=query.page,
        limit=query.limit,
    )
    return CategoryPage(**envelope)


# PUBLIC_INTERFACE
@router.get(
    "/{category_id}",
    response_model=CategoryOut,
    summary="Get Category",
    responses={404: {"description": "Category not found"}},
)
def get_category(
    category_id: UUID,
    owner_id: str = Depends(get_owner_id),
    service: CategoryService = Depends(get_category_service),
) -> CategoryOut:
    return CategoryOut.model_validate(service.get_category(owner_id, category_id))


# PUBLIC_INTERFACE
@router.patch(
    "/{category_id}",
    response_model=CategoryOut,
    summary="Update Category",
    responses={404: {"description": "Category not found"}},
)
def patch_category(
    category_id: UUID,
    payload: CategoryUpdate,
    owner_id: str = Depends(get_owner_id),
    service: CategoryService = Depends(get_category_service),
) -> CategoryOut:
    return CategoryOut.model_validate(service.update_category(owner_id, category_id, payload))


# PUBLIC_INTERFACE
@router.delete(
    "/{category_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Category",
    description="Delete a category. Todos that referenced it keep existing without a category.",
    responses={404: {"description": "Category not found"}},
)
def delete_category(
    category_id: UUID,
    owner_id: str = Depends(get_owner_id),
    service: CategoryService = Depends(get_category_service),
) -> None:
    service.delete_category(owner_id, category_id)
    return None
