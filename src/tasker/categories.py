from __future__ import annotations

import logging
from typing import List, Tuple
from uuid import UUID

from .errors import InvalidReferenceError, NotFoundError
from .log import log_event
from .models import CategoryEntity
from .repositories import CategoryRepository
from .schemas import CategoryCreate, CategoryQuery, CategoryUpdate

logger = logging.getLogger(__name__)


class CategoryDirectory:
    """Existence/ownership checks on categories referenced by todos."""

    def __init__(self, repo: CategoryRepository) -> None:
        self._repo = repo

    def require_owned(self, owner_id: str, category_id: UUID) -> CategoryEntity:
        """Return the owner's category or raise InvalidReferenceError."""
        category = self._repo.get_category(owner_id, category_id)
        if category is None:
            logger.warning("category validation failed", extra={"category_id": str(category_id)})
            raise InvalidReferenceError("Category not found", detail={"category_id": str(category_id)})
        return category


class CategoryService:
    def __init__(self, repo: CategoryRepository) -> None:
        self._repo = repo

    def create_category(self, owner_id: str, payload: CategoryCreate) -> CategoryEntity:
        category = self._repo.create_category(owner_id, payload)
        log_event(
            logger,
            "category_created",
            "Category created successfully",
            category_id=category["id"],
            category_name=category["name"],
        )
        return category

    def get_category(self, owner_id: str, category_id: UUID) -> CategoryEntity:
        category = self._repo.get_category(owner_id, category_id)
        if category is None:
            raise NotFoundError("Category not found")
        return category

    def list_categories(self, owner_id: str, query: CategoryQuery) -> Tuple[List[CategoryEntity], int]:
        return self._repo.list_categories(owner_id, query)

    def update_category(self, owner_id: str, category_id: UUID, payload: CategoryUpdate) -> CategoryEntity:
        category = self._repo.update_category(owner_id, category_id, payload)
        if category is None:
            raise NotFoundError("Category not found")
        log_event(logger, "category_updated", "Category updated successfully", category_id=category_id)
        return category

    def delete_category(self, owner_id: str, category_id: UUID) -> None:
        if not self._repo.delete_category(owner_id, category_id):
            raise NotFoundError("Category not found")
        log_event(logger, "category_deleted", "Category deleted successfully", category_id=category_id)
