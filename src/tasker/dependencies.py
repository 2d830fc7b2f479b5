"""
Service wiring for the HTTP layer.

Backends are chosen from settings once per process; tests replace
``get_services`` through ``app.dependency_overrides``.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends

from .categories import CategoryDirectory, CategoryService
from .comments import CommentService
from .repositories import Repository, get_repository
from .service import TodoService
from .settings import Settings, get_settings
from .storage import ObjectStore, get_object_store
from .tasks import BackgroundDispatcher, get_dispatcher


@dataclass(frozen=True)
class Services:
    todos: TodoService
    categories: CategoryService
    comments: CommentService
    dispatcher: BackgroundDispatcher


# PUBLIC_INTERFACE
def build_services(
    settings: Optional[Settings] = None,
    repo: Optional[Repository] = None,
    store: Optional[ObjectStore] = None,
    dispatcher: Optional[BackgroundDispatcher] = None,
) -> Services:
    """Assemble the services; any backend not passed in comes from settings."""
    settings = settings or get_settings()
    repo = repo or get_repository(settings)
    store = store or get_object_store(settings)
    dispatcher = dispatcher or get_dispatcher(settings)
    return Services(
        todos=TodoService(repo, CategoryDirectory(repo), store, dispatcher, settings.s3_bucket),
        categories=CategoryService(repo),
        comments=CommentService(repo, repo),
        dispatcher=dispatcher,
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services()


def get_todo_service(services: Services = Depends(get_services)) -> TodoService:
    return services.todos


def get_category_service(services: Services = Depends(get_services)) -> CategoryService:
    return services.categories


def get_comment_service(services: Services = Depends(get_services)) -> CommentService:
    return services.comments
