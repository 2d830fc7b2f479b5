import os
from typing import Any, Callable, List, Tuple

import pytest
from fastapi.testclient import TestClient

# Ensure we default to in-process backends for tests to avoid filesystem and network dependencies
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("TASK_BACKEND", "inline")

from tasker.categories import CategoryDirectory  # noqa: E402
from tasker.dependencies import build_services, get_services  # noqa: E402
from tasker.main import app  # noqa: E402
from tasker.repositories import InMemoryRepository  # noqa: E402
from tasker.service import TodoService  # noqa: E402
from tasker.settings import get_settings  # noqa: E402
from tasker.storage import InMemoryObjectStore  # noqa: E402
from tasker.tasks import BackgroundDispatcher, InlineDispatcher  # noqa: E402

BUCKET = "test-bucket"
OWNER = "user-1"
OTHER_OWNER = "user-2"


class RecordingDispatcher(BackgroundDispatcher):
    """Holds submitted work until run_all() is called."""

    def __init__(self) -> None:
        self.pending: List[Tuple[str, Callable[..., Any], tuple, dict]] = []

    def submit(self, task_name, fn, *args, **kwargs) -> str:
        self.pending.append((task_name, fn, args, kwargs))
        return str(len(self.pending))

    def run_all(self) -> None:
        while self.pending:
            _, fn, args, kwargs = self.pending.pop(0)
            fn(*args, **kwargs)


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def store():
    return InMemoryObjectStore()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def service(repo, store, dispatcher):
    return TodoService(repo, CategoryDirectory(repo), store, dispatcher, BUCKET)


@pytest.fixture
def client():
    services = build_services(
        settings=get_settings(),
        repo=InMemoryRepository(),
        store=InMemoryObjectStore(),
        dispatcher=InlineDispatcher(),
    )
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app, headers={"X-User-ID": OWNER}) as c:
        yield c
    app.dependency_overrides.clear()
