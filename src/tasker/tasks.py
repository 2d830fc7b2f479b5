"""
Background dispatch for fire-and-forget work.

Work submitted here never shares the caller's result or error path: failures
are logged and dropped. There is no durable queue; a crash loses pending work.

Backends (TASK_BACKEND):
    thread  - bounded ThreadPoolExecutor (default)
    inline  - run immediately in the calling thread (development, tests)
"""
from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from .settings import Settings, get_settings

logger = logging.getLogger(__name__)


class BackgroundDispatcher(ABC):
    """
    Abstract interface for fire-and-forget task execution.

    Implementations:
    - ThreadPoolDispatcher: bounded worker pool
    - InlineDispatcher: synchronous execution
    """

    @abstractmethod
    def submit(self, task_name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> str:
        """
        Schedule fn(*args, **kwargs) without awaiting it.

        Returns:
            Task ID for log correlation
        """

    def shutdown(self, wait: bool = True) -> None:
        """Release worker resources. No-op by default."""


def _log_failure(task_name: str, task_id: str, exc: BaseException) -> None:
    logger.error(
        "background task %s failed: %s",
        task_name,
        exc,
        extra={"task_name": task_name, "task_id": task_id},
        exc_info=exc,
    )


class InlineDispatcher(BackgroundDispatcher):
    """
    Execute tasks synchronously in the calling thread.

    Failures are still isolated: they are logged and never raised.
    """

    def submit(self, task_name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> str:
        task_id = str(uuid.uuid4())
        logger.debug("[INLINE] Executing task %s (id=%s)", task_name, task_id)
        try:
            fn(*args, **kwargs)
        except Exception as e:
            _log_failure(task_name, task_id, e)
        return task_id


class ThreadPoolDispatcher(BackgroundDispatcher):
    """Run tasks on a bounded thread pool; outcomes are only logged."""

    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="tasker-bg")

    def submit(self, task_name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> str:
        task_id = str(uuid.uuid4())

        def _done(future: Future) -> None:
            exc = future.exception()
            if exc is not None:
                _log_failure(task_name, task_id, exc)
            else:
                logger.debug("background task %s completed (id=%s)", task_name, task_id)

        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except RuntimeError as e:
            # Raised once the pool is shut down; the caller must not see it
            _log_failure(task_name, task_id, e)
            return task_id
        future.add_done_callback(_done)
        return task_id

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


# PUBLIC_INTERFACE
def get_dispatcher(settings: Optional[Settings] = None) -> BackgroundDispatcher:
    """Return the configured background dispatcher."""
    settings = settings or get_settings()
    if settings.task_backend == "inline":
        return InlineDispatcher()
    return ThreadPoolDispatcher(max_workers=settings.task_max_workers)
