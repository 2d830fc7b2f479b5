"""
Domain errors raised by the tasker services.

Every error carries a human readable message. Validation-shaped errors
(hierarchy, reference, unreadable upload) are reported to the caller so the
request can be corrected; they are never retried.
"""
from __future__ import annotations

from typing import Any, Optional


class TaskerError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def __init__(self, message: str, detail: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class NotFoundError(TaskerError):
    """Entity is absent or not owned by the caller. Both cases look the same."""

    status_code = 404


class InvalidHierarchyError(TaskerError):
    """Self-parenting, multi-level nesting, or an unknown parent."""

    status_code = 400


class InvalidReferenceError(TaskerError):
    """A referenced category does not exist for the caller."""

    status_code = 400


class ReadFailureError(TaskerError):
    """The uploaded file stream could not be read."""

    status_code = 400


class StorageError(TaskerError):
    """An object store operation failed."""

    status_code = 502


class UploadFailureError(TaskerError):
    """Writing an attachment to the object store failed."""

    status_code = 502
