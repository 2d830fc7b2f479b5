import io
import logging
from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from conftest import BUCKET, OTHER_OWNER, OWNER
from tasker.errors import (
    InvalidHierarchyError,
    InvalidReferenceError,
    NotFoundError,
    ReadFailureError,
    StorageError,
    UploadFailureError,
)
from tasker.models import utcnow
from tasker.schemas import CategoryCreate, TodoCreate, TodoQuery, TodoUpdate
from tasker.service import PRESIGNED_URL_TTL, attachment_key


def make_todo(service, owner=OWNER, **fields):
    fields.setdefault("title", "Write report")
    return service.create_todo(owner, TodoCreate(**fields))


class UnreadableStream(io.RawIOBase):
    """Client stream that breaks on the first read."""

    def readable(self):
        return True

    def seekable(self):
        return False

    def read(self, size=-1):
        raise OSError("connection reset by peer")


class FailingStore:
    """Object store whose writes always fail."""

    def upload(self, bucket, key, stream, content_type=None):
        raise StorageError("bucket unavailable")

    def delete(self, bucket, key):
        raise StorageError("bucket unavailable")

    def presigned_download_url(self, bucket, key, ttl):
        raise StorageError("bucket unavailable")


class TestCreateAndHierarchy:
    def test_create_defaults(self, service):
        todo = make_todo(service, title="  Plan sprint  ")
        assert todo["title"] == "Plan sprint"
        assert todo["status"] == "draft"
        assert todo["priority"] == "medium"
        assert todo["user_id"] == OWNER
        assert todo["completed_at"] is None
        assert todo["created_at"] == todo["updated_at"]

    def test_create_completed_stamps_completed_at(self, service):
        todo = make_todo(service, status="completed")
        assert todo["completed_at"] is not None

    def test_subtask_of_subtask_is_rejected(self, service, repo):
        a = make_todo(service, title="Top level")
        b = make_todo(service, title="Subtask", parent_todo_id=a["id"])
        with pytest.raises(InvalidHierarchyError):
            make_todo(service, title="Too deep", parent_todo_id=b["id"])
        assert repo.list_todos(OWNER, TodoQuery(limit=100))[1] == 2

    def test_update_into_subtask_of_subtask_is_rejected(self, service):
        a = make_todo(service, title="Top level")
        b = make_todo(service, title="Subtask", parent_todo_id=a["id"])
        c = make_todo(service, title="Loose")
        with pytest.raises(InvalidHierarchyError):
            service.update_todo(OWNER, c["id"], TodoUpdate(parent_todo_id=b["id"]))
        assert service.get_todo(OWNER, c["id"])["parent_todo_id"] is None

    def test_todo_with_subtasks_cannot_become_subtask(self, service):
        a = make_todo(service, title="Parent A")
        make_todo(service, title="Child of A", parent_todo_id=a["id"])
        b = make_todo(service, title="Parent B")
        with pytest.raises(InvalidHierarchyError):
            service.update_todo(OWNER, a["id"], TodoUpdate(parent_todo_id=b["id"]))

    def test_self_parent_is_rejected(self, service):
        todo = make_todo(service)
        with pytest.raises(InvalidHierarchyError) as excinfo:
            service.update_todo(OWNER, todo["id"], TodoUpdate(parent_todo_id=todo["id"]))
        assert excinfo.value.message == "Todo cannot be its own parent"

    def test_missing_parent_is_invalid_hierarchy(self, service):
        with pytest.raises(InvalidHierarchyError):
            make_todo(service, parent_todo_id=uuid4())

    def test_foreign_parent_is_invalid_hierarchy(self, service):
        theirs = make_todo(service, owner=OTHER_OWNER, title="Their task")
        with pytest.raises(InvalidHierarchyError):
            make_todo(service, parent_todo_id=theirs["id"])

    def test_foreign_category_is_invalid_reference(self, service, repo):
        category = repo.create_category(OTHER_OWNER, CategoryCreate(name="Errands"))
        with pytest.raises(InvalidReferenceError):
            make_todo(service, category_id=category["id"])
        assert repo.list_todos(OWNER, TodoQuery())[1] == 0

    def test_update_to_foreign_category_is_invalid_reference(self, service, repo):
        mine = repo.create_category(OWNER, CategoryCreate(name="Errands"))
        theirs = repo.create_category(OTHER_OWNER, CategoryCreate(name="Groceries"))
        todo = make_todo(service, category_id=mine["id"])
        with pytest.raises(InvalidReferenceError) as excinfo:
            service.update_todo(OWNER, todo["id"], TodoUpdate(category_id=theirs["id"]))
        assert excinfo.value.detail == {"category_id": str(theirs["id"])}
        assert service.get_todo(OWNER, todo["id"])["category_id"] == mine["id"]

    def test_own_category_is_accepted(self, service, repo):
        category = repo.create_category(OWNER, CategoryCreate(name="Errands"))
        todo = make_todo(service, category_id=category["id"])
        assert service.get_todo(OWNER, todo["id"])["category"]["name"] == "Errands"


class TestOwnership:
    def test_foreign_and_absent_todos_look_the_same(self, service):
        theirs = make_todo(service, owner=OTHER_OWNER)
        for todo_id in (theirs["id"], uuid4()):
            with pytest.raises(NotFoundError) as excinfo:
                service.get_todo(OWNER, todo_id)
            assert excinfo.value.message == "Todo not found"
            with pytest.raises(NotFoundError):
                service.update_todo(OWNER, todo_id, TodoUpdate(title="Hijacked"))
            with pytest.raises(NotFoundError):
                service.delete_todo(OWNER, todo_id)
        assert service.get_todo(OTHER_OWNER, theirs["id"])["title"] == "Write report"

    def test_list_and_stats_only_see_own_todos(self, service):
        make_todo(service, title="Mine")
        make_todo(service, owner=OTHER_OWNER, title="Theirs")
        items, total = service.list_todos(OWNER, TodoQuery())
        assert total == 1
        assert [t["title"] for t in items] == ["Mine"]
        assert service.get_todo_stats(OWNER)["total"] == 1


class TestListAndUpdate:
    def test_second_page(self, service):
        for i in range(15):
            make_todo(service, title=f"Todo {i:02d}")
        items, total = service.list_todos(OWNER, TodoQuery(page=2, limit=10))
        assert len(items) == 5
        assert total == 15

    def test_partial_update_keeps_other_fields(self, service):
        todo = make_todo(service, title="Original", description="Keep me")
        updated = service.update_todo(OWNER, todo["id"], TodoUpdate(title="Renamed"))
        assert updated["title"] == "Renamed"
        assert updated["description"] == "Keep me"
        assert updated["updated_at"] >= todo["updated_at"]

    def test_completed_at_follows_status(self, service):
        todo = make_todo(service, status="active")
        done = service.update_todo(OWNER, todo["id"], TodoUpdate(status="completed"))
        assert done["completed_at"] is not None
        reopened = service.update_todo(OWNER, todo["id"], TodoUpdate(status="active"))
        assert reopened["completed_at"] is None

    def test_overdue_filter_and_stats(self, service):
        past = utcnow() - timedelta(days=2)
        make_todo(service, title="Late", status="active", due_date=past)
        make_todo(service, title="Late but done", status="completed", due_date=past)
        make_todo(service, title="Future", due_date=utcnow() + timedelta(days=2))
        make_todo(service, title="No due date")

        items, total = service.list_todos(OWNER, TodoQuery(overdue=True))
        assert total == 1
        assert items[0]["title"] == "Late"

        stats = service.get_todo_stats(OWNER)
        assert stats["total"] == 4
        assert stats["overdue"] == 1
        assert stats["completed"] == 1
        assert stats["medium"] == 4

    def test_due_date_sort_puts_undated_last(self, service):
        base = datetime(2030, 1, 1)
        make_todo(service, title="Undated")
        make_todo(service, title="Later", due_date=base + timedelta(days=3))
        make_todo(service, title="Sooner", due_date=base)
        for order in ("asc", "desc"):
            items, _ = service.list_todos(OWNER, TodoQuery(sort="due_date", order=order))
            assert items[-1]["title"] == "Undated"

    def test_list_populates_children(self, service):
        parent = make_todo(service, title="Parent")
        child = make_todo(service, title="Child", parent_todo_id=parent["id"])
        items, _ = service.list_todos(OWNER, TodoQuery(search="Parent"))
        assert [c["id"] for c in items[0]["children"]] == [child["id"]]


class TestAttachments:
    def test_upload_then_list(self, service, store):
        todo = make_todo(service)
        attachment = service.upload_attachment(OWNER, todo["id"], "report.pdf", 12, io.BytesIO(b"%PDF-1.7\nbody"))

        assert attachment["download_key"] == f"todos/attachments/{todo['id']}/report.pdf"
        assert attachment["uploaded_by"] == OWNER
        assert attachment["mime_type"] == "application/pdf"
        assert service.list_attachments(OWNER, todo["id"]) == [attachment]

        data, content_type = store.get(BUCKET, attachment["download_key"])
        assert data == b"%PDF-1.7\nbody"
        assert content_type == "application/pdf"

    def test_upload_sniffs_plain_text(self, service, store):
        todo = make_todo(service)
        attachment = service.upload_attachment(OWNER, todo["id"], "notes.pdf", None, io.BytesIO(b"just some notes"))
        assert attachment["mime_type"].startswith("text/plain")
        assert store.get(BUCKET, attachment_key(todo["id"], "notes.pdf"))[0] == b"just some notes"

    def test_upload_without_name_is_read_failure(self, service):
        todo = make_todo(service)
        with pytest.raises(ReadFailureError):
            service.upload_attachment(OWNER, todo["id"], "", 0, io.BytesIO(b"x"))

    def test_unreadable_stream_is_read_failure(self, service, store):
        todo = make_todo(service)
        with pytest.raises(ReadFailureError) as excinfo:
            service.upload_attachment(OWNER, todo["id"], "broken.bin", 10, UnreadableStream())
        assert isinstance(excinfo.value.__cause__, OSError)
        assert store.get(BUCKET, attachment_key(todo["id"], "broken.bin")) is None
        assert service.list_attachments(OWNER, todo["id"]) == []

    def test_upload_to_foreign_todo_is_not_found(self, service, store):
        theirs = make_todo(service, owner=OTHER_OWNER)
        with pytest.raises(NotFoundError):
            service.upload_attachment(OWNER, theirs["id"], "a.txt", 1, io.BytesIO(b"a"))
        assert store.get(BUCKET, attachment_key(theirs["id"], "a.txt")) is None

    def test_upload_failure_leaves_no_record(self, repo, dispatcher):
        from tasker.categories import CategoryDirectory
        from tasker.service import TodoService

        service = TodoService(repo, CategoryDirectory(repo), FailingStore(), dispatcher, BUCKET)
        todo = make_todo(service)
        with pytest.raises(UploadFailureError) as excinfo:
            service.upload_attachment(OWNER, todo["id"], "report.pdf", 4, io.BytesIO(b"data"))
        assert "bucket unavailable" in excinfo.value.detail["cause"]
        assert service.list_attachments(OWNER, todo["id"]) == []

    def test_delete_attachment_is_immediate_and_object_removed_in_background(self, service, store, dispatcher):
        todo = make_todo(service)
        attachment = service.upload_attachment(OWNER, todo["id"], "a.txt", 5, io.BytesIO(b"hello"))

        service.delete_attachment(OWNER, todo["id"], attachment["id"])
        # The record is gone before background work runs
        assert service.list_attachments(OWNER, todo["id"]) == []
        assert store.get(BUCKET, attachment["download_key"]) is not None
        assert [p[0] for p in dispatcher.pending] == ["delete_attachment_object"]

        dispatcher.run_all()
        assert store.get(BUCKET, attachment["download_key"]) is None

    def test_background_delete_failure_is_logged_not_raised(self, repo, caplog):
        from tasker.categories import CategoryDirectory
        from tasker.service import TodoService
        from tasker.storage import InMemoryObjectStore
        from tasker.tasks import InlineDispatcher

        store = InMemoryObjectStore()
        service = TodoService(repo, CategoryDirectory(repo), store, InlineDispatcher(), BUCKET)
        todo = make_todo(service)
        attachment = service.upload_attachment(OWNER, todo["id"], "a.txt", 5, io.BytesIO(b"hello"))

        def broken_delete(bucket, key):
            raise StorageError("permission denied")

        store.delete = broken_delete
        with caplog.at_level(logging.ERROR, logger="tasker.tasks"):
            service.delete_attachment(OWNER, todo["id"], attachment["id"])

        assert service.list_attachments(OWNER, todo["id"]) == []
        assert any(getattr(r, "task_name", None) == "delete_attachment_object" for r in caplog.records)

    def test_delete_todo_removes_objects_of_todo_and_subtasks(self, service, store, dispatcher):
        parent = make_todo(service, title="Parent")
        child = make_todo(service, title="Child", parent_todo_id=parent["id"])
        a1 = service.upload_attachment(OWNER, parent["id"], "p.txt", 1, io.BytesIO(b"p"))
        a2 = service.upload_attachment(OWNER, child["id"], "c.txt", 1, io.BytesIO(b"c"))

        service.delete_todo(OWNER, parent["id"])
        with pytest.raises(NotFoundError):
            service.get_todo(OWNER, child["id"])
        assert len(dispatcher.pending) == 2

        dispatcher.run_all()
        assert store.get(BUCKET, a1["download_key"]) is None
        assert store.get(BUCKET, a2["download_key"]) is None

    def test_download_url(self, service):
        todo = make_todo(service)
        attachment = service.upload_attachment(OWNER, todo["id"], "a.txt", 5, io.BytesIO(b"hello"))
        url = service.get_attachment_download_url(OWNER, todo["id"], attachment["id"])
        assert attachment["download_key"] in url
        assert f"expires_in={int(PRESIGNED_URL_TTL.total_seconds())}" in url

    def test_attachment_of_other_todo_is_not_found(self, service):
        first = make_todo(service, title="First")
        second = make_todo(service, title="Second")
        attachment = service.upload_attachment(OWNER, first["id"], "a.txt", 5, io.BytesIO(b"hello"))
        with pytest.raises(NotFoundError) as excinfo:
            service.get_attachment_download_url(OWNER, second["id"], attachment["id"])
        assert excinfo.value.message == "Attachment not found"
