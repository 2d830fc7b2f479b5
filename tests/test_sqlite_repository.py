from datetime import datetime, timedelta

import pytest

from conftest import OTHER_OWNER, OWNER
from tasker.db import SQLiteRepository
from tasker.errors import NotFoundError
from tasker.repositories import InMemoryRepository
from tasker.schemas import CategoryCreate, CategoryQuery, CategoryUpdate, TodoCreate, TodoQuery, TodoUpdate


@pytest.fixture
def sqlite_repo(tmp_path):
    return SQLiteRepository(str(tmp_path / "data" / "tasker.db"))


def add(repo, owner=OWNER, **fields):
    fields.setdefault("title", "Sqlite todo")
    return repo.create_todo(owner, TodoCreate(**fields))


class TestTodos:
    def test_create_and_get_round_trips_fields(self, sqlite_repo):
        due = datetime(2031, 5, 17, 9, 30)
        todo = add(sqlite_repo, description="desc", priority="high", due_date=due, metadata={"source": "import"})
        fetched = sqlite_repo.get_todo(OWNER, todo["id"])
        assert fetched == todo
        assert fetched["due_date"] == due
        assert fetched["metadata"] == {"source": "import"}

    def test_get_is_scoped_to_owner(self, sqlite_repo):
        todo = add(sqlite_repo)
        assert sqlite_repo.get_todo(OTHER_OWNER, todo["id"]) is None
        assert sqlite_repo.update_todo(OTHER_OWNER, todo["id"], TodoUpdate(title="Hijack")) is None
        assert sqlite_repo.delete_todo(OTHER_OWNER, todo["id"]) is False
        assert sqlite_repo.get_todo(OWNER, todo["id"]) is not None

    def test_partial_update(self, sqlite_repo):
        todo = add(sqlite_repo, description="stays")
        updated = sqlite_repo.update_todo(OWNER, todo["id"], TodoUpdate(status="completed"))
        assert updated["status"] == "completed"
        assert updated["description"] == "stays"
        assert updated["completed_at"] is not None

    def test_delete_cascades_to_subtasks_comments_and_attachments(self, sqlite_repo):
        parent = add(sqlite_repo, title="Parent")
        child = add(sqlite_repo, title="Child", parent_todo_id=parent["id"])
        sqlite_repo.create_comment(OWNER, parent["id"], "first")
        sqlite_repo.create_attachment(OWNER, child["id"], "c.txt", 1, "text/plain", "todos/attachments/c.txt")

        assert sqlite_repo.collect_attachment_keys(OWNER, parent["id"]) == ["todos/attachments/c.txt"]
        assert sqlite_repo.delete_todo(OWNER, parent["id"]) is True
        assert sqlite_repo.get_todo(OWNER, child["id"]) is None
        assert sqlite_repo.list_attachments(OWNER, child["id"]) == []
        assert sqlite_repo.list_comments(OWNER, parent["id"]) == []

    def test_has_subtasks_and_populated_children(self, sqlite_repo):
        parent = add(sqlite_repo, title="Parent")
        assert sqlite_repo.has_subtasks(OWNER, parent["id"]) is False
        second = add(sqlite_repo, title="Second", parent_todo_id=parent["id"], sort_order=2)
        first = add(sqlite_repo, title="First", parent_todo_id=parent["id"], sort_order=1)
        assert sqlite_repo.has_subtasks(OWNER, parent["id"]) is True

        populated = sqlite_repo.get_populated_todo(OWNER, parent["id"])
        assert [c["id"] for c in populated["children"]] == [first["id"], second["id"]]


class TestListing:
    def seed(self, repo):
        base = datetime(2030, 1, 1)
        add(repo, title="Alpha report", priority="low", due_date=base + timedelta(days=2))
        add(repo, title="Beta plan", priority="high", status="completed", due_date=base)
        add(repo, title="Gamma notes", priority="medium", description="report draft")
        add(repo, owner=OTHER_OWNER, title="Other report")

    def test_total_and_pagination(self, sqlite_repo):
        for i in range(15):
            add(sqlite_repo, title=f"Todo {i:02d}")
        items, total = sqlite_repo.list_todos(OWNER, TodoQuery(page=2, limit=10))
        assert total == 15
        assert len(items) == 5

    def test_search_title_and_description(self, sqlite_repo):
        self.seed(sqlite_repo)
        items, total = sqlite_repo.list_todos(OWNER, TodoQuery(search="report", sort="title", order="asc"))
        assert total == 2
        assert [t["title"] for t in items] == ["Alpha report", "Gamma notes"]

    def test_filters(self, sqlite_repo):
        self.seed(sqlite_repo)
        assert sqlite_repo.list_todos(OWNER, TodoQuery(completed=True))[1] == 1
        assert sqlite_repo.list_todos(OWNER, TodoQuery(completed=False))[1] == 2
        assert sqlite_repo.list_todos(OWNER, TodoQuery(priority="high"))[1] == 1
        assert sqlite_repo.list_todos(OWNER, TodoQuery(due_from="2030-01-02"))[1] == 1
        assert sqlite_repo.list_todos(OWNER, TodoQuery(due_to="2030-01-01"))[1] == 1

    def test_sort_by_priority_uses_rank(self, sqlite_repo):
        self.seed(sqlite_repo)
        items, _ = sqlite_repo.list_todos(OWNER, TodoQuery(sort="priority", order="desc"))
        assert [t["priority"] for t in items] == ["high", "medium", "low"]

    def test_sort_by_due_date_puts_undated_last(self, sqlite_repo):
        self.seed(sqlite_repo)
        for order, expected in (("asc", ["Beta plan", "Alpha report"]), ("desc", ["Alpha report", "Beta plan"])):
            items, _ = sqlite_repo.list_todos(OWNER, TodoQuery(sort="due_date", order=order))
            assert [t["title"] for t in items] == expected + ["Gamma notes"]

    def test_stats(self, sqlite_repo):
        self.seed(sqlite_repo)
        stats = sqlite_repo.get_todo_stats(OWNER, datetime(2030, 1, 10))
        assert stats["total"] == 3
        assert stats["draft"] == 2
        assert stats["completed"] == 1
        assert (stats["low"], stats["medium"], stats["high"]) == (1, 1, 1)
        # Beta plan is past due but completed
        assert stats["overdue"] == 1


class TestCategoriesAndComments:
    def test_category_crud_and_scoping(self, sqlite_repo):
        category = sqlite_repo.create_category(OWNER, CategoryCreate(name="Work", color="#abc"))
        assert sqlite_repo.get_category(OTHER_OWNER, category["id"]) is None

        updated = sqlite_repo.update_category(OWNER, category["id"], CategoryUpdate(description="Office"))
        assert updated["name"] == "Work"
        assert updated["description"] == "Office"

        items, total = sqlite_repo.list_categories(OWNER, CategoryQuery(search="wor"))
        assert total == 1
        assert items[0]["id"] == category["id"]

    def test_deleting_category_clears_reference(self, sqlite_repo):
        category = sqlite_repo.create_category(OWNER, CategoryCreate(name="Home"))
        todo = add(sqlite_repo, category_id=category["id"])
        assert sqlite_repo.get_populated_todo(OWNER, todo["id"])["category"]["name"] == "Home"

        assert sqlite_repo.delete_category(OWNER, category["id"]) is True
        assert sqlite_repo.get_todo(OWNER, todo["id"])["category_id"] is None

    def test_comments(self, sqlite_repo):
        todo = add(sqlite_repo)
        comment = sqlite_repo.create_comment(OWNER, todo["id"], "looks good")
        assert sqlite_repo.list_comments(OWNER, todo["id"]) == [comment]
        assert sqlite_repo.update_comment(OTHER_OWNER, comment["id"], "nope") is None
        assert sqlite_repo.update_comment(OWNER, comment["id"], "edited")["content"] == "edited"
        assert sqlite_repo.delete_comment(OWNER, comment["id"]) is True
        assert sqlite_repo.get_comment(OWNER, comment["id"]) is None

    def test_comment_on_foreign_todo_is_not_found(self, sqlite_repo):
        todo = add(sqlite_repo, owner=OTHER_OWNER)
        with pytest.raises(NotFoundError):
            sqlite_repo.create_comment(OWNER, todo["id"], "sneaky")


@pytest.fixture(params=["memory", "sqlite"])
def any_repo(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteRepository(str(tmp_path / "tasker.db"))
    return InMemoryRepository()


class TestBackendsAgree:
    def test_search_matches_wildcard_characters_literally(self, any_repo):
        add(any_repo, title="Raise to 100%")
        add(any_repo, title="Plain task", description="back\\slash")
        add(any_repo, title="snake_case rename")

        assert [t["title"] for t in any_repo.list_todos(OWNER, TodoQuery(search="_"))[0]] == ["snake_case rename"]
        assert [t["title"] for t in any_repo.list_todos(OWNER, TodoQuery(search="0%"))[0]] == ["Raise to 100%"]
        assert any_repo.list_todos(OWNER, TodoQuery(search="%"))[1] == 1
        assert any_repo.list_todos(OWNER, TodoQuery(search="e_c"))[1] == 1
        assert any_repo.list_todos(OWNER, TodoQuery(search="k\\s"))[1] == 1

    def test_category_search_matches_literally(self, any_repo):
        any_repo.create_category(OWNER, CategoryCreate(name="to_do"))
        any_repo.create_category(OWNER, CategoryCreate(name="Errands"))
        items, total = any_repo.list_categories(OWNER, CategoryQuery(search="_"))
        assert total == 1
        assert items[0]["name"] == "to_do"

    def test_paging_over_ties_is_stable(self, any_repo):
        ids = {add(any_repo, title=f"Same priority {i}")["id"] for i in range(7)}
        for order in ("asc", "desc"):
            seen = []
            for page in (1, 2, 3):
                items, total = any_repo.list_todos(
                    OWNER, TodoQuery(sort="priority", order=order, page=page, limit=3)
                )
                assert total == 7
                seen.extend(t["id"] for t in items)
            assert len(seen) == 7
            assert set(seen) == ids
