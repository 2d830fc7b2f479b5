from __future__ import annotations

import json
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generator, List, Optional, Sequence, Tuple
from uuid import UUID, uuid4

from .errors import NotFoundError
from .models import (
    AttachmentEntity,
    CategoryEntity,
    CommentEntity,
    PopulatedTodo,
    TodoEntity,
    TodoStats,
    utcnow,
)
from .repositories import Repository, apply_todo_update, empty_stats, new_todo_entity
from .schemas import CategoryCreate, CategoryQuery, CategoryUpdate, TodoCreate, TodoQuery, TodoUpdate

_SCHEMA = """
CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT NULL,
    color TEXT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS todos (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NULL,
    status TEXT NOT NULL DEFAULT 'draft',
    priority TEXT NOT NULL DEFAULT 'medium',
    due_date TEXT NULL,
    completed_at TEXT NULL,
    parent_todo_id TEXT NULL REFERENCES todos(id) ON DELETE CASCADE,
    category_id TEXT NULL REFERENCES categories(id) ON DELETE SET NULL,
    metadata TEXT NULL,
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS todo_attachments (
    id TEXT PRIMARY KEY,
    todo_id TEXT NOT NULL REFERENCES todos(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    uploaded_by TEXT NOT NULL,
    download_key TEXT NOT NULL,
    file_size INTEGER NULL,
    mime_type TEXT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS todo_comments (
    id TEXT PRIMARY KEY,
    todo_id TEXT NOT NULL REFERENCES todos(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_todos_user_id ON todos(user_id);
CREATE INDEX IF NOT EXISTS idx_todos_parent_todo_id ON todos(parent_todo_id);
CREATE INDEX IF NOT EXISTS idx_todos_created_at ON todos(created_at);
CREATE INDEX IF NOT EXISTS idx_categories_user_id ON categories(user_id);
CREATE INDEX IF NOT EXISTS idx_todo_attachments_todo_id ON todo_attachments(todo_id);
CREATE INDEX IF NOT EXISTS idx_todo_comments_todo_id ON todo_comments(todo_id);
"""

_TODO_SORT_SQL = {
    "created_at": "created_at",
    "updated_at": "updated_at",
    "title": "title",
    "priority": "CASE priority WHEN 'low' THEN 0 WHEN 'medium' THEN 1 ELSE 2 END",
    "due_date": "due_date",
}


def _dt(value: Optional[datetime]) -> Optional[str]:
    # Fixed-width text keeps lexical order equal to chronological order
    return value.isoformat(timespec="microseconds") if value is not None else None


def _parse_dt(s: Optional[str]) -> Optional[datetime]:
    if s is None:
        return None
    return datetime.fromisoformat(s)


def _like_pattern(text: str) -> str:
    # Search text is matched literally, so LIKE wildcards in it are escaped
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _uuid(s: Optional[str]) -> Optional[UUID]:
    return UUID(s) if s is not None else None


def _str(u: Optional[UUID]) -> Optional[str]:
    return str(u) if u is not None else None


class SQLiteRepository(Repository):
    """
    Lightweight SQLite repository implementing the Repository interface.

    Every todo query is built by _scoped_todos, which always filters on user_id.
    Attachments and comments are reached through a join on their owning todo.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._init_db()

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.executescript(_SCHEMA)

    # --- Row mapping ---

    def _row_to_todo(self, row: sqlite3.Row) -> TodoEntity:
        return {
            "id": UUID(row["id"]),
            "user_id": row["user_id"],
            "title": row["title"],
            "description": row["description"],
            "status": row["status"],
            "priority": row["priority"],
            "due_date": _parse_dt(row["due_date"]),
            "completed_at": _parse_dt(row["completed_at"]),
            "parent_todo_id": _uuid(row["parent_todo_id"]),
            "category_id": _uuid(row["category_id"]),
            "metadata": json.loads(row["metadata"]) if row["metadata"] is not None else None,
            "sort_order": int(row["sort_order"]),
            "created_at": _parse_dt(row["created_at"]),  # type: ignore
            "updated_at": _parse_dt(row["updated_at"]),  # type: ignore
        }

    def _row_to_attachment(self, row: sqlite3.Row) -> AttachmentEntity:
        return {
            "id": UUID(row["id"]),
            "todo_id": UUID(row["todo_id"]),
            "name": row["name"],
            "uploaded_by": row["uploaded_by"],
            "download_key": row["download_key"],
            "file_size": row["file_size"],
            "mime_type": row["mime_type"],
            "created_at": _parse_dt(row["created_at"]),  # type: ignore
            "updated_at": _parse_dt(row["updated_at"]),  # type: ignore
        }

    def _row_to_category(self, row: sqlite3.Row) -> CategoryEntity:
        return {
            "id": UUID(row["id"]),
            "user_id": row["user_id"],
            "name": row["name"],
            "description": row["description"],
            "color": row["color"],
            "created_at": _parse_dt(row["created_at"]),  # type: ignore
            "updated_at": _parse_dt(row["updated_at"]),  # type: ignore
        }

    def _row_to_comment(self, row: sqlite3.Row) -> CommentEntity:
        return {
            "id": UUID(row["id"]),
            "todo_id": UUID(row["todo_id"]),
            "user_id": row["user_id"],
            "content": row["content"],
            "created_at": _parse_dt(row["created_at"]),  # type: ignore
            "updated_at": _parse_dt(row["updated_at"]),  # type: ignore
        }

    # --- Scoped query building ---

    @staticmethod
    def _scoped_todos(owner_id: str, clauses: Sequence[str] = (), params: Sequence[Any] = ()) -> Tuple[str, List[Any]]:
        where = " AND ".join(["user_id = ?", *clauses])
        return f"FROM todos WHERE {where}", [owner_id, *params]

    def _fetch_todo(self, conn: sqlite3.Connection, owner_id: str, todo_id: UUID) -> Optional[TodoEntity]:
        from_sql, params = self._scoped_todos(owner_id, ["id = ?"], [str(todo_id)])
        row = conn.execute(f"SELECT * {from_sql}", params).fetchone()
        return self._row_to_todo(row) if row else None

    def _write_todo(self, conn: sqlite3.Connection, todo: TodoEntity, insert: bool) -> None:
        values = (
            todo["title"],
            todo["description"],
            todo["status"],
            todo["priority"],
            _dt(todo["due_date"]),
            _dt(todo["completed_at"]),
            _str(todo["parent_todo_id"]),
            _str(todo["category_id"]),
            json.dumps(todo["metadata"]) if todo["metadata"] is not None else None,
            todo["sort_order"],
            _dt(todo["updated_at"]),
        )
        if insert:
            conn.execute(
                """
                INSERT INTO todos (title, description, status, priority, due_date, completed_at,
                    parent_todo_id, category_id, metadata, sort_order, updated_at, created_at, user_id, id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (*values, _dt(todo["created_at"]), todo["user_id"], str(todo["id"])),
            )
        else:
            conn.execute(
                """
                UPDATE todos
                SET title = ?, description = ?, status = ?, priority = ?, due_date = ?, completed_at = ?,
                    parent_todo_id = ?, category_id = ?, metadata = ?, sort_order = ?, updated_at = ?
                WHERE user_id = ? AND id = ?
                """,
                (*values, todo["user_id"], str(todo["id"])),
            )

    def _populate(self, conn: sqlite3.Connection, owner_id: str, todo: TodoEntity) -> PopulatedTodo:
        category = None
        if todo["category_id"] is not None:
            row = conn.execute(
                "SELECT * FROM categories WHERE user_id = ? AND id = ?", (owner_id, str(todo["category_id"]))
            ).fetchone()
            category = self._row_to_category(row) if row else None
        from_sql, params = self._scoped_todos(owner_id, ["parent_todo_id = ?"], [str(todo["id"])])
        children = conn.execute(f"SELECT * {from_sql} ORDER BY sort_order ASC, created_at ASC", params).fetchall()
        comments = conn.execute(
            "SELECT * FROM todo_comments WHERE todo_id = ? ORDER BY created_at ASC", (str(todo["id"]),)
        ).fetchall()
        attachments = conn.execute(
            "SELECT * FROM todo_attachments WHERE todo_id = ? ORDER BY created_at ASC", (str(todo["id"]),)
        ).fetchall()
        populated: PopulatedTodo = {
            **todo,  # type: ignore[typeddict-item]
            "category": category,
            "children": [self._row_to_todo(r) for r in children],
            "comments": [self._row_to_comment(r) for r in comments],
            "attachments": [self._row_to_attachment(r) for r in attachments],
        }
        return populated

    # --- Todos ---

    def get_todo(self, owner_id: str, todo_id: UUID) -> Optional[TodoEntity]:
        with self._conn() as conn:
            return self._fetch_todo(conn, owner_id, todo_id)

    def create_todo(self, owner_id: str, data: TodoCreate) -> TodoEntity:
        entity = new_todo_entity(owner_id, data, utcnow())
        with self._conn() as conn:
            self._write_todo(conn, entity, insert=True)
            row = self._fetch_todo(conn, owner_id, entity["id"])
            assert row is not None
            return row

    def get_populated_todo(self, owner_id: str, todo_id: UUID) -> Optional[PopulatedTodo]:
        with self._conn() as conn:
            todo = self._fetch_todo(conn, owner_id, todo_id)
            return self._populate(conn, owner_id, todo) if todo else None

    def update_todo(self, owner_id: str, todo_id: UUID, data: TodoUpdate) -> Optional[TodoEntity]:
        with self._conn() as conn:
            current = self._fetch_todo(conn, owner_id, todo_id)
            if current is None:
                return None
            self._write_todo(conn, apply_todo_update(current, data, utcnow()), insert=False)
            return self._fetch_todo(conn, owner_id, todo_id)

    def delete_todo(self, owner_id: str, todo_id: UUID) -> bool:
        # Subtasks, comments and attachment rows go with it via ON DELETE CASCADE
        with self._conn() as conn:
            cur = conn.execute("DELETE FROM todos WHERE user_id = ? AND id = ?", (owner_id, str(todo_id)))
            return cur.rowcount > 0

    def has_subtasks(self, owner_id: str, todo_id: UUID) -> bool:
        from_sql, params = self._scoped_todos(owner_id, ["parent_todo_id = ?"], [str(todo_id)])
        with self._conn() as conn:
            return conn.execute(f"SELECT 1 {from_sql} LIMIT 1", params).fetchone() is not None

    def list_todos(self, owner_id: str, query: TodoQuery) -> Tuple[List[PopulatedTodo], int]:
        q = query
        clauses: List[str] = []
        params: List[Any] = []
        now = _dt(utcnow())

        if q.status is not None:
            clauses.append("status = ?")
            params.append(q.status.value)
        if q.priority is not None:
            clauses.append("priority = ?")
            params.append(q.priority.value)
        if q.category_id is not None:
            clauses.append("category_id = ?")
            params.append(str(q.category_id))
        if q.parent_todo_id is not None:
            clauses.append("parent_todo_id = ?")
            params.append(str(q.parent_todo_id))
        if q.due_from is not None:
            clauses.append("due_date >= ?")
            params.append(_dt(q.due_from))
        if q.due_to is not None:
            clauses.append("due_date <= ?")
            params.append(_dt(q.due_to))
        if q.overdue is not None:
            overdue_sql = "(due_date IS NOT NULL AND due_date < ? AND status NOT IN ('completed', 'archived'))"
            clauses.append(overdue_sql if q.overdue else f"NOT {overdue_sql}")
            params.append(now)
        if q.completed is not None:
            clauses.append("status = 'completed'" if q.completed else "status != 'completed'")
        if q.search:
            # Substring search on title and description
            clauses.append("(title LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\')")
            like = _like_pattern(q.search)
            params.extend([like, like])

        from_sql, scoped_params = self._scoped_todos(owner_id, clauses, params)
        direction = "DESC" if q.order == "desc" else "ASC"
        order_sql = f"ORDER BY {_TODO_SORT_SQL[q.sort]} {direction}, id {direction}"
        if q.sort == "due_date":
            order_sql = f"ORDER BY due_date IS NULL ASC, due_date {direction}, id {direction}"

        with self._conn() as conn:
            # total count
            count_row = conn.execute(f"SELECT COUNT(*) AS cnt {from_sql}", scoped_params).fetchone()
            total = int(count_row["cnt"]) if count_row else 0

            rows = conn.execute(
                f"SELECT * {from_sql} {order_sql} LIMIT ? OFFSET ?",
                [*scoped_params, q.limit, q.offset],
            ).fetchall()
            return [self._populate(conn, owner_id, self._row_to_todo(r)) for r in rows], total

    def get_todo_stats(self, owner_id: str, now: datetime) -> TodoStats:
        stats = empty_stats()
        from_sql, params = self._scoped_todos(owner_id)
        with self._conn() as conn:
            for row in conn.execute(f"SELECT status, COUNT(*) AS cnt {from_sql} GROUP BY status", params):
                stats[row["status"]] = int(row["cnt"])  # type: ignore[literal-required]
                stats["total"] += int(row["cnt"])
            for row in conn.execute(f"SELECT priority, COUNT(*) AS cnt {from_sql} GROUP BY priority", params):
                stats[row["priority"]] = int(row["cnt"])  # type: ignore[literal-required]
            overdue_from, overdue_params = self._scoped_todos(
                owner_id,
                ["due_date IS NOT NULL", "due_date < ?", "status NOT IN ('completed', 'archived')"],
                [_dt(now)],
            )
            row = conn.execute(f"SELECT COUNT(*) AS cnt {overdue_from}", overdue_params).fetchone()
            stats["overdue"] = int(row["cnt"])
        return stats

    # --- Attachments ---

    _ATTACHMENT_SCOPE = "FROM todo_attachments a JOIN todos t ON t.id = a.todo_id WHERE t.user_id = ? AND a.todo_id = ?"

    def create_attachment(
        self,
        owner_id: str,
        todo_id: UUID,
        name: str,
        file_size: Optional[int],
        mime_type: Optional[str],
        download_key: str,
    ) -> AttachmentEntity:
        now = _dt(utcnow())
        attachment_id = uuid4()
        with self._conn() as conn:
            if self._fetch_todo(conn, owner_id, todo_id) is None:
                raise NotFoundError("Todo not found")
            conn.execute(
                """
                INSERT INTO todo_attachments (id, todo_id, name, uploaded_by, download_key, file_size,
                    mime_type, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (str(attachment_id), str(todo_id), name, owner_id, download_key, file_size, mime_type, now, now),
            )
            row = conn.execute("SELECT * FROM todo_attachments WHERE id = ?", (str(attachment_id),)).fetchone()
            return self._row_to_attachment(row)

    def get_attachment(self, owner_id: str, todo_id: UUID, attachment_id: UUID) -> Optional[AttachmentEntity]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT a.* {self._ATTACHMENT_SCOPE} AND a.id = ?", (owner_id, str(todo_id), str(attachment_id))
            ).fetchone()
            return self._row_to_attachment(row) if row else None

    def list_attachments(self, owner_id: str, todo_id: UUID) -> List[AttachmentEntity]:
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT a.* {self._ATTACHMENT_SCOPE} ORDER BY a.created_at ASC", (owner_id, str(todo_id))
            ).fetchall()
            return [self._row_to_attachment(r) for r in rows]

    def delete_attachment(self, owner_id: str, todo_id: UUID, attachment_id: UUID) -> bool:
        with self._conn() as conn:
            cur = conn.execute(
                f"DELETE FROM todo_attachments WHERE id IN (SELECT a.id {self._ATTACHMENT_SCOPE} AND a.id = ?)",
                (owner_id, str(todo_id), str(attachment_id)),
            )
            return cur.rowcount > 0

    def collect_attachment_keys(self, owner_id: str, todo_id: UUID) -> List[str]:
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT a.download_key FROM todo_attachments a JOIN todos t ON t.id = a.todo_id
                WHERE t.user_id = ? AND (t.id = ? OR t.parent_todo_id = ?)
                """,
                (owner_id, str(todo_id), str(todo_id)),
            ).fetchall()
            return [r["download_key"] for r in rows]

    # --- Categories ---

    def create_category(self, owner_id: str, data: CategoryCreate) -> CategoryEntity:
        now = _dt(utcnow())
        category_id = str(uuid4())
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO categories (id, user_id, name, description, color, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (category_id, owner_id, data.name, data.description, data.color, now, now),
            )
            row = conn.execute("SELECT * FROM categories WHERE id = ?", (category_id,)).fetchone()
            return self._row_to_category(row)

    def get_category(self, owner_id: str, category_id: UUID) -> Optional[CategoryEntity]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM categories WHERE user_id = ? AND id = ?", (owner_id, str(category_id))
            ).fetchone()
            return self._row_to_category(row) if row else None

    def list_categories(self, owner_id: str, query: CategoryQuery) -> Tuple[List[CategoryEntity], int]:
        where_sql = "WHERE user_id = ?"
        params: List[Any] = [owner_id]
        if query.search:
            where_sql += " AND name LIKE ? ESCAPE '\\'"
            params.append(_like_pattern(query.search))
        direction = "DESC" if query.order == "desc" else "ASC"
        with self._conn() as conn:
            total = int(conn.execute(f"SELECT COUNT(*) AS cnt FROM categories {where_sql}", params).fetchone()["cnt"])
            rows = conn.execute(
                f"SELECT * FROM categories {where_sql} "
                f"ORDER BY {query.sort} {direction}, id {direction} LIMIT ? OFFSET ?",
                [*params, query.limit, query.offset],
            ).fetchall()
            return [self._row_to_category(r) for r in rows], total

    def update_category(self, owner_id: str, category_id: UUID, data: CategoryUpdate) -> Optional[CategoryEntity]:
        current = self.get_category(owner_id, category_id)
        if current is None:
            return None
        for name in ("name", "description", "color"):
            if name in data.model_fields_set:
                current[name] = getattr(data, name)  # type: ignore[literal-required]
        with self._conn() as conn:
            conn.execute(
                """
                UPDATE categories SET name = ?, description = ?, color = ?, updated_at = ?
                WHERE user_id = ? AND id = ?
                """,
                (current["name"], current["description"], current["color"], _dt(utcnow()), owner_id, str(category_id)),
            )
        return self.get_category(owner_id, category_id)

    def delete_category(self, owner_id: str, category_id: UUID) -> bool:
        with self._conn() as conn:
            cur = conn.execute("DELETE FROM categories WHERE user_id = ? AND id = ?", (owner_id, str(category_id)))
            return cur.rowcount > 0

    # --- Comments ---

    def create_comment(self, owner_id: str, todo_id: UUID, content: str) -> CommentEntity:
        now = _dt(utcnow())
        comment_id = str(uuid4())
        with self._conn() as conn:
            if self._fetch_todo(conn, owner_id, todo_id) is None:
                raise NotFoundError("Todo not found")
            conn.execute(
                """
                INSERT INTO todo_comments (id, todo_id, user_id, content, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (comment_id, str(todo_id), owner_id, content, now, now),
            )
            row = conn.execute("SELECT * FROM todo_comments WHERE id = ?", (comment_id,)).fetchone()
            return self._row_to_comment(row)

    def get_comment(self, owner_id: str, comment_id: UUID) -> Optional[CommentEntity]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM todo_comments WHERE user_id = ? AND id = ?", (owner_id, str(comment_id))
            ).fetchone()
            return self._row_to_comment(row) if row else None

    def list_comments(self, owner_id: str, todo_id: UUID) -> List[CommentEntity]:
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT c.* FROM todo_comments c JOIN todos t ON t.id = c.todo_id
                WHERE t.user_id = ? AND c.todo_id = ?
                ORDER BY c.created_at ASC
                """,
                (owner_id, str(todo_id)),
            ).fetchall()
            return [self._row_to_comment(r) for r in rows]

    def update_comment(self, owner_id: str, comment_id: UUID, content: str) -> Optional[CommentEntity]:
        with self._conn() as conn:
            cur = conn.execute(
                "UPDATE todo_comments SET content = ?, updated_at = ? WHERE user_id = ? AND id = ?",
                (content, _dt(utcnow()), owner_id, str(comment_id)),
            )
            if cur.rowcount == 0:
                return None
        return self.get_comment(owner_id, comment_id)

    def delete_comment(self, owner_id: str, comment_id: UUID) -> bool:
        with self._conn() as conn:
            cur = conn.execute("DELETE FROM todo_comments WHERE user_id = ? AND id = ?", (owner_id, str(comment_id)))
            return cur.rowcount > 0
