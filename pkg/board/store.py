"""
Board storage backend (SQLite).

Each ordering scope (a user's sticky notes, or a user's tasks in one
status column) is handled as a dense arena: the scope's ids are loaded in
rank order into a list, the list is edited in memory, and ``order = index``
is written back for the rows whose rank changed. All of this happens
inside one ``BEGIN IMMEDIATE`` transaction, which is the critical section
for the scope: a concurrent create, reorder or move on the same database
waits for it, and readers never see a half-written ranking.
"""
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .errors import BoardError, StorageUnavailable, ValidationFailure
from .guard import authorize, owned_ids
from .schema import (
    BoardTask,
    CalendarEntry,
    StickyNote,
    TaskStatus,
    User,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_DB = Path.home() / ".local" / "share" / "board" / "board.db"

# SQLite caps bound parameters per statement; stay well below it
_IN_CHUNK = 500

_schema_lock = threading.Lock()
_initialized = set()


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection in autocommit mode; transactions are explicit."""
    conn = sqlite3.connect(db_path, timeout=10, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


@contextmanager
def _transaction(db_path: str, write: bool = True):
    """
    Run a block in one transaction.

    Writers take the database write lock up front (BEGIN IMMEDIATE) so the
    read-then-write steps of create/reorder/move cannot interleave.
    BoardErrors raised inside roll back and propagate unchanged; SQLite
    errors roll back and surface as StorageUnavailable.
    """
    try:
        conn = _connect(db_path)
    except sqlite3.Error as e:
        logger.error(f"Cannot open database {db_path}: {e}")
        raise StorageUnavailable("Storage unavailable") from e
    try:
        conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
        yield conn
        conn.execute("COMMIT")
    except BoardError:
        _rollback(conn)
        raise
    except sqlite3.Error as e:
        _rollback(conn)
        logger.error(f"Storage error on {db_path}: {e}", exc_info=True)
        raise StorageUnavailable("Storage unavailable") from e
    except Exception:
        _rollback(conn)
        raise
    finally:
        conn.close()


def _rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error(f"Rollback failed: {e}")


def new_id() -> str:
    return uuid.uuid4().hex


def init_schema(db_path: str) -> None:
    """Create tables if they don't exist. Runs once per path per process."""
    with _schema_lock:
        if db_path in _initialized:
            return
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        with _transaction(db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    username TEXT NOT NULL UNIQUE,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sticky_notes (
                    id TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    text TEXT NOT NULL DEFAULT '',
                    color TEXT NOT NULL DEFAULT 'yellow',
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL DEFAULT 'active',
                    priority TEXT NOT NULL DEFAULT 'medium',
                    due_date TEXT,
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS calendar_entries (
                    id TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    title TEXT NOT NULL,
                    date TEXT NOT NULL,
                    time TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    completed INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_notes_owner ON sticky_notes(owner, sort_order)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_scope ON tasks(owner, status, sort_order)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_calendar_owner ON calendar_entries(owner, date)")
        _initialized.add(db_path)


class _SQLiteStore:
    """Shared plumbing: db path, schema bootstrap, guarded row lookup."""

    table = ""
    kind = "Item"

    def __init__(self, db_path: str = None):
        if db_path is None:
            db_path = str(DEFAULT_DB)
        self.db_path = str(db_path)
        init_schema(self.db_path)

    def _row_to_item(self, row: sqlite3.Row):
        raise NotImplementedError

    def _fetch(self, conn: sqlite3.Connection, item_id: str) -> Optional[sqlite3.Row]:
        return conn.execute(
            f"SELECT * FROM {self.table} WHERE id = ?", (item_id,)
        ).fetchone()

    def _get_owned(self, conn: sqlite3.Connection, owner: str, item_id: str) -> sqlite3.Row:
        """Resolve ``item_id`` and run it through the ownership guard."""
        row = self._fetch(conn, item_id)
        item = self._row_to_item(row) if row else None
        authorize(owner, item, self.kind)
        return row

    def get(self, owner: str, item_id: str):
        with _transaction(self.db_path, write=False) as conn:
            return self._row_to_item(self._get_owned(conn, owner, item_id))

    def delete(self, owner: str, item_id: str) -> None:
        """Remove an item. Remaining ranks are left as-is (see reorder)."""
        with _transaction(self.db_path) as conn:
            self._get_owned(conn, owner, item_id)
            conn.execute(f"DELETE FROM {self.table} WHERE id = ?", (item_id,))
        logger.info(f"Deleted {self.kind.lower()} {item_id} for {owner}")

    def _apply_fields(self, conn: sqlite3.Connection, item_id: str, fields: Dict) -> None:
        now = utc_now().isoformat()
        assignments = ", ".join(f"{col} = ?" for col in fields)
        params = list(fields.values()) + [now, item_id]
        conn.execute(
            f"UPDATE {self.table} SET {assignments}, updated_at = ? WHERE id = ?",
            params,
        )


class OrderedStore(_SQLiteStore):
    """
    A user-owned, explicitly ordered collection.

    ``scope_columns`` names the columns that together form an ordering
    scope; ``content_columns`` are the only columns ``update`` may write.
    """

    scope_columns = ("owner",)
    content_columns = ()
    order_by = "sort_order ASC, created_at ASC, rowid ASC"

    # ── Arena helpers ────────────────────────────────────────────────────

    def _scope_clause(self, scope: Dict[str, str]):
        clause = " AND ".join(f"{col} = ?" for col in self.scope_columns)
        return clause, [scope[col] for col in self.scope_columns]

    def _arena(self, conn: sqlite3.Connection, scope: Dict[str, str]) -> List[str]:
        """Ids of the scope in rank order (ties by creation time)."""
        clause, params = self._scope_clause(scope)
        rows = conn.execute(
            f"SELECT id FROM {self.table} WHERE {clause} ORDER BY {self.order_by}",
            params,
        ).fetchall()
        return [r["id"] for r in rows]

    def _next_order(self, conn: sqlite3.Connection, scope: Dict[str, str]) -> int:
        clause, params = self._scope_clause(scope)
        row = conn.execute(
            f"SELECT COALESCE(MAX(sort_order), -1) + 1 FROM {self.table} WHERE {clause}",
            params,
        ).fetchone()
        return int(row[0])

    def _write_ranks(self, conn: sqlite3.Connection, ids: List[str]) -> int:
        """Set ``sort_order = index`` for each id; returns rows changed."""
        changed = 0
        for index, item_id in enumerate(ids):
            cur = conn.execute(
                f"UPDATE {self.table} SET sort_order = ? WHERE id = ? AND sort_order != ?",
                (index, item_id, index),
            )
            changed += cur.rowcount
        return changed

    def _owners_of(self, conn: sqlite3.Connection, ids: Iterable[str]) -> Dict[str, str]:
        ids = list(dict.fromkeys(ids))
        owners = {}
        for start in range(0, len(ids), _IN_CHUNK):
            chunk = ids[start:start + _IN_CHUNK]
            marks = ", ".join("?" for _ in chunk)
            for row in conn.execute(
                f"SELECT id, owner FROM {self.table} WHERE id IN ({marks})", chunk
            ):
                owners[row["id"]] = row["owner"]
        return owners

    def _reorder_scope(
        self,
        conn: sqlite3.Connection,
        owner: str,
        scope: Dict[str, str],
        ordered_ids: List[str],
    ) -> None:
        """
        Rank the scope as ``ordered_ids``.

        Ids that don't resolve to the owner's items in this scope are
        dropped. Owned ids missing from the submission keep their relative
        order and go after the submitted ones, so the scope stays dense.
        """
        kept = owned_ids(owner, self._owners_of(conn, ordered_ids), ordered_ids)
        arena = self._arena(conn, scope)
        in_scope = set(arena)
        kept = [i for i in kept if i in in_scope]

        dropped = len(set(ordered_ids)) - len(kept)
        if dropped:
            logger.debug(f"Reorder for {owner}: dropped {dropped} id(s) not in scope {scope}")

        submitted = set(kept)
        omitted = [i for i in arena if i not in submitted]
        changed = self._write_ranks(conn, kept + omitted)
        logger.debug(f"Reorder for {owner} in {scope}: {changed} rank(s) changed")

    # ── Operations ───────────────────────────────────────────────────────

    def _list_scope(self, scope: Dict[str, str]) -> list:
        clause, params = self._scope_clause(scope)
        with _transaction(self.db_path, write=False) as conn:
            rows = conn.execute(
                f"SELECT * FROM {self.table} WHERE {clause} ORDER BY {self.order_by}",
                params,
            ).fetchall()
        return [self._row_to_item(r) for r in rows]

    def update(self, owner: str, item_id: str, fields: Dict):
        """Update content fields only. Order, owner and scope are off-limits."""
        illegal = set(fields) - set(self.content_columns)
        if illegal:
            raise ValidationFailure(
                f"Cannot update field(s): {', '.join(sorted(illegal))}"
            )
        with _transaction(self.db_path) as conn:
            self._get_owned(conn, owner, item_id)
            if fields:
                self._apply_fields(conn, item_id, fields)
            return self._row_to_item(self._fetch(conn, item_id))


class NoteStore(OrderedStore):
    """Sticky notes: one ordering scope per owner."""

    table = "sticky_notes"
    kind = "Sticky note"
    scope_columns = ("owner",)
    content_columns = ("text", "color")

    def _row_to_item(self, row: sqlite3.Row) -> StickyNote:
        data = dict(row)
        data["order"] = data.pop("sort_order")
        return StickyNote.from_dict(data)

    def list(self, owner: str) -> List[StickyNote]:
        return self._list_scope({"owner": owner})

    def create(self, owner: str, text: str = "", color: str = "yellow") -> StickyNote:
        """Append a note: order = current max + 1, or 0 for an empty scope."""
        note_id = new_id()
        now = utc_now().isoformat()
        with _transaction(self.db_path) as conn:
            order = self._next_order(conn, {"owner": owner})
            conn.execute(
                """
                INSERT INTO sticky_notes (id, owner, text, color, sort_order, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (note_id, owner, text, color, order, now, now),
            )
            row = self._fetch(conn, note_id)
        logger.info(f"Created sticky note {note_id} for {owner} at order {order}")
        return self._row_to_item(row)

    def reorder(self, owner: str, ordered_ids: List[str]) -> List[StickyNote]:
        """Atomically rank the owner's notes; returns the full new list."""
        with _transaction(self.db_path) as conn:
            self._reorder_scope(conn, owner, {"owner": owner}, ordered_ids)
        return self.list(owner)


class TaskStore(OrderedStore):
    """Kanban tasks: one ordering scope per (owner, status)."""

    table = "tasks"
    kind = "Task"
    scope_columns = ("owner", "status")
    content_columns = ("title", "description", "priority", "due_date")

    def _row_to_item(self, row: sqlite3.Row) -> BoardTask:
        data = dict(row)
        data["order"] = data.pop("sort_order")
        return BoardTask.from_dict(data)

    @staticmethod
    def _scope(owner: str, status: TaskStatus) -> Dict[str, str]:
        return {"owner": owner, "status": status.value}

    def list(self, owner: str, status: Optional[TaskStatus] = None) -> List[BoardTask]:
        """Tasks of one column, or of all columns grouped by column."""
        if status is not None:
            return self._list_scope(self._scope(owner, status))
        with _transaction(self.db_path, write=False) as conn:
            rows = conn.execute(
                f"SELECT * FROM tasks WHERE owner = ? ORDER BY {self.order_by}",
                (owner,),
            ).fetchall()
        tasks = [self._row_to_item(r) for r in rows]
        columns = {s: i for i, s in enumerate(TaskStatus)}
        tasks.sort(key=lambda t: columns[t.status])  # stable: ranks survive
        return tasks

    def create(
        self,
        owner: str,
        title: str,
        description: str = "",
        priority: str = "medium",
        due_date: Optional[str] = None,
        status: TaskStatus = TaskStatus.ACTIVE,
    ) -> BoardTask:
        """Append a task to the end of its status column."""
        task_id = new_id()
        now = utc_now().isoformat()
        with _transaction(self.db_path) as conn:
            order = self._next_order(conn, self._scope(owner, status))
            conn.execute(
                """
                INSERT INTO tasks (id, owner, title, description, status, priority,
                                   due_date, sort_order, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (task_id, owner, title, description, status.value, priority,
                 due_date, order, now, now),
            )
            row = self._fetch(conn, task_id)
        logger.info(f"Created task {task_id} for {owner} in {status.value} at order {order}")
        return self._row_to_item(row)

    def reorder(self, owner: str, status: TaskStatus, ordered_ids: List[str]) -> List[BoardTask]:
        """Atomically rank one column; returns that column's new list."""
        scope = self._scope(owner, status)
        with _transaction(self.db_path) as conn:
            self._reorder_scope(conn, owner, scope, ordered_ids)
        return self._list_scope(scope)

    def move(
        self,
        owner: str,
        task_id: str,
        new_status: Optional[TaskStatus] = None,
        new_index: Optional[int] = None,
        fields: Optional[Dict] = None,
    ) -> BoardTask:
        """
        Move a task to ``new_index`` of the ``new_status`` column.

        The source column is compacted and the target column shifted in the
        same transaction as the status change, so the task is never counted
        in both columns or in neither. ``new_index`` is clamped to
        [0, len(target)]; None appends. A None ``new_status`` keeps the
        current column. Optional content ``fields`` are written in the same
        transaction.
        """
        fields = dict(fields or {})
        illegal = set(fields) - set(self.content_columns)
        if illegal:
            raise ValidationFailure(
                f"Cannot update field(s): {', '.join(sorted(illegal))}"
            )

        with _transaction(self.db_path) as conn:
            row = self._get_owned(conn, owner, task_id)
            old_status = TaskStatus.from_str(row["status"])
            if new_status is None:
                new_status = old_status

            source = self._arena(conn, self._scope(owner, old_status))
            source.remove(task_id)
            if new_status == old_status:
                target = source
            else:
                target = self._arena(conn, self._scope(owner, new_status))

            if new_index is None:
                index = len(target)
            else:
                index = max(0, min(new_index, len(target)))
            target.insert(index, task_id)

            if new_status != old_status:
                fields["status"] = new_status.value
            if fields:
                self._apply_fields(conn, task_id, fields)

            changed = self._write_ranks(conn, target)
            if new_status != old_status:
                changed += self._write_ranks(conn, source)
            if changed and not fields:
                conn.execute(
                    "UPDATE tasks SET updated_at = ? WHERE id = ?",
                    (utc_now().isoformat(), task_id),
                )
            moved = self._row_to_item(self._fetch(conn, task_id))

        logger.info(
            f"Moved task {task_id} for {owner}: "
            f"{old_status.value} → {new_status.value} @ {moved.order}"
        )
        return moved

    def count_by_status(self, owner: str) -> Dict[str, int]:
        counts = {s.value: 0 for s in TaskStatus}
        with _transaction(self.db_path, write=False) as conn:
            for row in conn.execute(
                "SELECT status, COUNT(*) FROM tasks WHERE owner = ? GROUP BY status",
                (owner,),
            ):
                counts[row[0]] = row[1]
        return counts


class CalendarStore(_SQLiteStore):
    """Calendar entries: per-owner, sorted chronologically, no ranking."""

    table = "calendar_entries"
    kind = "Calendar task"
    content_columns = ("title", "time", "date", "description", "completed")

    def _row_to_item(self, row: sqlite3.Row) -> CalendarEntry:
        data = dict(row)
        data["completed"] = bool(data.get("completed", 0))
        return CalendarEntry.from_dict(data)

    def list(self, owner: str) -> List[CalendarEntry]:
        with _transaction(self.db_path, write=False) as conn:
            rows = conn.execute(
                "SELECT * FROM calendar_entries WHERE owner = ? ORDER BY date ASC, time ASC",
                (owner,),
            ).fetchall()
        return [self._row_to_item(r) for r in rows]

    def create(self, owner: str, title: str, date: str, time: str,
               description: str = "") -> CalendarEntry:
        entry_id = new_id()
        now = utc_now().isoformat()
        with _transaction(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO calendar_entries (id, owner, title, date, time, description,
                                              completed, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (entry_id, owner, title, date, time, description, now, now),
            )
            row = self._fetch(conn, entry_id)
        return self._row_to_item(row)

    def update(self, owner: str, entry_id: str, fields: Dict) -> CalendarEntry:
        illegal = set(fields) - set(self.content_columns)
        if illegal:
            raise ValidationFailure(
                f"Cannot update field(s): {', '.join(sorted(illegal))}"
            )
        if "completed" in fields:
            fields = dict(fields, completed=1 if fields["completed"] else 0)
        with _transaction(self.db_path) as conn:
            self._get_owned(conn, owner, entry_id)
            if fields:
                self._apply_fields(conn, entry_id, fields)
            return self._row_to_item(self._fetch(conn, entry_id))


class UserStore(_SQLiteStore):
    """Accounts. Passwords arrive already hashed (see auth.py)."""

    table = "users"
    kind = "User"

    def _row_to_item(self, row: sqlite3.Row) -> User:
        return User(
            user_id=row["id"],
            username=row["username"],
            email=row["email"],
            password_hash=row["password_hash"],
            created_at=row["created_at"],
        )

    def create(self, username: str, email: str, password_hash: str) -> User:
        user_id = new_id()
        now = utc_now().isoformat()
        with _transaction(self.db_path) as conn:
            existing = conn.execute(
                "SELECT id FROM users WHERE email = ? OR username = ?",
                (email.lower(), username),
            ).fetchone()
            if existing:
                raise ValidationFailure("User already exists")
            conn.execute(
                "INSERT INTO users (id, username, email, password_hash, created_at) VALUES (?, ?, ?, ?, ?)",
                (user_id, username, email.lower(), password_hash, now),
            )
            row = self._fetch(conn, user_id)
        logger.info(f"Registered user {username} ({user_id})")
        return self._row_to_item(row)

    def find(self, user_id: str) -> Optional[User]:
        with _transaction(self.db_path, write=False) as conn:
            row = self._fetch(conn, user_id)
        return self._row_to_item(row) if row else None

    def find_by_email(self, email: str) -> Optional[User]:
        with _transaction(self.db_path, write=False) as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?", (email.lower(),)
            ).fetchone()
        return self._row_to_item(row) if row else None
