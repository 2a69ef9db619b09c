# src/delegation_engine/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

from ..core.errors import ValidationError
from .task_models import (
    ChangeType,
    HistoryEntry,
    RecurringTemplate,
    RescheduleRequest,
    RescheduleStatus,
    Task,
    TaskStatus,
)

logger = logging.getLogger(__name__)

_TASK_COLUMNS = {
    "title",
    "description",
    "assigned_to",
    "created_by",
    "status",
    "due_date",
    "original_due_date",
    "completed_at",
    "recurring_template_id",
}

_TEMPLATE_COLUMNS = {
    "title",
    "description",
    "assigned_to",
    "created_by",
    "kind",
    "interval",
    "day_of_week",
    "day_of_month",
    "month",
    "start_date",
    "end_date",
    "unlock_days_before_due",
    "is_paused",
    "is_ended",
    "last_generated_task_id",
}

_REQUEST_COLUMNS = {
    "task_id",
    "requested_by",
    "requested_due_date",
    "current_due_date",
    "status",
    "approved_by",
    "approved_at",
    "rejected_by",
    "rejected_at",
    "rejection_reason",
    "auto_approved",
    "created_at",
    "expires_at",
}


def _str_to_dt(s: str | None) -> datetime | None:
    if not s:
        return None
    return datetime.fromisoformat(s)


def _str_to_date(s: str | None) -> date | None:
    if not s:
        return None
    return date.fromisoformat(s[:10])


def _to_db_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        # StrEnum members
        return value.value
    return value


class DelegationStore:
    """
    SQLite store for tasks, recurring templates, reschedule requests and task history.

    The schema is intentionally simple and migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each call outside atomic() opens its own SQLite connection (autocommit)
    - atomic() opens one connection per thread and runs BEGIN IMMEDIATE, so
      writers are serialized and everything inside commits or rolls back together
    """

    def __init__(self, db_path: str | Path = "delegation.sqlite3", *, busy_timeout: float = 30.0) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._busy_timeout = float(busy_timeout)
        self._local = threading.local()
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except sqlite3.Error:
            total = -1
        logger.info("DelegationStore ready db=%s tasks=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=self._busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")

    @contextlib.contextmanager
    def atomic(self) -> Iterator[None]:
        """
        Run the block as one transaction.

        Nested calls on the same thread run as a SAVEPOINT inside the outer
        transaction: a failing inner block is undone on its own.
        """
        shared = getattr(self._local, "conn", None)
        if shared is not None:
            depth = getattr(self._local, "depth", 0) + 1
            self._local.depth = depth
            name = f"sp_{depth}"
            shared.execute(f"SAVEPOINT {name}")
            try:
                yield
            except BaseException:
                shared.execute(f"ROLLBACK TO {name}")
                shared.execute(f"RELEASE {name}")
                raise
            else:
                shared.execute(f"RELEASE {name}")
            finally:
                self._local.depth = depth - 1
            return

        conn = self._get_conn()
        conn.execute("BEGIN IMMEDIATE")
        self._local.conn = conn
        try:
            yield
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")
        finally:
            self._local.conn = None
            conn.close()

    @contextlib.contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        shared = getattr(self._local, "conn", None)
        if shared is not None:
            yield shared
            return
        conn = self._get_conn()
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS recurring_templates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    description TEXT,
                    assigned_to TEXT,
                    created_by TEXT,
                    kind TEXT NOT NULL,
                    interval INTEGER NOT NULL DEFAULT 1,
                    day_of_week INTEGER,
                    day_of_month INTEGER,
                    month INTEGER,
                    start_date TEXT NOT NULL,
                    end_date TEXT,
                    unlock_days_before_due INTEGER NOT NULL DEFAULT 0,
                    is_paused INTEGER NOT NULL DEFAULT 0,
                    is_ended INTEGER NOT NULL DEFAULT 0,
                    last_generated_task_id INTEGER,
                    created_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    description TEXT,
                    assigned_to TEXT,
                    created_by TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    due_date TEXT,
                    original_due_date TEXT,
                    completed_at TEXT,
                    recurring_template_id INTEGER REFERENCES recurring_templates(id),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS reschedule_requests (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id INTEGER NOT NULL REFERENCES tasks(id),
                    requested_by TEXT NOT NULL,
                    requested_due_date TEXT NOT NULL,
                    current_due_date TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    approved_by TEXT,
                    approved_at TEXT,
                    rejected_by TEXT,
                    rejected_at TEXT,
                    rejection_reason TEXT,
                    auto_approved INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    expires_ts REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id INTEGER NOT NULL REFERENCES tasks(id),
                    change_type TEXT NOT NULL,
                    old_value TEXT,
                    new_value TEXT,
                    metadata TEXT NOT NULL DEFAULT '{}',
                    changed_by TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )

            # Migrations (safe): add missing columns.
            def add_col(table: str, name: str, decl: str) -> None:
                cur.execute(f"PRAGMA table_info({table})")
                cols = {row["name"] for row in cur.fetchall()}
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
                logger.info("DelegationStore migration: added column %s.%s", table, name)

            add_col("tasks", "original_due_date", "TEXT")
            add_col("tasks", "completed_at", "TEXT")
            add_col("tasks", "recurring_template_id", "INTEGER")
            add_col("recurring_templates", "unlock_days_before_due", "INTEGER NOT NULL DEFAULT 0")
            add_col("recurring_templates", "last_generated_task_id", "INTEGER")
            add_col("reschedule_requests", "auto_approved", "INTEGER NOT NULL DEFAULT 0")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_template ON tasks(recurring_template_id)")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_requests_status_expiry "
                "ON reschedule_requests(status, expires_ts)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_requests_task ON reschedule_requests(task_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_history_task ON task_history(task_id)")
        finally:
            conn.close()

    @staticmethod
    def _meta_to_str(meta: dict[str, Any] | None) -> str:
        if not meta:
            return "{}"
        try:
            return json.dumps(meta, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            logger.exception("Failed to JSON-encode history metadata; storing {}.")
            return "{}"

    @staticmethod
    def _str_to_meta(s: str | None) -> dict[str, Any]:
        if not s:
            return {}
        try:
            val = json.loads(s)
            return val if isinstance(val, dict) else {}
        except ValueError:
            return {}

    @staticmethod
    def _checked_fields(fields: dict[str, Any], allowed: set[str], table: str) -> dict[str, Any]:
        unknown = set(fields) - allowed
        if unknown:
            raise ValidationError(f"unknown {table} fields: {', '.join(sorted(unknown))}")
        return {k: _to_db_value(v) for k, v in fields.items()}

    @staticmethod
    def _now(at: datetime | None = None) -> str:
        """ISO timestamp for created_at/updated_at; `at` comes from the caller's clock."""
        return (at if at is not None else datetime.now(UTC)).isoformat()

    def _insert(self, table: str, values: dict[str, Any]) -> int:
        cols = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        with self._connection() as conn:
            cur = conn.execute(
                f"INSERT INTO {table} ({cols}) VALUES ({placeholders})",
                tuple(values.values()),
            )
            rowid = cur.lastrowid
        if rowid is None:
            raise RuntimeError(f"SQLite did not return lastrowid for {table} insert")
        return int(rowid)

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            title=str(row["title"] or ""),
            status=TaskStatus.from_db(row["status"]),
            due_date=_str_to_dt(row["due_date"]),
            original_due_date=_str_to_dt(row["original_due_date"]),
            completed_at=_str_to_dt(row["completed_at"]),
            recurring_template_id=(
                int(row["recurring_template_id"]) if row["recurring_template_id"] is not None else None
            ),
            description=row["description"],
            assigned_to=row["assigned_to"],
            created_by=row["created_by"],
            created_at=_str_to_dt(row["created_at"]),
            updated_at=_str_to_dt(row["updated_at"]),
        )

    def _row_to_template(self, row: sqlite3.Row) -> RecurringTemplate:
        start = _str_to_dt(row["start_date"])
        if start is None:
            raise RuntimeError(f"template {row['id']} has no start_date")
        return RecurringTemplate(
            id=int(row["id"]),
            title=str(row["title"] or ""),
            kind=str(row["kind"]),
            interval=int(row["interval"]),
            start_date=start,
            day_of_week=row["day_of_week"],
            day_of_month=row["day_of_month"],
            month=row["month"],
            end_date=_str_to_date(row["end_date"]),
            unlock_days_before_due=int(row["unlock_days_before_due"] or 0),
            is_paused=bool(row["is_paused"]),
            is_ended=bool(row["is_ended"]),
            last_generated_task_id=(
                int(row["last_generated_task_id"]) if row["last_generated_task_id"] is not None else None
            ),
            description=row["description"],
            assigned_to=row["assigned_to"],
            created_by=row["created_by"],
            created_at=_str_to_dt(row["created_at"]),
        )

    @staticmethod
    def _row_to_request(row: sqlite3.Row) -> RescheduleRequest:
        return RescheduleRequest(
            id=int(row["id"]),
            task_id=int(row["task_id"]),
            requested_by=str(row["requested_by"]),
            requested_due_date=datetime.fromisoformat(row["requested_due_date"]),
            current_due_date=_str_to_dt(row["current_due_date"]),
            status=RescheduleStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
            approved_by=row["approved_by"],
            approved_at=_str_to_dt(row["approved_at"]),
            rejected_by=row["rejected_by"],
            rejected_at=_str_to_dt(row["rejected_at"]),
            rejection_reason=row["rejection_reason"],
            auto_approved=bool(row["auto_approved"]),
        )

    def _row_to_history(self, row: sqlite3.Row) -> HistoryEntry:
        return HistoryEntry(
            id=int(row["id"]),
            task_id=int(row["task_id"]),
            change_type=ChangeType(row["change_type"]),
            old_value=row["old_value"],
            new_value=row["new_value"],
            changed_by=str(row["changed_by"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            metadata=self._str_to_meta(row["metadata"]),
        )

    # ---- tasks ----

    def count_tasks(self) -> int:
        with self._connection() as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)

    def get_task(self, task_id: int) -> Task | None:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
            return self._row_to_task(row) if row else None

    def create_task(self, fields: dict[str, Any], *, at: datetime | None = None) -> int:
        values = self._checked_fields(fields, _TASK_COLUMNS, "task")
        if not str(values.get("title") or "").strip():
            raise ValidationError("task title is required")
        values.setdefault("status", TaskStatus.PENDING.value)
        if values.get("original_due_date") is None and values.get("due_date") is not None:
            values["original_due_date"] = values["due_date"]
        now = self._now(at)
        values["created_at"] = now
        values["updated_at"] = now

        task_id = self._insert("tasks", values)
        logger.debug(
            "Task added id=%s status=%s due_date=%s template=%s",
            task_id,
            values["status"],
            values.get("due_date"),
            values.get("recurring_template_id"),
        )
        return task_id

    def _task_update_sql(self, fields: dict[str, Any], at: datetime | None) -> tuple[list[str], list[Any]]:
        values = self._checked_fields(fields, _TASK_COLUMNS, "task")
        sets: list[str] = []
        params: list[Any] = []
        for name, value in values.items():
            if name == "original_due_date":
                # Write-once: a non-null original due date is never replaced.
                sets.append("original_due_date = COALESCE(original_due_date, ?)")
            else:
                sets.append(f"{name} = ?")
            params.append(value)
        sets.append("updated_at = ?")
        params.append(self._now(at))
        return sets, params

    def update_task(self, task_id: int, fields: dict[str, Any], *, at: datetime | None = None) -> None:
        if not fields:
            return
        sets, params = self._task_update_sql(fields, at)
        params.append(int(task_id))
        with self._connection() as conn:
            conn.execute(f"UPDATE tasks SET {', '.join(sets)} WHERE id = ?", params)

    def try_update_task(
        self,
        task_id: int,
        *,
        expected: Iterable[TaskStatus],
        fields: dict[str, Any],
        at: datetime | None = None,
    ) -> bool:
        """
        Atomically update a task only while its status is one of `expected`.

        Returns True if this caller's update landed.
        """
        exp = [TaskStatus(e).value for e in expected]
        if not exp or not fields:
            return False
        sets, params = self._task_update_sql(fields, at)
        placeholders = ",".join("?" for _ in exp)
        with self._connection() as conn:
            cur = conn.execute(
                f"UPDATE tasks SET {', '.join(sets)} WHERE id = ? AND status IN ({placeholders})",
                (*params, int(task_id), *exp),
            )
            return cur.rowcount == 1

    def list_template_tasks(self, template_id: int) -> list[Task]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE recurring_template_id = ?
                ORDER BY due_date IS NULL, due_date DESC, id DESC
                """,
                (int(template_id),),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]

    # ---- templates ----

    def get_template(self, template_id: int) -> RecurringTemplate | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM recurring_templates WHERE id = ?", (int(template_id),)
            ).fetchone()
            return self._row_to_template(row) if row else None

    def create_template(self, fields: dict[str, Any], *, at: datetime | None = None) -> int:
        values = self._checked_fields(fields, _TEMPLATE_COLUMNS, "template")
        values["created_at"] = self._now(at)
        template_id = self._insert("recurring_templates", values)
        logger.debug("Template added id=%s kind=%s", template_id, values.get("kind"))
        return template_id

    def update_template(self, template_id: int, fields: dict[str, Any]) -> None:
        if not fields:
            return
        values = self._checked_fields(fields, _TEMPLATE_COLUMNS, "template")
        sets = [f"{name} = ?" for name in values]
        params = [*values.values(), int(template_id)]
        if "is_ended" in values:
            # is_ended never goes back to false.
            idx = list(values).index("is_ended")
            sets[idx] = "is_ended = MAX(is_ended, ?)"
        with self._connection() as conn:
            conn.execute(f"UPDATE recurring_templates SET {', '.join(sets)} WHERE id = ?", params)

    def try_move_template_pointer(
        self,
        template_id: int,
        *,
        expected_task_id: int | None,
        new_task_id: int,
    ) -> bool:
        """
        Compare-and-set the template's last generated instance.

        Returns False if another generation already moved the pointer.
        """
        with self._connection() as conn:
            cur = conn.execute(
                """
                UPDATE recurring_templates
                SET last_generated_task_id = ?
                WHERE id = ?
                  AND last_generated_task_id IS ?
                """,
                (int(new_task_id), int(template_id), expected_task_id),
            )
            return cur.rowcount == 1

    # ---- reschedule requests ----

    def get_request(self, request_id: int) -> RescheduleRequest | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM reschedule_requests WHERE id = ?", (int(request_id),)
            ).fetchone()
            return self._row_to_request(row) if row else None

    def create_request(self, fields: dict[str, Any]) -> int:
        expires_at = fields.get("expires_at")
        if not isinstance(expires_at, datetime):
            raise ValidationError("expires_at must be a datetime")
        values = self._checked_fields(fields, _REQUEST_COLUMNS, "reschedule request")
        values.setdefault("status", RescheduleStatus.PENDING.value)
        values.setdefault("created_at", self._now())
        values["expires_ts"] = expires_at.timestamp()
        request_id = self._insert("reschedule_requests", values)
        logger.debug("Reschedule request added id=%s task_id=%s", request_id, values.get("task_id"))
        return request_id

    def try_transition_request(
        self,
        request_id: int,
        *,
        expected: RescheduleStatus,
        fields: dict[str, Any],
    ) -> bool:
        """
        Atomically transitions:
          status == expected  -> fields (status included)

        Returns True if the row was transitioned by this caller.
        """
        values = self._checked_fields(fields, _REQUEST_COLUMNS, "reschedule request")
        if not values:
            return False
        sets = ", ".join(f"{name} = ?" for name in values)
        with self._connection() as conn:
            cur = conn.execute(
                f"UPDATE reschedule_requests SET {sets} WHERE id = ? AND status = ?",
                (*values.values(), int(request_id), RescheduleStatus(expected).value),
            )
            return cur.rowcount == 1

    def list_requests(
        self,
        *,
        task_id: int | None = None,
        status: RescheduleStatus | None = None,
        requested_by: str | None = None,
    ) -> list[RescheduleRequest]:
        where: list[str] = []
        params: list[Any] = []
        if task_id is not None:
            where.append("task_id = ?")
            params.append(int(task_id))
        if status is not None:
            where.append("status = ?")
            params.append(RescheduleStatus(status).value)
        if requested_by is not None:
            where.append("requested_by = ?")
            params.append(requested_by)

        sql = "SELECT * FROM reschedule_requests"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY created_at DESC, id DESC"

        with self._connection() as conn:
            return [self._row_to_request(r) for r in conn.execute(sql, params).fetchall()]

    def list_expired_pending(self, *, now: datetime, limit: int | None = None) -> list[RescheduleRequest]:
        """Pending requests whose expires_at <= now, oldest expiry first."""
        sql = """
            SELECT *
            FROM reschedule_requests
            WHERE status = 'pending'
              AND expires_ts <= ?
            ORDER BY expires_ts ASC, id ASC
        """
        params: list[Any] = [now.timestamp()]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._connection() as conn:
            return [self._row_to_request(r) for r in conn.execute(sql, params).fetchall()]

    # ---- history ----

    def append(
        self,
        task_id: int,
        change_type: ChangeType,
        old_value: str | None,
        new_value: str | None,
        metadata: dict[str, Any] | None,
        actor_id: str,
        *,
        at: datetime | None = None,
    ) -> int:
        if not actor_id:
            raise ValidationError("history entries need a non-empty actor")
        return self._insert(
            "task_history",
            {
                "task_id": int(task_id),
                "change_type": ChangeType(change_type).value,
                "old_value": old_value,
                "new_value": new_value,
                "metadata": self._meta_to_str(metadata),
                "changed_by": actor_id,
                "created_at": self._now(at),
            },
        )

    def list_history(self, task_id: int) -> list[HistoryEntry]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM task_history WHERE task_id = ? ORDER BY created_at DESC, id DESC",
                (int(task_id),),
            ).fetchall()
            return [self._row_to_history(r) for r in rows]
