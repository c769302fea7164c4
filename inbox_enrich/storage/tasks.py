"""TaskStore — each user's append-only list of extracted tasks."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Sequence

from inbox_enrich.processing.types import ExtractedTask, TaskStatus
from inbox_enrich.storage.db import EnrichmentDatabase
from inbox_enrich.storage.models import TaskRecord

logger = logging.getLogger(__name__)

_TASK_COLUMNS = (
    "id, user_email, email_id, title, date, is_urgent, is_past_due, status, created_at"
)


def new_task_id() -> str:
    return uuid.uuid4().hex


class TaskStore:
    """Durable per-user task list.

    The pipeline only ever appends; status changes and deletion belong to
    the user-facing layer.
    """

    def __init__(self, db: EnrichmentDatabase) -> None:
        self._db = db

    # ── Read API ───────────────────────────────────────────────────────────────

    def list_tasks(self, user_email: str, status: TaskStatus | None = None) -> list[TaskRecord]:
        """Return the user's tasks in creation order, optionally filtered by status."""
        sql = f"SELECT {_TASK_COLUMNS} FROM tasks WHERE user_email = ?"
        params: tuple[str, ...] = (user_email,)
        if status is not None:
            sql += " AND status = ?"
            params += (status.value,)
        rows = self._db.conn.execute(sql + " ORDER BY created_at, rowid", params).fetchall()
        return [_to_record(row) for row in rows]

    def email_ids_with_tasks(self, user_email: str) -> set[str]:
        """Return every email id that already has at least one task for the user."""
        rows = self._db.conn.execute(
            "SELECT DISTINCT email_id FROM tasks WHERE user_email = ?",
            (user_email,),
        ).fetchall()
        return {row["email_id"] for row in rows}

    # ── Write API ──────────────────────────────────────────────────────────────

    def build(self, user_email: str, email_id: str, extracted: Sequence[ExtractedTask]) -> list[TaskRecord]:
        """Turn extracted items into active TaskRecords with fresh ids (not persisted)."""
        return [
            TaskRecord(
                id=new_task_id(),
                user_email=user_email,
                email_id=email_id,
                title=task.title,
                date=task.date,
                is_urgent=task.is_urgent,
                is_past_due=task.is_past_due,
                status=TaskStatus.ACTIVE.value,
            )
            for task in extracted
        ]

    def append(self, tasks: Sequence[TaskRecord]) -> None:
        """Persist ``tasks`` in one batch insert."""
        if not tasks:
            return
        with self._db.transaction() as conn:
            conn.executemany(
                """INSERT INTO tasks
                       (id, user_email, email_id, title, date,
                        is_urgent, is_past_due, status)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    (
                        t.id,
                        t.user_email,
                        t.email_id,
                        t.title,
                        t.date,
                        int(t.is_urgent),
                        int(t.is_past_due),
                        t.status,
                    )
                    for t in tasks
                ],
            )
        logger.info("Appended %d task(s)", len(tasks))

    def set_status(self, user_email: str, task_id: str, status: TaskStatus) -> bool:
        """Set a task's status; False if the user has no such task."""
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE tasks SET status = ? WHERE id = ? AND user_email = ?",
                (status.value, task_id, user_email),
            )
            return cursor.rowcount == 1

    def delete(self, user_email: str, task_id: str) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM tasks WHERE id = ? AND user_email = ?",
                (task_id, user_email),
            )
            return cursor.rowcount == 1


def _to_record(row: sqlite3.Row) -> TaskRecord:
    d = dict(row)
    d["is_urgent"] = bool(d["is_urgent"])
    d["is_past_due"] = bool(d["is_past_due"])
    return TaskRecord(**d)
