"""
Task tracker - remediation action items.
Batches are created with the resolution record; items are only ever completed.
"""

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .db import utcnow, to_db_time, from_db_time
from .errors import InvalidState, NotFound
from .schema import ActionItem, TaskStatus


@dataclass
class TaskSpec:
    """A task the resolution policy asks for, before it has an owner or id."""
    title: str
    due_date: datetime
    required: bool = True


def create_task_batch(conn: sqlite3.Connection, resolution_id: str, owner_id: str,
                      specs: List[TaskSpec]) -> List[ActionItem]:
    """Insert every task of a batch inside the caller's transaction."""
    items = []
    for position, spec in enumerate(specs):
        item = ActionItem(
            id=str(uuid.uuid4()),
            resolution_id=resolution_id,
            title=spec.title,
            owner_id=owner_id,
            due_date=spec.due_date,
            required=spec.required
        )
        conn.execute(
            "INSERT INTO action_items (id, resolution_id, title, owner_id, due_date, required, status, position) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (item.id, item.resolution_id, item.title, item.owner_id,
             to_db_time(item.due_date), item.required, item.status, position)
        )
        items.append(item)
    return items


def list_tasks(conn: sqlite3.Connection, resolution_id: str) -> List[ActionItem]:
    rows = conn.execute(
        "SELECT * FROM action_items WHERE resolution_id = ? ORDER BY position",
        (resolution_id,)
    ).fetchall()
    return [_row_to_task(row) for row in rows]


def get_task(conn: sqlite3.Connection, resolution_id: str, task_id: str) -> Optional[ActionItem]:
    row = conn.execute(
        "SELECT * FROM action_items WHERE id = ? AND resolution_id = ?",
        (task_id, resolution_id)
    ).fetchone()
    return _row_to_task(row) if row else None


def complete_task(conn: sqlite3.Connection, resolution_id: str, task_id: str,
                  completion_note: Optional[str] = None) -> ActionItem:
    """Mark a task of this resolution completed."""
    task = get_task(conn, resolution_id, task_id)
    if not task:
        raise NotFound("Task not found")
    if task.status == TaskStatus.COMPLETED:
        raise InvalidState("Task already completed")

    task.status = TaskStatus.COMPLETED
    task.completion_note = completion_note.strip() if completion_note and completion_note.strip() else None
    task.completed_at = utcnow()
    conn.execute(
        "UPDATE action_items SET status = ?, completion_note = ?, completed_at = ? WHERE id = ?",
        (task.status, task.completion_note, to_db_time(task.completed_at), task.id)
    )
    return task


def all_required_complete(conn: sqlite3.Connection, resolution_id: str) -> bool:
    """True when no required task of the resolution is still pending."""
    row = conn.execute(
        "SELECT COUNT(*) FROM action_items WHERE resolution_id = ? AND required AND status != ?",
        (resolution_id, TaskStatus.COMPLETED)
    ).fetchone()
    return row[0] == 0


def _row_to_task(row: sqlite3.Row) -> ActionItem:
    return ActionItem(
        id=row['id'],
        resolution_id=row['resolution_id'],
        title=row['title'],
        owner_id=row['owner_id'],
        due_date=from_db_time(row['due_date']),
        required=bool(row['required']),
        status=row['status'],
        completion_note=row['completion_note'],
        completed_at=from_db_time(row['completed_at'])
    )
