"""Append-only task-status log and task overviews."""

import datetime
import sqlite3

from outline_kb.core.tree.navigation import NODE_COLUMNS, get_node, row_to_node
from outline_kb.models.node import OutlineNode, TaskFilter, TaskLogEntry, TaskStatus
from outline_kb.utils import now_ms

_ENTRY_COLUMNS = "id, node_id, status, old_value, new_value, timestamp"


def _row_to_entry(row: tuple) -> TaskLogEntry:
    return TaskLogEntry(
        id=row[0],
        node_id=row[1],
        status=TaskStatus(row[2]),
        old_value=row[3],
        new_value=row[4],
        timestamp=row[5],
    )


def _flag(value: bool) -> str:
    return "true" if value else "false"


def append_entry(
    conn: sqlite3.Connection,
    *,
    node_id: str,
    status: TaskStatus,
    old_value: bool | str | None = None,
    new_value: bool | str | None = None,
) -> TaskLogEntry:
    """Append a transition. Timestamps are strictly increasing across the log."""
    if isinstance(old_value, bool):
        old_value = _flag(old_value)
    if isinstance(new_value, bool):
        new_value = _flag(new_value)
    last = conn.execute("SELECT MAX(timestamp) FROM task_status_log").fetchone()[0]
    timestamp = now_ms() if last is None else max(now_ms(), last + 1)
    cursor = conn.execute(
        "INSERT INTO task_status_log (node_id, status, old_value, new_value, timestamp) "
        "VALUES (?, ?, ?, ?, ?)",
        (node_id, status.value, old_value, new_value, timestamp),
    )
    row = conn.execute(
        f"SELECT {_ENTRY_COLUMNS} FROM task_status_log WHERE id = ?", (cursor.lastrowid,)
    ).fetchone()
    return _row_to_entry(row)


def log_transition(
    conn: sqlite3.Connection, before: OutlineNode, after: OutlineNode
) -> list[TaskLogEntry]:
    """Log the task-state change between two snapshots of the same node."""
    entries = []
    if before.is_task != after.is_task:
        status = TaskStatus.CREATED if after.is_task else TaskStatus.DELETED
        entries.append(
            append_entry(
                conn,
                node_id=after.id,
                status=status,
                old_value=before.is_task,
                new_value=after.is_task,
            )
        )
    elif after.is_task and before.completed != after.completed:
        status = TaskStatus.COMPLETED if after.completed else TaskStatus.UNCOMPLETED
        entries.append(
            append_entry(
                conn,
                node_id=after.id,
                status=status,
                old_value=before.completed,
                new_value=after.completed,
            )
        )
    return entries


def history(conn: sqlite3.Connection, node_id: str) -> list[TaskLogEntry]:
    """All log entries of a node, oldest first."""
    get_node(conn, node_id)
    rows = conn.execute(
        f"SELECT {_ENTRY_COLUMNS} FROM task_status_log WHERE node_id = ? "
        "ORDER BY timestamp, id",
        (node_id,),
    ).fetchall()
    return [_row_to_entry(r) for r in rows]


def recent_activity(conn: sqlite3.Connection, *, limit: int = 50) -> list[TaskLogEntry]:
    """Latest log entries across all nodes, newest first."""
    rows = conn.execute(
        f"SELECT {_ENTRY_COLUMNS} FROM task_status_log ORDER BY timestamp DESC, id DESC LIMIT ?",
        (limit,),
    ).fetchall()
    return [_row_to_entry(r) for r in rows]


def delete_log_entries(conn: sqlite3.Connection, node_ids: list[str]) -> None:
    conn.executemany("DELETE FROM task_status_log WHERE node_id = ?", [(i,) for i in node_ids])


def open_tasks(
    conn: sqlite3.Connection, task_filter: TaskFilter | None = None
) -> list[OutlineNode]:
    """Tasks across notes ordered by due date, then priority, then location.

    Due date ascending with undated tasks last; priority high > medium > low >
    none; then note id and sibling position.
    """
    task_filter = task_filter or TaskFilter()
    where = ["is_task = 1"]
    params: list[str] = []
    if not task_filter.include_completed:
        where.append("task_completed = 0")
    if task_filter.note_id is not None:
        where.append("note_id = ?")
        params.append(task_filter.note_id)
    if task_filter.priority is not None:
        where.append("task_priority = ?")
        params.append(task_filter.priority.value)
    if task_filter.due_on_or_before is not None:
        where.append("task_due_date IS NOT NULL AND task_due_date <= ?")
        params.append(task_filter.due_on_or_before.isoformat())

    rows = conn.execute(
        f"SELECT {NODE_COLUMNS} FROM outline_nodes WHERE {' AND '.join(where)}",
        params,
    ).fetchall()
    nodes = [row_to_node(r) for r in rows]
    nodes.sort(
        key=lambda n: (
            n.due_date is None,
            n.due_date or datetime.date.min,
            -(n.priority.rank if n.priority else 0),
            n.note_id,
            n.position,
        )
    )
    return nodes
