"""Tree navigation: node lookup, children, ancestors, breadcrumbs, siblings."""

import datetime
import sqlite3
from collections import deque

from outline_kb.errors import NotFoundError
from outline_kb.models.node import BlockKind, Breadcrumb, OutlineNode, Priority

NODE_COLUMNS = (
    "id, note_id, parent_node_id, content, position, is_task, task_completed, "
    "task_priority, task_due_date, block_type, created_at, modified_at"
)


def row_to_node(row: sqlite3.Row | tuple) -> OutlineNode:
    return OutlineNode(
        id=row[0],
        note_id=row[1],
        parent_id=row[2],
        content=row[3],
        position=row[4],
        is_task=bool(row[5]),
        completed=bool(row[6]),
        priority=Priority(row[7]) if row[7] else None,
        due_date=datetime.date.fromisoformat(row[8]) if row[8] else None,
        block_kind=BlockKind(row[9]),
        created_at=row[10],
        modified_at=row[11],
    )


def find_node(conn: sqlite3.Connection, node_id: str) -> OutlineNode | None:
    row = conn.execute(
        f"SELECT {NODE_COLUMNS} FROM outline_nodes WHERE id = ?", (node_id,)
    ).fetchone()
    return row_to_node(row) if row else None


def get_node(conn: sqlite3.Connection, node_id: str) -> OutlineNode:
    """Fetch a node by id, raising NotFoundError if it does not exist."""
    node = find_node(conn, node_id)
    if node is None:
        raise NotFoundError("node", node_id)
    return node


def get_children(
    conn: sqlite3.Connection,
    *,
    note_id: str,
    parent_id: str | None,
) -> tuple[OutlineNode, ...]:
    """Get direct children of a parent (or the root-level nodes), in sibling order."""
    rows = conn.execute(
        f"SELECT {NODE_COLUMNS} FROM outline_nodes "
        "WHERE note_id = ? AND parent_node_id IS ? "
        "ORDER BY position",
        (note_id, parent_id),
    ).fetchall()
    return tuple(row_to_node(r) for r in rows)


def get_sibling_ids(
    conn: sqlite3.Connection,
    *,
    note_id: str,
    parent_id: str | None,
) -> list[str]:
    rows = conn.execute(
        "SELECT id FROM outline_nodes WHERE note_id = ? AND parent_node_id IS ? "
        "ORDER BY position",
        (note_id, parent_id),
    ).fetchall()
    return [r[0] for r in rows]


def get_note_nodes(conn: sqlite3.Connection, note_id: str) -> list[tuple[OutlineNode, int]]:
    """Return every node of a note in document order, paired with its depth."""
    rows = conn.execute(
        f"SELECT {NODE_COLUMNS} FROM outline_nodes WHERE note_id = ? ORDER BY position",
        (note_id,),
    ).fetchall()
    by_parent: dict[str | None, list[OutlineNode]] = {}
    for row in rows:
        node = row_to_node(row)
        by_parent.setdefault(node.parent_id, []).append(node)

    result: list[tuple[OutlineNode, int]] = []
    stack = [(n, 0) for n in reversed(by_parent.get(None, []))]
    while stack:
        node, depth = stack.pop()
        result.append((node, depth))
        stack.extend((c, depth + 1) for c in reversed(by_parent.get(node.id, [])))
    return result


def get_ancestor_ids(conn: sqlite3.Connection, node_id: str, *, limit: int) -> list[str]:
    """Walk parent links from node_id upwards, nearest ancestor first.

    The walk stops after ``limit`` steps, which callers set to the number of
    nodes in the note; a longer chain can only mean a cycle.
    """
    ancestors: list[str] = []
    current: str | None = node_id
    for _ in range(limit + 1):
        row = conn.execute(
            "SELECT parent_node_id FROM outline_nodes WHERE id = ?", (current,)
        ).fetchone()
        if row is None or row[0] is None:
            return ancestors
        current = row[0]
        ancestors.append(current)
    msg = f"Ancestor chain of {node_id} exceeds {limit} nodes"
    raise RuntimeError(msg)


def get_depth(conn: sqlite3.Connection, node_id: str) -> int:
    return len(get_ancestor_ids(conn, node_id, limit=count_note_nodes_for(conn, node_id)))


def count_note_nodes_for(conn: sqlite3.Connection, node_id: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM outline_nodes WHERE note_id = "
        "(SELECT note_id FROM outline_nodes WHERE id = ?)",
        (node_id,),
    ).fetchone()
    return row[0]


def collect_subtree_ids(conn: sqlite3.Connection, node_id: str) -> list[str]:
    """Return node_id and all its descendants, parents before children."""
    result: list[str] = []
    todo: deque[str] = deque([node_id])
    while todo:
        current = todo.popleft()
        result.append(current)
        rows = conn.execute(
            "SELECT id FROM outline_nodes WHERE parent_node_id = ? ORDER BY position",
            (current,),
        ).fetchall()
        todo.extend(r[0] for r in rows)
    return result


def get_breadcrumbs(conn: sqlite3.Connection, node_id: str) -> tuple[Breadcrumb, ...]:
    """Get ancestor breadcrumbs for a node.

    Returns breadcrumbs in order from root to immediate parent (excludes the node itself).
    """
    limit = count_note_nodes_for(conn, node_id)
    ancestor_ids = list(reversed(get_ancestor_ids(conn, node_id, limit=limit)))
    crumbs = []
    for depth, ancestor_id in enumerate(ancestor_ids):
        row = conn.execute(
            "SELECT content FROM outline_nodes WHERE id = ?", (ancestor_id,)
        ).fetchone()
        crumbs.append(Breadcrumb(node_id=ancestor_id, content=row[0], depth=depth))
    return tuple(crumbs)


def get_siblings(
    conn: sqlite3.Connection,
    node_id: str,
    *,
    count: int = 3,
) -> tuple[tuple[OutlineNode, ...], tuple[OutlineNode, ...]]:
    """Get siblings before and after a node.

    Returns (siblings_before, siblings_after) tuples.
    """
    node = get_node(conn, node_id)
    rows_before = conn.execute(
        f"SELECT {NODE_COLUMNS} FROM outline_nodes "
        "WHERE note_id = ? AND parent_node_id IS ? AND position < ? "
        "ORDER BY position DESC LIMIT ?",
        (node.note_id, node.parent_id, node.position, count),
    ).fetchall()
    rows_after = conn.execute(
        f"SELECT {NODE_COLUMNS} FROM outline_nodes "
        "WHERE note_id = ? AND parent_node_id IS ? AND position > ? "
        "ORDER BY position LIMIT ?",
        (node.note_id, node.parent_id, node.position, count),
    ).fetchall()
    return (
        tuple(row_to_node(r) for r in reversed(rows_before)),
        tuple(row_to_node(r) for r in rows_after),
    )


def check_sibling_order(conn: sqlite3.Connection, note_id: str) -> list[tuple[str | None, list[int]]]:
    """List sibling sets whose positions are not exactly 0..k-1.

    An empty list means every sibling set of the note is densely ordered.
    """
    rows = conn.execute(
        "SELECT parent_node_id, position FROM outline_nodes WHERE note_id = ? "
        "ORDER BY parent_node_id, position",
        (note_id,),
    ).fetchall()
    by_parent: dict[str | None, list[int]] = {}
    for parent_id, position in rows:
        by_parent.setdefault(parent_id, []).append(position)
    return [
        (parent_id, positions)
        for parent_id, positions in by_parent.items()
        if positions != list(range(len(positions)))
    ]
