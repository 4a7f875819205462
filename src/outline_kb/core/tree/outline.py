"""Structural edits of a note's outline tree.

Sibling positions are always dense: after any structural change the affected
sibling set is renumbered 0..k-1.
"""

import datetime
import sqlite3

from loguru import logger

from outline_kb.core.attachments.store import release_node_attachments
from outline_kb.core.links.graph import delete_links_from_nodes
from outline_kb.core.search.searcher import unindex_nodes
from outline_kb.core.tags.index import remove_node_tags
from outline_kb.core.tasks.log import delete_log_entries
from outline_kb.core.tree.navigation import (
    collect_subtree_ids,
    get_ancestor_ids,
    get_node,
    get_sibling_ids,
)
from outline_kb.errors import NotFoundError, ValidationError
from outline_kb.models.node import BlockKind, OutlineNode, Priority
from outline_kb.utils import new_id, now_ms


def _require_note(conn: sqlite3.Connection, note_id: str) -> None:
    if conn.execute("SELECT 1 FROM notes WHERE id = ?", (note_id,)).fetchone() is None:
        raise NotFoundError("note", note_id)


def _touch_note(conn: sqlite3.Connection, note_id: str, now: int) -> None:
    conn.execute("UPDATE notes SET modified_at = ? WHERE id = ?", (now, note_id))


def _renumber(conn: sqlite3.Connection, ordered_ids: list[str]) -> None:
    conn.executemany(
        "UPDATE outline_nodes SET position = ? WHERE id = ?",
        [(position, node_id) for position, node_id in enumerate(ordered_ids)],
    )


def _check_index(index: int | None, sibling_count: int) -> int:
    if index is None:
        return sibling_count
    if not 0 <= index <= sibling_count:
        msg = f"Index {index} out of range for {sibling_count} sibling(s)"
        raise ValidationError(msg, details={"index": index, "siblings": sibling_count})
    return index


def _check_parent(conn: sqlite3.Connection, note_id: str, parent_id: str | None) -> None:
    if parent_id is None:
        return
    parent = get_node(conn, parent_id)
    if parent.note_id != note_id:
        msg = "Parent node belongs to a different note"
        raise ValidationError(msg, details={"parent_id": parent_id, "note_id": note_id})


def create_node(
    conn: sqlite3.Connection,
    *,
    note_id: str,
    parent_id: str | None = None,
    content: str = "",
    index: int | None = None,
    block_kind: BlockKind = BlockKind.NORMAL,
) -> OutlineNode:
    """Insert a new leaf node into a sibling set.

    Args:
        conn: Database connection inside an open transaction.
        note_id: Owning note.
        parent_id: Parent node, or None for a root-level node.
        content: Initial text.
        index: Position among siblings (None = append).
        block_kind: Normal, quote or code block.
    """
    _require_note(conn, note_id)
    _check_parent(conn, note_id, parent_id)
    siblings = get_sibling_ids(conn, note_id=note_id, parent_id=parent_id)
    index = _check_index(index, len(siblings))

    now = now_ms()
    node_id = new_id()
    conn.execute(
        """INSERT INTO outline_nodes
           (id, note_id, parent_node_id, content, position, block_type,
            created_at, modified_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (node_id, note_id, parent_id, content, len(siblings), block_kind.value, now, now),
    )
    siblings.insert(index, node_id)
    _renumber(conn, siblings)
    _touch_note(conn, note_id, now)
    logger.debug("Created node {} in note {} at index {}", node_id, note_id, index)
    return get_node(conn, node_id)


def update_content(conn: sqlite3.Connection, node_id: str, content: str) -> OutlineNode:
    node = get_node(conn, node_id)
    now = now_ms()
    conn.execute(
        "UPDATE outline_nodes SET content = ?, modified_at = ? WHERE id = ?",
        (content, now, node_id),
    )
    _touch_note(conn, node.note_id, now)
    return get_node(conn, node_id)


def move_node(
    conn: sqlite3.Connection,
    node_id: str,
    *,
    new_parent_id: str | None,
    index: int | None = None,
) -> OutlineNode:
    """Reparent and/or reposition a node within its note.

    Raises:
        ValidationError: If the move would make the node its own ancestor,
            targets a parent in another note, or the index is out of range.
    """
    node = get_node(conn, node_id)
    _check_parent(conn, node.note_id, new_parent_id)

    if new_parent_id is not None:
        note_size = conn.execute(
            "SELECT COUNT(*) FROM outline_nodes WHERE note_id = ?", (node.note_id,)
        ).fetchone()[0]
        chain = [new_parent_id, *get_ancestor_ids(conn, new_parent_id, limit=note_size)]
        if node_id in chain:
            msg = "Cannot move a node under itself or one of its descendants"
            raise ValidationError(msg, details={"node_id": node_id, "new_parent_id": new_parent_id})

    old_siblings = get_sibling_ids(conn, note_id=node.note_id, parent_id=node.parent_id)
    old_siblings.remove(node_id)
    if new_parent_id == node.parent_id:
        new_siblings = old_siblings
    else:
        new_siblings = get_sibling_ids(conn, note_id=node.note_id, parent_id=new_parent_id)
    index = _check_index(index, len(new_siblings))

    now = now_ms()
    conn.execute(
        "UPDATE outline_nodes SET parent_node_id = ?, modified_at = ? WHERE id = ?",
        (new_parent_id, now, node_id),
    )
    new_siblings.insert(index, node_id)
    if new_parent_id != node.parent_id:
        _renumber(conn, old_siblings)
    _renumber(conn, new_siblings)
    _touch_note(conn, node.note_id, now)
    logger.debug("Moved node {} under {} at index {}", node_id, new_parent_id, index)
    return get_node(conn, node_id)


def reorder_children(
    conn: sqlite3.Connection,
    *,
    note_id: str,
    parent_id: str | None,
    ordered_ids: list[str],
) -> None:
    """Replace the sibling order of a parent with ``ordered_ids``.

    ``ordered_ids`` must be a permutation of the current sibling set.
    """
    _require_note(conn, note_id)
    _check_parent(conn, note_id, parent_id)
    current = get_sibling_ids(conn, note_id=note_id, parent_id=parent_id)
    if len(ordered_ids) != len(current) or set(ordered_ids) != set(current):
        msg = "Reorder list must contain exactly the current siblings"
        raise ValidationError(
            msg, details={"expected": len(current), "given": len(ordered_ids)}
        )
    _renumber(conn, list(ordered_ids))
    _touch_note(conn, note_id, now_ms())


def indent(conn: sqlite3.Connection, node_id: str) -> bool:
    """Make the node the last child of its preceding sibling.

    Returns False (and changes nothing) when there is no preceding sibling.
    """
    node = get_node(conn, node_id)
    siblings = get_sibling_ids(conn, note_id=node.note_id, parent_id=node.parent_id)
    idx = siblings.index(node_id)
    if idx == 0:
        logger.info("Indent of {} skipped: no preceding sibling", node_id)
        return False
    move_node(conn, node_id, new_parent_id=siblings[idx - 1])
    return True


def outdent(conn: sqlite3.Connection, node_id: str) -> bool:
    """Move the node to just after its parent in the grandparent's children.

    Returns False (and changes nothing) for root-level nodes.
    """
    node = get_node(conn, node_id)
    if node.parent_id is None:
        logger.info("Outdent of {} skipped: already root-level", node_id)
        return False
    parent = get_node(conn, node.parent_id)
    parent_siblings = get_sibling_ids(conn, note_id=node.note_id, parent_id=parent.parent_id)
    move_node(
        conn,
        node_id,
        new_parent_id=parent.parent_id,
        index=parent_siblings.index(parent.id) + 1,
    )
    return True


def delete_node(conn: sqlite3.Connection, node_id: str) -> list[str]:
    """Delete a node and its whole subtree.

    Foreign references to every node in the subtree are removed first (tag
    associations, outgoing links, attachment ownership, task log, index
    entries), then the nodes themselves, deepest first. Former siblings are
    renumbered.

    Returns:
        Ids of all deleted nodes, parents before children.
    """
    node = get_node(conn, node_id)
    subtree = collect_subtree_ids(conn, node_id)

    remove_node_tags(conn, subtree)
    delete_links_from_nodes(conn, subtree)
    release_node_attachments(conn, subtree)
    delete_log_entries(conn, subtree)
    unindex_nodes(conn, subtree)
    conn.executemany(
        "DELETE FROM outline_nodes WHERE id = ?",
        [(i,) for i in reversed(subtree)],
    )

    _renumber(conn, get_sibling_ids(conn, note_id=node.note_id, parent_id=node.parent_id))
    _touch_note(conn, node.note_id, now_ms())
    logger.debug("Deleted node {} with {} descendant(s)", node_id, len(subtree) - 1)
    return subtree


def _update_fields(conn: sqlite3.Connection, node: OutlineNode, **columns: object) -> OutlineNode:
    now = now_ms()
    assignments = ", ".join(f"{name} = ?" for name in columns)
    conn.execute(
        f"UPDATE outline_nodes SET {assignments}, modified_at = ? WHERE id = ?",
        (*columns.values(), now, node.id),
    )
    _touch_note(conn, node.note_id, now)
    return get_node(conn, node.id)


def set_task(conn: sqlite3.Connection, node_id: str, is_task: bool) -> OutlineNode:
    """Set the task flag. Clearing it also clears completion.

    Priority and due date are kept; they are ignored while the node is not a task.
    """
    node = get_node(conn, node_id)
    if node.is_task == is_task:
        return node
    return _update_fields(
        conn,
        node,
        is_task=int(is_task),
        task_completed=int(node.completed and is_task),
    )


def set_completed(conn: sqlite3.Connection, node_id: str, completed: bool) -> OutlineNode:
    node = get_node(conn, node_id)
    if not node.is_task:
        msg = "Only task nodes can be completed"
        raise ValidationError(msg, details={"node_id": node_id})
    if node.completed == completed:
        return node
    return _update_fields(conn, node, task_completed=int(completed))


def set_priority(conn: sqlite3.Connection, node_id: str, priority: Priority | None) -> OutlineNode:
    node = get_node(conn, node_id)
    return _update_fields(conn, node, task_priority=priority.value if priority else None)


def set_due_date(
    conn: sqlite3.Connection, node_id: str, due_date: datetime.date | None
) -> OutlineNode:
    node = get_node(conn, node_id)
    return _update_fields(
        conn, node, task_due_date=due_date.isoformat() if due_date else None
    )


def set_block_kind(conn: sqlite3.Connection, node_id: str, block_kind: BlockKind) -> OutlineNode:
    node = get_node(conn, node_id)
    return _update_fields(conn, node, block_type=block_kind.value)
