"""Note (page) lifecycle: create, rename, delete and listing."""

import sqlite3

from loguru import logger

from outline_kb.core.links.graph import (
    delete_links_from_note,
    retarget_links,
    unresolve_links_to_note,
)
from outline_kb.core.pages.favorites import renumber_favorites
from outline_kb.core.pages.lookup import NOTE_COLUMNS, find_note_by_title, get_note, row_to_note
from outline_kb.core.search.searcher import unindex_nodes
from outline_kb.core.tags.index import remove_node_tags
from outline_kb.core.tasks.log import delete_log_entries
from outline_kb.errors import ValidationError
from outline_kb.models.node import Note
from outline_kb.utils import new_id, now_ms


def _clean_title(title: str) -> str:
    cleaned = title.strip()
    if not cleaned:
        msg = "Note title must not be empty"
        raise ValidationError(msg, details={"title": title})
    return cleaned


def create_note(conn: sqlite3.Connection, title: str) -> Note:
    note_id = new_id()
    now = now_ms()
    title = _clean_title(title)
    conn.execute(
        "INSERT INTO notes (id, title, created_at, modified_at) VALUES (?, ?, ?, ?)",
        (note_id, title, now, now),
    )
    retarget_links(conn, title)
    logger.debug("Created note {} {!r}", note_id, title)
    return get_note(conn, note_id)


def rename_note(conn: sqlite3.Connection, note_id: str, title: str) -> Note:
    """Change a note's title.

    References are bound by title: links naming the old title move to
    whichever note still carries it (or become unresolved), and links naming
    the new title resolve here unless an older note already has that title.
    """
    old = get_note(conn, note_id)
    title = _clean_title(title)
    conn.execute(
        "UPDATE notes SET title = ?, modified_at = ? WHERE id = ?",
        (title, now_ms(), note_id),
    )
    retarget_links(conn, old.title, title)
    return get_note(conn, note_id)


def delete_note(conn: sqlite3.Connection, note_id: str) -> list[str]:
    """Delete a note with all of its nodes and owned rows.

    Inbound links keep their title and become unresolved, or move to
    another note that carries the same title.

    Returns:
        Ids of the deleted nodes.
    """
    note = get_note(conn, note_id)
    node_ids = [
        r[0] for r in conn.execute("SELECT id FROM outline_nodes WHERE note_id = ?", (note_id,))
    ]
    remove_node_tags(conn, node_ids)
    delete_log_entries(conn, node_ids)
    unindex_nodes(conn, node_ids)
    delete_links_from_note(conn, note_id)
    unresolve_links_to_note(conn, note_id)
    conn.execute("DELETE FROM notes WHERE id = ?", (note_id,))
    retarget_links(conn, note.title)
    renumber_favorites(conn)
    logger.debug("Deleted note {} {!r} with {} node(s)", note_id, note.title, len(node_ids))
    return node_ids


def note_by_title(conn: sqlite3.Connection, title: str) -> Note | None:
    return find_note_by_title(conn, title)


def list_notes(conn: sqlite3.Connection) -> list[Note]:
    """All notes, most recently modified first."""
    rows = conn.execute(
        f"SELECT {NOTE_COLUMNS} FROM notes ORDER BY modified_at DESC, title"
    ).fetchall()
    return [row_to_note(r) for r in rows]


def find_notes(conn: sqlite3.Connection, query: str, *, limit: int = 50) -> list[Note]:
    """Notes whose title contains ``query`` (case-insensitive for ASCII)."""
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    rows = conn.execute(
        f"SELECT {NOTE_COLUMNS} FROM notes WHERE title LIKE ? ESCAPE '\\' "
        "ORDER BY modified_at DESC, title LIMIT ?",
        (f"%{escaped}%", limit),
    ).fetchall()
    return [row_to_note(r) for r in rows]
