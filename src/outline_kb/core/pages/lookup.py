"""Read-only note lookups shared by the link graph, export and pages."""

import sqlite3

from outline_kb.errors import NotFoundError
from outline_kb.models.node import Note

NOTE_COLUMNS = "id, title, created_at, modified_at"


def row_to_note(row: tuple) -> Note:
    return Note(id=row[0], title=row[1], created_at=row[2], modified_at=row[3])


def find_note(conn: sqlite3.Connection, note_id: str) -> Note | None:
    row = conn.execute(f"SELECT {NOTE_COLUMNS} FROM notes WHERE id = ?", (note_id,)).fetchone()
    return row_to_note(row) if row else None


def get_note(conn: sqlite3.Connection, note_id: str) -> Note:
    note = find_note(conn, note_id)
    if note is None:
        raise NotFoundError("note", note_id)
    return note


def find_note_by_title(conn: sqlite3.Connection, title: str) -> Note | None:
    """Exact, case-sensitive title match. The earliest-created note wins on duplicates."""
    row = conn.execute(
        f"SELECT {NOTE_COLUMNS} FROM notes WHERE title = ? ORDER BY created_at, rowid LIMIT 1",
        (title,),
    ).fetchone()
    return row_to_note(row) if row else None
