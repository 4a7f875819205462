"""Ordered list of favorite notes."""

import sqlite3

from outline_kb.core.pages.lookup import get_note
from outline_kb.errors import ConstraintViolation, ValidationError
from outline_kb.models.node import Favorite
from outline_kb.utils import now_ms


def _favorite_ids(conn: sqlite3.Connection) -> list[str]:
    return [r[0] for r in conn.execute("SELECT note_id FROM favorites ORDER BY position")]


def renumber_favorites(conn: sqlite3.Connection, ordered_ids: list[str] | None = None) -> None:
    if ordered_ids is None:
        ordered_ids = _favorite_ids(conn)
    conn.executemany(
        "UPDATE favorites SET position = ? WHERE note_id = ?",
        [(position, note_id) for position, note_id in enumerate(ordered_ids)],
    )


def add_favorite(conn: sqlite3.Connection, note_id: str) -> Favorite:
    """Append a note to the favorites.

    Raises:
        ConstraintViolation: If the note is already a favorite.
    """
    get_note(conn, note_id)
    position = len(_favorite_ids(conn))
    now = now_ms()
    try:
        conn.execute(
            "INSERT INTO favorites (note_id, position, created_at) VALUES (?, ?, ?)",
            (note_id, position, now),
        )
    except sqlite3.IntegrityError as e:
        msg = "Note is already a favorite"
        raise ConstraintViolation(msg, details={"note_id": note_id}) from e
    return Favorite(note_id=note_id, position=position, created_at=now)


def remove_favorite(conn: sqlite3.Connection, note_id: str) -> bool:
    cursor = conn.execute("DELETE FROM favorites WHERE note_id = ?", (note_id,))
    if cursor.rowcount:
        renumber_favorites(conn)
    return cursor.rowcount > 0


def list_favorites(conn: sqlite3.Connection) -> list[Favorite]:
    rows = conn.execute(
        "SELECT note_id, position, created_at FROM favorites ORDER BY position"
    ).fetchall()
    return [Favorite(note_id=r[0], position=r[1], created_at=r[2]) for r in rows]


def move_favorite(conn: sqlite3.Connection, note_id: str, index: int) -> None:
    ids = _favorite_ids(conn)
    if note_id not in ids:
        msg = "Note is not a favorite"
        raise ValidationError(msg, details={"note_id": note_id})
    ids.remove(note_id)
    if not 0 <= index <= len(ids):
        msg = f"Index {index} out of range for {len(ids) + 1} favorite(s)"
        raise ValidationError(msg, details={"index": index})
    ids.insert(index, note_id)
    renumber_favorites(conn, ids)
