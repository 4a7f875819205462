"""Daily notes: one note per calendar date, titled ``YYYY-MM-DD``."""

import datetime
import sqlite3

from outline_kb.core.pages.lookup import get_note
from outline_kb.core.pages.notes import create_note
from outline_kb.errors import ConstraintViolation
from outline_kb.models.node import DailyNote, Note


def find_daily_note(conn: sqlite3.Connection, date: datetime.date) -> Note | None:
    row = conn.execute(
        "SELECT note_id FROM daily_notes WHERE date = ?", (date.isoformat(),)
    ).fetchone()
    return get_note(conn, row[0]) if row else None


def daily_note(conn: sqlite3.Connection, date: datetime.date) -> tuple[Note, bool]:
    """Get the note for ``date``, creating it on first access.

    Returns:
        (note, created).
    """
    existing = find_daily_note(conn, date)
    if existing is not None:
        return existing, False
    note = create_note(conn, date.isoformat())
    conn.execute(
        "INSERT INTO daily_notes (date, note_id) VALUES (?, ?)", (date.isoformat(), note.id)
    )
    return note, True


def assign_daily_note(conn: sqlite3.Connection, date: datetime.date, note_id: str) -> DailyNote:
    """Register an existing note as the daily note of ``date``.

    Raises:
        ConstraintViolation: If the date already has a note or the note is
            already the daily note of another date.
    """
    get_note(conn, note_id)
    try:
        conn.execute(
            "INSERT INTO daily_notes (date, note_id) VALUES (?, ?)", (date.isoformat(), note_id)
        )
    except sqlite3.IntegrityError as e:
        msg = f"Daily note for {date.isoformat()} conflicts with an existing one"
        raise ConstraintViolation(msg, details={"date": date.isoformat(), "note_id": note_id}) from e
    return DailyNote(date=date, note_id=note_id)


def list_daily_notes(conn: sqlite3.Connection) -> list[DailyNote]:
    """All daily notes, newest date first."""
    rows = conn.execute("SELECT date, note_id FROM daily_notes ORDER BY date DESC").fetchall()
    return [DailyNote(date=datetime.date.fromisoformat(r[0]), note_id=r[1]) for r in rows]
