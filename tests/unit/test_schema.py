"""Tests for database schema."""

import sqlite3

import pytest

from outline_kb.core.database.schema import (
    SCHEMA_VERSION,
    create_schema,
    get_metadata,
    get_schema_version,
    migrate_schema,
    set_metadata,
)


def test_create_schema_creates_all_tables() -> None:
    conn = sqlite3.connect(":memory:")
    create_schema(conn)
    tables = {
        row[0]
        for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    }
    assert {
        "notes",
        "outline_nodes",
        "tags",
        "node_tags",
        "links",
        "attachments",
        "daily_notes",
        "favorites",
        "task_status_log",
        "metadata",
        "nodes_fts",
    } <= tables


def test_migrate_schema_on_empty_db_creates_schema_and_sets_version() -> None:
    conn = sqlite3.connect(":memory:")
    assert get_schema_version(conn) is None
    migrate_schema(conn)
    assert get_schema_version(conn) == SCHEMA_VERSION


def test_migrate_schema_is_idempotent() -> None:
    conn = sqlite3.connect(":memory:")
    migrate_schema(conn)
    migrate_schema(conn)
    assert get_schema_version(conn) == SCHEMA_VERSION


def test_migrate_schema_rejects_newer_database() -> None:
    conn = sqlite3.connect(":memory:")
    migrate_schema(conn)
    set_metadata(conn, "schema_version", str(SCHEMA_VERSION + 1))
    with pytest.raises(RuntimeError, match="newer"):
        migrate_schema(conn)


def test_metadata_roundtrip() -> None:
    conn = sqlite3.connect(":memory:")
    create_schema(conn)
    assert get_metadata(conn, "missing") is None
    set_metadata(conn, "k", "v")
    assert get_metadata(conn, "k") == "v"


def test_foreign_keys_cascade_node_deletion(conn: sqlite3.Connection) -> None:
    conn.execute("INSERT INTO notes VALUES ('n', 'Note', 0, 0)")
    conn.execute(
        "INSERT INTO outline_nodes (id, note_id, content, position, created_at, modified_at) "
        "VALUES ('a', 'n', '', 0, 0, 0)"
    )
    conn.execute(
        "INSERT INTO attachments VALUES ('att', 'n', 'a', 'f.txt', 'p', NULL, 1, 'h', 0)"
    )
    conn.execute("DELETE FROM outline_nodes WHERE id = 'a'")
    assert conn.execute("SELECT node_id FROM attachments").fetchone() == (None,)

    conn.execute("DELETE FROM notes WHERE id = 'n'")
    assert conn.execute("SELECT COUNT(*) FROM attachments").fetchone() == (0,)
