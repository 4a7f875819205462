"""SQLite schema creation and migration for the knowledge base."""

import sqlite3

SCHEMA_VERSION = 1

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS notes (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    modified_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_notes_title ON notes(title);
CREATE INDEX IF NOT EXISTS idx_notes_modified ON notes(modified_at DESC);

CREATE TABLE IF NOT EXISTS outline_nodes (
    id TEXT PRIMARY KEY,
    note_id TEXT NOT NULL,
    parent_node_id TEXT,
    content TEXT NOT NULL DEFAULT '',
    position INTEGER NOT NULL,
    is_task INTEGER NOT NULL DEFAULT 0,
    task_completed INTEGER NOT NULL DEFAULT 0,
    task_priority TEXT,
    task_due_date TEXT,
    block_type TEXT NOT NULL DEFAULT 'normal',
    created_at INTEGER NOT NULL,
    modified_at INTEGER NOT NULL,
    FOREIGN KEY (note_id) REFERENCES notes(id) ON DELETE CASCADE,
    FOREIGN KEY (parent_node_id) REFERENCES outline_nodes(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_outline_nodes_note ON outline_nodes(note_id);
CREATE INDEX IF NOT EXISTS idx_outline_nodes_parent ON outline_nodes(parent_node_id);
CREATE INDEX IF NOT EXISTS idx_outline_nodes_position
    ON outline_nodes(note_id, parent_node_id, position);
CREATE INDEX IF NOT EXISTS idx_outline_nodes_tasks ON outline_nodes(is_task, task_completed);

CREATE TABLE IF NOT EXISTS tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    color TEXT,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS node_tags (
    node_id TEXT NOT NULL,
    tag_id INTEGER NOT NULL,
    source TEXT NOT NULL DEFAULT 'content',
    created_at INTEGER NOT NULL,
    PRIMARY KEY (node_id, tag_id),
    FOREIGN KEY (node_id) REFERENCES outline_nodes(id) ON DELETE CASCADE,
    FOREIGN KEY (tag_id) REFERENCES tags(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_node_tags_tag ON node_tags(tag_id);

CREATE TABLE IF NOT EXISTS links (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_note_id TEXT NOT NULL,
    source_node_id TEXT,
    target_note_id TEXT,
    target_title TEXT NOT NULL,
    anchor TEXT,
    link_text TEXT NOT NULL,
    link_type TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    FOREIGN KEY (source_note_id) REFERENCES notes(id) ON DELETE CASCADE,
    FOREIGN KEY (source_node_id) REFERENCES outline_nodes(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_links_source_note ON links(source_note_id);
CREATE INDEX IF NOT EXISTS idx_links_source_node ON links(source_node_id);
CREATE INDEX IF NOT EXISTS idx_links_target ON links(target_note_id);
CREATE INDEX IF NOT EXISTS idx_links_target_title ON links(target_title);

CREATE TABLE IF NOT EXISTS attachments (
    id TEXT PRIMARY KEY,
    note_id TEXT NOT NULL,
    node_id TEXT,
    filename TEXT NOT NULL,
    filepath TEXT NOT NULL,
    mime_type TEXT,
    size_bytes INTEGER NOT NULL,
    hash TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    FOREIGN KEY (note_id) REFERENCES notes(id) ON DELETE CASCADE,
    FOREIGN KEY (node_id) REFERENCES outline_nodes(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_attachments_note ON attachments(note_id);
CREATE INDEX IF NOT EXISTS idx_attachments_hash ON attachments(hash);

CREATE TABLE IF NOT EXISTS daily_notes (
    date TEXT PRIMARY KEY,
    note_id TEXT NOT NULL UNIQUE,
    FOREIGN KEY (note_id) REFERENCES notes(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS favorites (
    note_id TEXT PRIMARY KEY,
    position INTEGER NOT NULL,
    created_at INTEGER NOT NULL,
    FOREIGN KEY (note_id) REFERENCES notes(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS task_status_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    node_id TEXT NOT NULL,
    status TEXT NOT NULL,
    old_value TEXT,
    new_value TEXT,
    timestamp INTEGER NOT NULL,
    FOREIGN KEY (node_id) REFERENCES outline_nodes(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_task_log_node ON task_status_log(node_id);
CREATE INDEX IF NOT EXISTS idx_task_log_timestamp ON task_status_log(timestamp DESC);

CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

# Standalone FTS5 table. It is kept in sync by explicit calls from the
# repository inside each mutation, not by triggers.
_FTS_SQL = """\
CREATE VIRTUAL TABLE IF NOT EXISTS nodes_fts USING fts5(
    node_id UNINDEXED,
    content,
    tokenize='porter unicode61'
);
"""


def create_schema(conn: sqlite3.Connection) -> None:
    """Create all tables, indexes, and the full-text index."""
    conn.executescript(_SCHEMA_SQL)
    conn.executescript(_FTS_SQL)
    set_metadata(conn, "schema_version", str(SCHEMA_VERSION))
    if conn.in_transaction:
        conn.commit()


def get_schema_version(conn: sqlite3.Connection) -> int | None:
    """Return the current schema version, or None if metadata table doesn't exist."""
    try:
        row = conn.execute(
            "SELECT value FROM metadata WHERE key = 'schema_version'"
        ).fetchone()
    except sqlite3.OperationalError:
        return None
    return int(row[0]) if row else None


def migrate_schema(conn: sqlite3.Connection) -> None:
    """Create or migrate the database schema to the latest version."""
    version = get_schema_version(conn)
    if version is None:
        create_schema(conn)
    elif version > SCHEMA_VERSION:
        msg = f"Database schema version {version} is newer than supported {SCHEMA_VERSION}"
        raise RuntimeError(msg)


def get_metadata(conn: sqlite3.Connection, key: str) -> str | None:
    row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
    return row[0] if row else None


def set_metadata(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
        (key, value),
    )
