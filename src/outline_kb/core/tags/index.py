"""Tag vocabulary and node-tag associations.

Tags come from ``#tagname`` tokens in node content (source ``content``) and
from explicit API calls (source ``manual``). Content re-derivation only ever
touches content-sourced associations.
"""

import re
import sqlite3

from loguru import logger

from outline_kb.core.tree.navigation import NODE_COLUMNS, row_to_node
from outline_kb.errors import ConstraintViolation, NotFoundError, ValidationError
from outline_kb.models.node import OutlineNode, Tag, TagSource
from outline_kb.utils import now_ms

MAX_TAG_LENGTH = 100

_LINK_SPAN_RE = re.compile(r"!?\[\[[^\]]*\]\]")
_TAG_RE = re.compile(r"(?:^|(?<=\s))#([\w-]+)", re.UNICODE)


def normalize_tag_name(name: str) -> str:
    """Canonical form of a tag name: trimmed, lowercased, no leading '#'."""
    return name.strip().removeprefix("#").strip().lower()


def validate_tag_name(name: str) -> str:
    normalized = normalize_tag_name(name)
    if not normalized or len(normalized) > MAX_TAG_LENGTH:
        msg = f"Invalid tag name: {name!r}"
        raise ValidationError(msg, details={"name": name[:MAX_TAG_LENGTH]})
    return normalized


def parse_tags(text: str) -> set[str]:
    """Extract canonical tag names from content, ignoring anchors inside [[links]]."""
    stripped = _LINK_SPAN_RE.sub(" ", text)
    return {
        normalize_tag_name(m.group(1))
        for m in _TAG_RE.finditer(stripped)
        if len(m.group(1)) <= MAX_TAG_LENGTH
    }


def _row_to_tag(row: tuple) -> Tag:
    return Tag(id=row[0], name=row[1], color=row[2], created_at=row[3])


def find_tag(conn: sqlite3.Connection, name: str) -> Tag | None:
    row = conn.execute(
        "SELECT id, name, color, created_at FROM tags WHERE name = ?",
        (normalize_tag_name(name),),
    ).fetchone()
    return _row_to_tag(row) if row else None


def get_tag(conn: sqlite3.Connection, name: str) -> Tag:
    tag = find_tag(conn, name)
    if tag is None:
        raise NotFoundError("tag", name)
    return tag


def create_tag(conn: sqlite3.Connection, name: str, *, color: str | None = None) -> Tag:
    """Create a tag explicitly.

    Raises:
        ConstraintViolation: If a tag with the same canonical name exists.
    """
    normalized = validate_tag_name(name)
    if find_tag(conn, normalized) is not None:
        msg = f"Tag already exists: {normalized}"
        raise ConstraintViolation(msg, details={"name": normalized})
    conn.execute(
        "INSERT INTO tags (name, color, created_at) VALUES (?, ?, ?)",
        (normalized, color, now_ms()),
    )
    return get_tag(conn, normalized)


def get_or_create_tag(conn: sqlite3.Connection, name: str) -> Tag:
    normalized = validate_tag_name(name)
    conn.execute(
        "INSERT OR IGNORE INTO tags (name, created_at) VALUES (?, ?)",
        (normalized, now_ms()),
    )
    return get_tag(conn, normalized)


def rename_tag(conn: sqlite3.Connection, name: str, new_name: str) -> Tag:
    tag = get_tag(conn, name)
    normalized = validate_tag_name(new_name)
    if normalized == tag.name:
        return tag
    if find_tag(conn, normalized) is not None:
        msg = f"Tag already exists: {normalized}"
        raise ConstraintViolation(msg, details={"name": normalized})
    conn.execute("UPDATE tags SET name = ? WHERE id = ?", (normalized, tag.id))
    return get_tag(conn, normalized)


def set_tag_color(conn: sqlite3.Connection, name: str, color: str | None) -> Tag:
    tag = get_tag(conn, name)
    conn.execute("UPDATE tags SET color = ? WHERE id = ?", (color, tag.id))
    return get_tag(conn, tag.name)


def list_tags(conn: sqlite3.Connection) -> list[Tag]:
    rows = conn.execute("SELECT id, name, color, created_at FROM tags ORDER BY name").fetchall()
    return [_row_to_tag(r) for r in rows]


def tag_usage_counts(conn: sqlite3.Connection) -> dict[str, int]:
    """Map every tag name to the number of nodes carrying it (unused tags map to 0)."""
    rows = conn.execute(
        "SELECT t.name, COUNT(nt.node_id) FROM tags t "
        "LEFT JOIN node_tags nt ON nt.tag_id = t.id "
        "GROUP BY t.id ORDER BY t.name"
    ).fetchall()
    return {name: count for name, count in rows}


def sync_tags(conn: sqlite3.Connection, node_id: str, text: str) -> tuple[set[str], set[str]]:
    """Make the node's content-sourced tags match exactly the tags in ``text``.

    Manual associations are left alone. Re-running with the same text is a no-op.

    Returns:
        (added, removed) canonical tag names.
    """
    wanted = parse_tags(text)
    rows = conn.execute(
        "SELECT t.name, nt.source FROM node_tags nt JOIN tags t ON t.id = nt.tag_id "
        "WHERE nt.node_id = ?",
        (node_id,),
    ).fetchall()
    current = {name: TagSource(source) for name, source in rows}
    from_content = {name for name, source in current.items() if source is TagSource.CONTENT}

    added = wanted - set(current)
    removed = from_content - wanted
    now = now_ms()
    for name in sorted(added):
        tag = get_or_create_tag(conn, name)
        conn.execute(
            "INSERT INTO node_tags (node_id, tag_id, source, created_at) VALUES (?, ?, ?, ?)",
            (node_id, tag.id, TagSource.CONTENT.value, now),
        )
    for name in sorted(removed):
        conn.execute(
            "DELETE FROM node_tags WHERE node_id = ? AND tag_id = (SELECT id FROM tags WHERE name = ?)",
            (node_id, name),
        )
    if added or removed:
        logger.debug("Tags of node {}: +{} -{}", node_id, sorted(added), sorted(removed))
    return added, removed


def add_tag(conn: sqlite3.Connection, node_id: str, name: str) -> Tag:
    """Apply a tag explicitly. An existing content-derived association becomes manual."""
    tag = get_or_create_tag(conn, name)
    conn.execute(
        """INSERT INTO node_tags (node_id, tag_id, source, created_at) VALUES (?, ?, ?, ?)
           ON CONFLICT (node_id, tag_id) DO UPDATE SET source = excluded.source""",
        (node_id, tag.id, TagSource.MANUAL.value, now_ms()),
    )
    return tag


def remove_tag(conn: sqlite3.Connection, node_id: str, name: str) -> bool:
    """Remove a tag from a node regardless of its source.

    Returns:
        True if the association existed.
    """
    tag = find_tag(conn, name)
    if tag is None:
        return False
    cursor = conn.execute(
        "DELETE FROM node_tags WHERE node_id = ? AND tag_id = ?", (node_id, tag.id)
    )
    return cursor.rowcount > 0


def remove_node_tags(conn: sqlite3.Connection, node_ids: list[str]) -> None:
    conn.executemany("DELETE FROM node_tags WHERE node_id = ?", [(i,) for i in node_ids])


def tags_for_node(conn: sqlite3.Connection, node_id: str) -> list[Tag]:
    rows = conn.execute(
        "SELECT t.id, t.name, t.color, t.created_at FROM tags t "
        "JOIN node_tags nt ON nt.tag_id = t.id WHERE nt.node_id = ? ORDER BY t.name",
        (node_id,),
    ).fetchall()
    return [_row_to_tag(r) for r in rows]


def nodes_with_tag(conn: sqlite3.Connection, name: str) -> tuple[OutlineNode, ...]:
    """All nodes carrying the tag, grouped by note and in sibling order."""
    columns = ", ".join(f"n.{c.strip()}" for c in NODE_COLUMNS.split(","))
    rows = conn.execute(
        f"SELECT {columns} FROM outline_nodes n "
        "JOIN node_tags nt ON nt.node_id = n.id "
        "JOIN tags t ON t.id = nt.tag_id "
        "WHERE t.name = ? ORDER BY n.note_id, n.parent_node_id, n.position",
        (normalize_tag_name(name),),
    ).fetchall()
    return tuple(row_to_node(r) for r in rows)


def notes_with_tag(conn: sqlite3.Connection, name: str) -> list[str]:
    """Distinct ids of notes holding at least one node with the tag."""
    rows = conn.execute(
        "SELECT DISTINCT n.note_id FROM outline_nodes n "
        "JOIN node_tags nt ON nt.node_id = n.id "
        "JOIN tags t ON t.id = nt.tag_id WHERE t.name = ? ORDER BY n.note_id",
        (normalize_tag_name(name),),
    ).fetchall()
    return [r[0] for r in rows]
