"""Cross-note references: parsing, storage, backlinks and transclusion.

Two syntaxes are recognised in node content:

- ``[[Title]]``: wiki reference to a note.
- ``![[Title#NodeID]]``: transclusion of a single node's live content.

References are bound by exact title. The stored target note id mirrors a
title lookup and is refreshed by ``retarget_links`` whenever a note with that
title is created, renamed or deleted; with no such note the link is
unresolved (title only).
"""

import re
import sqlite3
from dataclasses import dataclass

from loguru import logger

from outline_kb.core.pages.lookup import NOTE_COLUMNS, find_note_by_title, get_note, row_to_note
from outline_kb.core.tree.navigation import find_node
from outline_kb.models.node import (
    Attachment,
    Backlink,
    BacklinkGroup,
    Link,
    LinkKind,
    Transclusion,
)
from outline_kb.utils import now_ms

BROKEN_REFERENCE = "[broken reference: {title}#{node_id}]"

_REFERENCE_RE = re.compile(r"(?P<bang>!?)\[\[(?P<body>[^\[\]]+)\]\]")

_LINK_COLUMNS = (
    "id, source_note_id, source_node_id, target_note_id, target_title, "
    "link_text, link_type, anchor, created_at"
)

_CONTENT_KINDS = (LinkKind.WIKI.value, LinkKind.TRANSCLUSION.value)


@dataclass(frozen=True)
class Reference:
    """A link reference parsed out of node text."""

    kind: LinkKind
    title: str
    anchor: str | None
    raw: str

    @property
    def key(self) -> tuple[str, str, str | None]:
        return (self.kind.value, self.title, self.anchor)


def parse_references(text: str) -> list[Reference]:
    """Extract wiki and transclusion references, first occurrence wins."""
    seen: set[tuple[str, str, str | None]] = set()
    refs: list[Reference] = []
    for m in _REFERENCE_RE.finditer(text):
        body = m.group("body")
        if m.group("bang") and "#" in body:
            title, _, anchor = body.partition("#")
            ref = Reference(LinkKind.TRANSCLUSION, title.strip(), anchor.strip() or None, m.group(0))
            if ref.anchor is None:
                continue
        else:
            ref = Reference(LinkKind.WIKI, body.strip(), None, m.group(0).lstrip("!"))
        if not ref.title or ref.key in seen:
            continue
        seen.add(ref.key)
        refs.append(ref)
    return refs


def _row_to_link(row: tuple) -> Link:
    return Link(
        id=row[0],
        source_note_id=row[1],
        source_node_id=row[2],
        target_note_id=row[3],
        target_title=row[4],
        link_text=row[5],
        kind=LinkKind(row[6]),
        anchor=row[7],
        created_at=row[8],
    )


def _insert_link(
    conn: sqlite3.Connection,
    *,
    source_note_id: str,
    source_node_id: str | None,
    target_title: str,
    link_text: str,
    kind: LinkKind,
    anchor: str | None = None,
    target_note_id: str | None = None,
) -> Link:
    cursor = conn.execute(
        """INSERT INTO links
           (source_note_id, source_node_id, target_note_id, target_title, anchor,
            link_text, link_type, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            source_note_id, source_node_id, target_note_id, target_title, anchor,
            link_text, kind.value, now_ms(),
        ),
    )
    row = conn.execute(
        f"SELECT {_LINK_COLUMNS} FROM links WHERE id = ?", (cursor.lastrowid,)
    ).fetchone()
    return _row_to_link(row)


def resolve_title(conn: sqlite3.Connection, title: str) -> str | None:
    note = find_note_by_title(conn, title)
    return note.id if note else None


def sync_links(
    conn: sqlite3.Connection,
    *,
    note_id: str,
    node_id: str,
    text: str,
) -> tuple[int, int]:
    """Diff the node's outgoing wiki/transclusion links against ``text``.

    Links still present are kept as they are; vanished ones are deleted and
    new ones inserted.

    Returns:
        (added, removed) counts.
    """
    wanted = {ref.key: ref for ref in parse_references(text)}
    rows = conn.execute(
        f"SELECT {_LINK_COLUMNS} FROM links WHERE source_node_id = ? AND link_type IN (?, ?)",
        (node_id, *_CONTENT_KINDS),
    ).fetchall()
    existing: dict[tuple[str, str, str | None], list[int]] = {}
    for link in map(_row_to_link, rows):
        key = (link.kind.value, link.target_title, link.anchor)
        existing.setdefault(key, []).append(link.id)

    stale = [
        link_id
        for key, ids in existing.items()
        for link_id in (ids if key not in wanted else ids[1:])
    ]
    conn.executemany("DELETE FROM links WHERE id = ?", [(i,) for i in stale])

    fresh = [ref for key, ref in wanted.items() if key not in existing]
    for ref in fresh:
        _insert_link(
            conn,
            source_note_id=note_id,
            source_node_id=node_id,
            target_title=ref.title,
            link_text=ref.raw,
            kind=ref.kind,
            anchor=ref.anchor,
            target_note_id=resolve_title(conn, ref.title),
        )
    if fresh or stale:
        logger.debug("Links of node {}: +{} -{}", node_id, len(fresh), len(stale))
    return len(fresh), len(stale)


def link_notes(
    conn: sqlite3.Connection,
    *,
    source_note_id: str,
    title: str,
) -> Link:
    """Record a note-level wiki reference (no source node)."""
    get_note(conn, source_note_id)
    return _insert_link(
        conn,
        source_note_id=source_note_id,
        source_node_id=None,
        target_title=title,
        link_text=f"[[{title}]]",
        kind=LinkKind.WIKI,
        target_note_id=resolve_title(conn, title),
    )


def add_attachment_link(conn: sqlite3.Connection, attachment: Attachment) -> Link:
    return _insert_link(
        conn,
        source_note_id=attachment.note_id,
        source_node_id=attachment.node_id,
        target_title=attachment.filename,
        link_text=attachment.filename,
        kind=LinkKind.ATTACHMENT,
        anchor=attachment.id,
    )


def delete_attachment_links(conn: sqlite3.Connection, attachment_ids: list[str]) -> None:
    conn.executemany(
        "DELETE FROM links WHERE link_type = ? AND anchor = ?",
        [(LinkKind.ATTACHMENT.value, i) for i in attachment_ids],
    )


def delete_links_from_nodes(conn: sqlite3.Connection, node_ids: list[str]) -> None:
    """Drop wiki/transclusion links of deleted nodes.

    Attachment links stay with their attachment and lose the node reference.
    """
    params = [(i, *_CONTENT_KINDS) for i in node_ids]
    conn.executemany(
        "DELETE FROM links WHERE source_node_id = ? AND link_type IN (?, ?)", params
    )
    conn.executemany(
        "UPDATE links SET source_node_id = NULL WHERE source_node_id = ? AND link_type = ?",
        [(i, LinkKind.ATTACHMENT.value) for i in node_ids],
    )


def delete_links_from_note(conn: sqlite3.Connection, note_id: str) -> None:
    conn.execute("DELETE FROM links WHERE source_note_id = ?", (note_id,))


def unresolve_links_to_note(conn: sqlite3.Connection, note_id: str) -> int:
    """Turn links that targeted a deleted note back into title-only links."""
    cursor = conn.execute(
        "UPDATE links SET target_note_id = NULL WHERE target_note_id = ?", (note_id,)
    )
    return cursor.rowcount


def retarget_links(conn: sqlite3.Connection, *titles: str) -> int:
    """Re-resolve the stored target of every reference naming one of ``titles``.

    Called whenever the set of notes carrying a title changes (create,
    rename, delete), so the stored target always equals a fresh title lookup.
    """
    changed = 0
    for title in dict.fromkeys(titles):
        target = resolve_title(conn, title)
        cursor = conn.execute(
            "UPDATE links SET target_note_id = ? "
            "WHERE target_title = ? AND link_type IN (?, ?) AND target_note_id IS NOT ?",
            (target, title, *_CONTENT_KINDS, target),
        )
        changed += cursor.rowcount
    if changed:
        logger.debug("Re-resolved {} link(s) for {!r}", changed, titles)
    return changed


def outgoing_links(conn: sqlite3.Connection, node_id: str) -> list[Link]:
    rows = conn.execute(
        f"SELECT {_LINK_COLUMNS} FROM links WHERE source_node_id = ? ORDER BY id",
        (node_id,),
    ).fetchall()
    return [_row_to_link(r) for r in rows]


def unresolved_links(conn: sqlite3.Connection) -> list[Link]:
    """Wiki/transclusion links whose title currently matches no note."""
    rows = conn.execute(
        f"SELECT {_LINK_COLUMNS} FROM links l "
        "WHERE l.target_note_id IS NULL AND l.link_type IN (?, ?) "
        "AND NOT EXISTS (SELECT 1 FROM notes n WHERE n.title = l.target_title) "
        "ORDER BY l.id",
        _CONTENT_KINDS,
    ).fetchall()
    return [_row_to_link(r) for r in rows]


def backlinks_for(conn: sqlite3.Connection, note_id: str) -> tuple[BacklinkGroup, ...]:
    """All inbound wiki/transclusion references to a note, grouped by source note.

    Unresolved links count when their title resolves to this note now.
    """
    note = get_note(conn, note_id)
    rows = conn.execute(
        f"SELECT {_LINK_COLUMNS} FROM links "
        "WHERE link_type IN (?, ?) "
        "AND (target_note_id = ? OR (target_note_id IS NULL AND target_title = ?)) "
        "ORDER BY id",
        (*_CONTENT_KINDS, note.id, note.title),
    ).fetchall()
    links = [_row_to_link(r) for r in rows]
    if any(not link.is_resolved for link in links) and resolve_title(conn, note.title) != note.id:
        links = [link for link in links if link.is_resolved]

    grouped: dict[str, list[Backlink]] = {}
    for link in links:
        node = find_node(conn, link.source_node_id) if link.source_node_id else None
        grouped.setdefault(link.source_note_id, []).append(
            Backlink(
                link=link,
                node=node,
                link_text=link.link_text,
                context=node.content if node else "",
            )
        )

    groups = []
    for source_note_id, refs in grouped.items():
        row = conn.execute(
            f"SELECT {NOTE_COLUMNS} FROM notes WHERE id = ?", (source_note_id,)
        ).fetchone()
        refs.sort(key=lambda b: (b.node.position if b.node else -1, b.link.id))
        groups.append(BacklinkGroup(source_note=row_to_note(row), references=tuple(refs)))
    groups.sort(key=lambda g: (g.source_note.title, g.source_note.id))
    return tuple(groups)


def resolve_transclusion(conn: sqlite3.Connection, title: str, node_id: str) -> Transclusion:
    """Fetch the current content of a transcluded node.

    A missing note, a missing node, or a node living in another note yields a
    broken Transclusion instead of an error.
    """
    target_note_id = resolve_title(conn, title)
    node = find_node(conn, node_id) if target_note_id else None
    if node is None or node.note_id != target_note_id:
        return Transclusion(title=title, node_id=node_id, content=None)
    return Transclusion(title=title, node_id=node_id, content=node.content)


def expand_transclusions(conn: sqlite3.Connection, text: str, *, max_depth: int = 3) -> str:
    """Replace ``![[Title#NodeID]]`` with live content, recursing a bounded number of levels."""

    def replace(m: re.Match[str]) -> str:
        body = m.group("body")
        if not m.group("bang") or "#" not in body:
            return m.group(0)
        title, _, anchor = body.partition("#")
        title, anchor = title.strip(), anchor.strip()
        if not title or not anchor:
            return m.group(0)
        resolved = resolve_transclusion(conn, title, anchor)
        if resolved.content is None:
            return BROKEN_REFERENCE.format(title=title, node_id=anchor)
        if max_depth > 1:
            return expand_transclusions(conn, resolved.content, max_depth=max_depth - 1)
        return resolved.content

    return _REFERENCE_RE.sub(replace, text)
