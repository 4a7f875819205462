"""Render notes as markdown."""

import io
import sqlite3

from outline_kb.core.links.graph import expand_transclusions
from outline_kb.core.pages.lookup import get_note
from outline_kb.core.tree.navigation import get_note_nodes
from outline_kb.models.node import BlockKind

TRANSCLUSION_DEPTH = 3


def export_stem(title: str) -> str:
    """File name (without extension) for a note's markdown export."""
    return title.replace("/", "-").replace("\\", "-").strip()


def render_note_as_markdown(
    conn: sqlite3.Connection,
    note_id: str,
    *,
    transclusion_depth: int = TRANSCLUSION_DEPTH,
) -> str:
    """Render a whole note as a markdown document.

    Args:
        conn: Database connection.
        note_id: The note to render.
        transclusion_depth: How many levels of nested transclusion to expand.

    Returns:
        ``# Title``, a blank line, then the outline as an indented bullet list.
    """
    note = get_note(conn, note_id)

    out = io.StringIO()
    out.write(f"# {note.title}\n\n")
    for node, depth in get_note_nodes(conn, note_id):
        indent = "    " * depth
        content = expand_transclusions(conn, node.content, max_depth=transclusion_depth)
        lines = content.split("\n")

        prefix = "- "
        if node.is_task:
            prefix = "- [x] " if node.completed else "- [ ] "

        if node.block_kind is BlockKind.CODE:
            out.write(f"{indent}{prefix}```\n")
            for line in lines:
                out.write(f"{indent}  {line}\n")
            out.write(f"{indent}  ```\n")
        elif node.block_kind is BlockKind.QUOTE:
            out.write(f"{indent}{prefix}> {lines[0]}\n")
            for line in lines[1:]:
                out.write(f"{indent}  > {line}\n")
        else:
            out.write(f"{indent}{prefix}{lines[0]}\n")
            for line in lines[1:]:
                out.write(f"{indent}  {line}\n")

    return out.getvalue()
