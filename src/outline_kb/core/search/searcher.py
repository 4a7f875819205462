"""FTS5 search index over node content.

The index is a standalone FTS5 table maintained by explicit calls made inside
each mutation's transaction, so search results always reflect committed
content.
"""

import re
import sqlite3
import threading

from loguru import logger

from outline_kb.core.tree.navigation import NODE_COLUMNS, row_to_node
from outline_kb.errors import IndexInconsistency, ValidationError
from outline_kb.models.node import SearchResponse, SearchResult


# Runs of letters and digits: the characters unicode61 keeps inside a token.
_TERM_RE = re.compile(r"[^\W_]+", re.UNICODE)

_OPERATORS = ("AND", "OR", "NOT")


def _fts_terms(text: str) -> list[str]:
    """Split text into terms the way the index tokenizer does."""
    return _TERM_RE.findall(text)


def _bareword(term: str) -> str:
    # A term spelled like an operator must be quoted to stay a term.
    return f'"{term}"' if term in (*_OPERATORS, "NEAR") else term


def _prepare_fts_query(query: str) -> str:
    """Convert user query to an FTS5 query.

    - Words are split like the index splits content, so ``follow-up``
      becomes the phrase ``"follow up"``
    - A trailing ``*`` asks for prefix matching; nothing else is prefixed
    - Quoted phrases are kept as phrases
    - FTS5 operators AND, OR, NOT are preserved; in a run of operators the
      last one wins, and dangling ones are dropped
    """
    if not query.strip():
        return ""

    tokens: list[str] = []

    def add_operator(op: str) -> None:
        if tokens and tokens[-1] in _OPERATORS:
            tokens[-1] = op
        elif tokens:
            tokens.append(op)

    i = 0
    while i < len(query):
        if query[i] == '"':
            end = query.find('"', i + 1)
            if end == -1:
                phrase = query[i + 1 :]
                i = len(query)
            else:
                phrase = query[i + 1 : end]
                i = end + 1
            words = _fts_terms(phrase)
            if words:
                tokens.append('"' + " ".join(words) + '"')
        elif query[i].isspace():
            i += 1
        else:
            end = i
            while end < len(query) and not query[end].isspace() and query[end] != '"':
                end += 1
            word = query[i:end]
            i = end

            if word.upper() in _OPERATORS:
                add_operator(word.upper())
                continue

            terms = _fts_terms(word)
            if not terms:
                continue
            star = "*" if word.endswith("*") else ""
            if len(terms) == 1:
                tokens.append(_bareword(terms[0]) + star)
            else:
                tokens.append('"' + " ".join(terms) + '"' + star)

    while tokens and tokens[-1] in _OPERATORS:
        tokens.pop()
    return " ".join(tokens)


def index_node(conn: sqlite3.Connection, node_id: str, content: str) -> None:
    """Replace the index entry of a node with its current content."""
    conn.execute("DELETE FROM nodes_fts WHERE node_id = ?", (node_id,))
    conn.execute("INSERT INTO nodes_fts (node_id, content) VALUES (?, ?)", (node_id, content))


def unindex_nodes(conn: sqlite3.Connection, node_ids: list[str]) -> None:
    conn.executemany("DELETE FROM nodes_fts WHERE node_id = ?", [(i,) for i in node_ids])


def verify_node_index(conn: sqlite3.Connection, node_id: str) -> None:
    """Check that the node has exactly one index entry matching its content.

    Raises:
        IndexInconsistency: If the entry is missing, duplicated or stale.
    """
    stored = conn.execute("SELECT content FROM outline_nodes WHERE id = ?", (node_id,)).fetchone()
    indexed = conn.execute(
        "SELECT content FROM nodes_fts WHERE node_id = ?", (node_id,)
    ).fetchall()
    if stored is None:
        if indexed:
            raise IndexInconsistency([node_id])
        return
    if len(indexed) != 1 or indexed[0][0] != stored[0]:
        raise IndexInconsistency([node_id])


def check_index(conn: sqlite3.Connection) -> list[str]:
    """Return ids of nodes whose index entry is missing, stale or orphaned."""
    rows = conn.execute(
        """
        SELECT n.id FROM outline_nodes n
        LEFT JOIN nodes_fts f ON f.node_id = n.id
        GROUP BY n.id
        HAVING COUNT(f.node_id) != 1 OR MAX(f.content) IS NOT n.content
        UNION
        SELECT f.node_id FROM nodes_fts f
        WHERE NOT EXISTS (SELECT 1 FROM outline_nodes n WHERE n.id = f.node_id)
        ORDER BY 1
        """
    ).fetchall()
    return [r[0] for r in rows]


def rebuild_index(conn: sqlite3.Connection) -> int:
    """Drop every index entry and repopulate from stored node content.

    Returns:
        Number of indexed nodes.
    """
    conn.execute("DELETE FROM nodes_fts")
    cursor = conn.execute(
        "INSERT INTO nodes_fts (node_id, content) SELECT id, content FROM outline_nodes"
    )
    logger.info("Rebuilt search index: {} node(s)", cursor.rowcount)
    return cursor.rowcount


def search_nodes(
    conn: sqlite3.Connection,
    *,
    query: str = "",
    note_id: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[SearchResult], int]:
    """Search nodes using FTS5.

    Args:
        conn: Database connection.
        query: Search query text.
        note_id: Restrict to a specific note.
        limit: Max results to return.
        offset: Pagination offset.

    Returns:
        Tuple of (results, total_count). Results are ordered by relevance,
        ties broken by the most recently modified node.
    """
    fts_query = _prepare_fts_query(query)
    if not fts_query:
        return [], 0

    where_clauses = ["nodes_fts MATCH ?"]
    params: list[str | int] = [fts_query]

    if note_id:
        where_clauses.append("n.note_id = ?")
        params.append(note_id)

    where_sql = " AND ".join(where_clauses)

    count_sql = f"""
        SELECT COUNT(*)
        FROM nodes_fts
        JOIN outline_nodes n ON n.id = nodes_fts.node_id
        WHERE {where_sql}
    """
    try:
        total = conn.execute(count_sql, params).fetchone()[0]
    except sqlite3.OperationalError as e:
        msg = f"Cannot search for {query!r}"
        raise ValidationError(msg, details={"query": query, "fts_query": fts_query}) from e

    columns = ", ".join(f"n.{c.strip()}" for c in NODE_COLUMNS.split(","))
    select_sql = f"""
        SELECT {columns},
               t.title as note_title,
               snippet(nodes_fts, 1, '**', '**', '...', 32) as snippet,
               -bm25(nodes_fts) as score
        FROM nodes_fts
        JOIN outline_nodes n ON n.id = nodes_fts.node_id
        JOIN notes t ON t.id = n.note_id
        WHERE {where_sql}
        ORDER BY score DESC, n.modified_at DESC
        LIMIT ? OFFSET ?
    """
    params.extend([limit, offset])

    rows = conn.execute(select_sql, params).fetchall()
    results = [
        SearchResult(
            node=row_to_node(row[:12]),
            note_title=row[12],
            snippet=row[13],
            score=row[14],
        )
        for row in rows
    ]
    return results, total


class LatestResults:
    """Keep only the newest search response when searches overlap.

    Responses carry the sequence number they were issued with; an older
    response arriving after a newer one has been applied is discarded.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current: SearchResponse | None = None

    def offer(self, response: SearchResponse) -> bool:
        """Apply the response if it is newer than the current one."""
        with self._lock:
            if self._current is not None and response.sequence <= self._current.sequence:
                logger.debug("Discarding stale search #{}", response.sequence)
                return False
            self._current = response
            return True

    @property
    def current(self) -> SearchResponse | None:
        return self._current
