"""Tests for tree navigation helpers."""

import sqlite3

import pytest

from outline_kb.core.pages.notes import create_note
from outline_kb.core.tree.navigation import (
    check_sibling_order,
    collect_subtree_ids,
    get_ancestor_ids,
    get_depth,
    get_note_nodes,
)
from outline_kb.core.tree.outline import create_node


@pytest.fixture
def tree(conn: sqlite3.Connection) -> dict[str, str]:
    note = create_note(conn, "Tree")
    root = create_node(conn, note_id=note.id, content="root")
    child = create_node(conn, note_id=note.id, parent_id=root.id, content="child")
    grandchild = create_node(conn, note_id=note.id, parent_id=child.id, content="grandchild")
    sibling = create_node(conn, note_id=note.id, content="sibling")
    return {
        "note": note.id,
        "root": root.id,
        "child": child.id,
        "grandchild": grandchild.id,
        "sibling": sibling.id,
    }


def test_get_note_nodes_in_document_order(conn: sqlite3.Connection, tree: dict[str, str]) -> None:
    nodes = get_note_nodes(conn, tree["note"])
    assert [(n.content, depth) for n, depth in nodes] == [
        ("root", 0),
        ("child", 1),
        ("grandchild", 2),
        ("sibling", 0),
    ]


def test_ancestors_nearest_first(conn: sqlite3.Connection, tree: dict[str, str]) -> None:
    assert get_ancestor_ids(conn, tree["grandchild"], limit=4) == [tree["child"], tree["root"]]
    assert get_depth(conn, tree["grandchild"]) == 2


def test_ancestor_walk_detects_cycles(conn: sqlite3.Connection, tree: dict[str, str]) -> None:
    conn.execute("PRAGMA foreign_keys=OFF")
    conn.execute(
        "UPDATE outline_nodes SET parent_node_id = ? WHERE id = ?",
        (tree["grandchild"], tree["root"]),
    )
    with pytest.raises(RuntimeError, match="exceeds"):
        get_ancestor_ids(conn, tree["grandchild"], limit=4)


def test_collect_subtree_parents_first(conn: sqlite3.Connection, tree: dict[str, str]) -> None:
    assert collect_subtree_ids(conn, tree["root"]) == [
        tree["root"],
        tree["child"],
        tree["grandchild"],
    ]


def test_check_sibling_order_reports_gaps(conn: sqlite3.Connection, tree: dict[str, str]) -> None:
    assert check_sibling_order(conn, tree["note"]) == []
    conn.execute("UPDATE outline_nodes SET position = 5 WHERE id = ?", (tree["sibling"],))
    assert check_sibling_order(conn, tree["note"]) == [(None, [0, 5])]
