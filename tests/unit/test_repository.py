"""Tests for the Repository façade: lifecycle, atomicity and concurrency."""

import sqlite3
import threading
from pathlib import Path

import pytest

from outline_kb.errors import NotFoundError, ValidationError
from outline_kb.repository import Repository


def test_open_creates_layout(tmp_path: Path) -> None:
    with Repository(tmp_path / "kb") as repo:
        assert repo.config.db_path.exists()
        assert repo.config.attachments_dir.is_dir()


def test_closed_repository_refuses_work(tmp_path: Path) -> None:
    repo = Repository(tmp_path / "kb").open()
    repo.close()
    with pytest.raises(RuntimeError, match="not open"):
        repo.create_note("x")
    with pytest.raises(RuntimeError, match="not open"):
        repo.list_notes()


def test_data_survives_reopen(tmp_path: Path) -> None:
    with Repository(tmp_path / "kb") as repo:
        note = repo.create_note("Persistent")
        repo.create_node(note.id, content="still here")
    with Repository(tmp_path / "kb") as repo:
        [(node, depth)] = repo.get_note_nodes(note.id)
        assert node.content == "still here"
        assert depth == 0
        assert len(repo.search("still").results) == 1


def test_failed_mutation_leaves_no_partial_state(repo: Repository) -> None:
    note = repo.create_note("Atomic")
    with pytest.raises(NotFoundError):
        repo.create_node(note.id, parent_id="missing", content="#orphan [[Nowhere]]")
    assert repo.get_note_nodes(note.id) == []
    assert repo.list_tags() == []
    assert repo.unresolved_links() == []


def test_nested_mutation_failure_rolls_back_inner_only(repo: Repository) -> None:
    with repo._mutation():
        repo.create_note("Outer")
        with pytest.raises(ValidationError):
            repo.create_note(" ")
        repo.create_note("Also outer")
    assert sorted(n.title for n in repo.list_notes()) == ["Also outer", "Outer"]


def test_readers_see_only_committed_state(repo: Repository) -> None:
    seen: list[int] = []

    def read_in_thread() -> None:
        seen.append(len(repo.list_notes()))

    with repo._mutation():
        repo.create_note("Pending")
        worker = threading.Thread(target=read_in_thread)
        worker.start()
        worker.join()

    assert seen == [0]
    assert len(repo.list_notes()) == 1


def test_breadcrumbs_and_siblings(repo: Repository) -> None:
    note = repo.create_note("Tree")
    top = repo.create_node(note.id, content="top")
    mid = repo.create_node(note.id, parent_id=top.id, content="mid")
    left = repo.create_node(note.id, parent_id=mid.id, content="left")
    leaf = repo.create_node(note.id, parent_id=mid.id, content="leaf")
    right = repo.create_node(note.id, parent_id=mid.id, content="right")

    crumbs = repo.get_breadcrumbs(leaf.id)
    assert [(c.content, c.depth) for c in crumbs] == [("top", 0), ("mid", 1)]

    before, after = repo.get_siblings(leaf.id)
    assert [n.id for n in before] == [left.id]
    assert [n.id for n in after] == [right.id]


def test_backup_is_a_usable_database(repo: Repository, tmp_path: Path) -> None:
    repo.create_note("Saved")
    target = repo.backup(tmp_path / "backups" / "copy.db")

    copy = sqlite3.connect(str(target))
    try:
        assert copy.execute("SELECT title FROM notes").fetchall() == [("Saved",)]
    finally:
        copy.close()
