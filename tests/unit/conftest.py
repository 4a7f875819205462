"""Shared test fixtures."""

import sqlite3
from collections.abc import Iterator
from pathlib import Path

import pytest

from outline_kb.core.database.schema import create_schema
from outline_kb.models.node import Note, OutlineNode
from outline_kb.repository import Repository
from tests.unit.fakes import FakeBlobStorage


@pytest.fixture
def conn() -> Iterator[sqlite3.Connection]:
    """In-memory database with the full schema and foreign keys on."""
    db = sqlite3.connect(":memory:", isolation_level=None)
    db.execute("PRAGMA foreign_keys=ON")
    create_schema(db)
    yield db
    db.close()


@pytest.fixture
def repo(tmp_path: Path) -> Iterator[Repository]:
    """Open repository in a fresh directory, storing blobs on disk."""
    with Repository(tmp_path / "kb") as r:
        yield r


@pytest.fixture
def fake_storage() -> FakeBlobStorage:
    return FakeBlobStorage()


@pytest.fixture
def fake_repo(tmp_path: Path, fake_storage: FakeBlobStorage) -> Iterator[Repository]:
    """Open repository whose blobs live in memory."""
    with Repository(tmp_path / "kb", blob_storage=fake_storage) as r:
        yield r


@pytest.fixture
def projects(repo: Repository) -> tuple[Note, list[OutlineNode]]:
    """A note "Projects" with three root nodes A, B, C and one child under A."""
    note = repo.create_note("Projects")
    a = repo.create_node(note.id, content="A")
    b = repo.create_node(note.id, content="B")
    c = repo.create_node(note.id, content="C")
    a1 = repo.create_node(note.id, parent_id=a.id, content="A1")
    return note, [a, b, c, a1]
