"""Tests for notes, daily notes and favorites."""

import datetime

import pytest

from outline_kb.errors import ConstraintViolation, NotFoundError, ValidationError
from outline_kb.repository import Repository


def test_create_note_rejects_blank_title(repo: Repository) -> None:
    with pytest.raises(ValidationError):
        repo.create_note("   ")
    assert repo.list_notes() == []


def test_rename_and_lookup_by_title(repo: Repository) -> None:
    note = repo.create_note("Draft")
    repo.rename_note(note.id, "Final")
    assert repo.note_by_title("Final") is not None
    assert repo.note_by_title("Draft") is None
    with pytest.raises(NotFoundError):
        repo.rename_note("missing", "x")


def test_find_notes_matches_title_substring(repo: Repository) -> None:
    repo.create_note("Meeting notes")
    repo.create_note("Groceries")
    repo.create_note("100% done")
    assert [n.title for n in repo.find_notes("meeting")] == ["Meeting notes"]
    assert [n.title for n in repo.find_notes("%")] == ["100% done"]


def test_delete_note_cascades(repo: Repository) -> None:
    note = repo.create_note("Gone")
    node = repo.create_node(note.id, content="#tag [[Other]]")
    repo.add_favorite(note.id)

    deleted = repo.delete_note(note.id)

    assert deleted == [node.id]
    assert repo.list_notes() == []
    assert repo.list_favorites() == []
    assert repo.nodes_with_tag("tag") == ()
    assert repo.unresolved_links() == []
    assert repo.check_index() == []
    with pytest.raises(NotFoundError):
        repo.get_node(node.id)


def test_daily_note_is_created_once(repo: Repository) -> None:
    day = datetime.date(2024, 3, 15)
    first = repo.daily_note(day)
    second = repo.daily_note(day)

    assert first.id == second.id
    assert first.title == "2024-03-15"
    assert [(d.date, d.note_id) for d in repo.list_daily_notes()] == [(day, first.id)]


def test_assign_daily_note_conflicts(repo: Repository) -> None:
    day = datetime.date(2024, 3, 15)
    existing = repo.daily_note(day)
    other = repo.create_note("Journal")

    with pytest.raises(ConstraintViolation):
        repo.assign_daily_note(day, other.id)
    with pytest.raises(ConstraintViolation):
        repo.assign_daily_note(datetime.date(2024, 3, 16), existing.id)
    assert repo.assign_daily_note(datetime.date(2024, 3, 17), other.id).note_id == other.id


def test_favorites_keep_dense_order(repo: Repository) -> None:
    a, b, c = (repo.create_note(t) for t in ("A", "B", "C"))
    for note in (a, b, c):
        repo.add_favorite(note.id)
    with pytest.raises(ConstraintViolation):
        repo.add_favorite(a.id)

    repo.move_favorite(c.id, 0)
    assert [(f.note_id, f.position) for f in repo.list_favorites()] == [
        (c.id, 0),
        (a.id, 1),
        (b.id, 2),
    ]

    assert repo.remove_favorite(a.id) is True
    assert repo.remove_favorite(a.id) is False
    assert [(f.note_id, f.position) for f in repo.list_favorites()] == [(c.id, 0), (b.id, 1)]


def test_move_favorite_rejects_bad_index(repo: Repository) -> None:
    note = repo.create_note("A")
    repo.add_favorite(note.id)
    with pytest.raises(ValidationError):
        repo.move_favorite(note.id, 2)
